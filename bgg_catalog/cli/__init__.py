"""
Command-line interface for the BGG Catalog package.

This module provides CLI commands for:
- Importing games, accessories and publishers
- Refreshing incomplete records
- Catalog search and database statistics
"""

from .main import main

__all__ = [
    "main",
]
