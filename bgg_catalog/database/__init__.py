"""
Database module for catalog collections.

This module handles:
- Database schema creation
- Document create / find / update operations
- Image asset storage
"""

from .operations import DocumentStore
from .assets import AssetStore, derive_filename
from .models import COLLECTIONS, create_database

__all__ = [
    "DocumentStore",
    "AssetStore",
    "derive_filename",
    "COLLECTIONS",
    "create_database",
]
