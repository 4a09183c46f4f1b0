"""
BGG Catalog Package - BoardGameGeek catalog ingestion and reconciliation.

This package provides:
1. A throttled, retrying client for the BoardGameGeek XML API
2. Normalizing and mapping catalog responses into games, accessories and publishers
3. Reconciling related entities by name and tracking record completeness
"""

__version__ = "0.1.0"
__author__ = "BGG Data Team"

# Main package imports for convenience
from .pipeline import CatalogImporter, PipelineContext
from .database import DocumentStore
from .models import ImportResult, BatchResult, ProcessingState
from .config import PipelineSettings
from .logging_config import setup_logging

__all__ = [
    "CatalogImporter",
    "PipelineContext",
    "DocumentStore",
    "ImportResult",
    "BatchResult",
    "ProcessingState",
    "PipelineSettings",
    "setup_logging",
]
