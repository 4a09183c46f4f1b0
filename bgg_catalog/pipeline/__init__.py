"""
Pipeline module for catalog ingestion.

This module handles:
- Reconciling referenced entities by name
- Tracking processing state and parent rollup
- Background follow-up work
- The import / refresh / enqueue operations
"""

from .context import PipelineContext
from .importer import CatalogImporter
from .reconciler import EntityCache, EntityReconciler, Resolution, SyntheticIdGenerator
from .state import Completion, DependencyGraph, ProcessingStateTracker
from .worker import FollowUpQueue

__all__ = [
    "PipelineContext",
    "CatalogImporter",
    "EntityCache",
    "EntityReconciler",
    "Resolution",
    "SyntheticIdGenerator",
    "Completion",
    "DependencyGraph",
    "ProcessingStateTracker",
    "FollowUpQueue",
]
