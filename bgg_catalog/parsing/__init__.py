"""
Parsing module for catalog responses.

This module handles:
- Normalizing XML responses into a uniform record tree
- Mapping records into games, accessories, publishers and search hits
- Formatting description text as rich text
"""

from .normalizer import CatalogRecord, WireFormatNormalizer, Single, Many, as_list
from .mapper import (
    CatalogRecordMapper,
    MappedGame,
    MappedAccessory,
    MappedPublisher,
    NamedCandidate,
    SearchHit,
)
from .richtext import format_rich_text

__all__ = [
    "CatalogRecord",
    "WireFormatNormalizer",
    "Single",
    "Many",
    "as_list",
    "CatalogRecordMapper",
    "MappedGame",
    "MappedAccessory",
    "MappedPublisher",
    "NamedCandidate",
    "SearchHit",
    "format_rich_text",
]
