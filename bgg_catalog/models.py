"""
Shared data models for the BGG catalog package.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

GAMES = "games"
ACCESSORIES = "accessories"
TRACKED_COLLECTIONS = (GAMES, ACCESSORIES)

# (collection, document id)
NodeKey = Tuple[str, int]


class ProcessingState(str, Enum):
    """Completeness of a game or accessory record."""
    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PROCESSED = "processed"

    @property
    def rank(self) -> int:
        return _STATE_ORDER[self]


_STATE_ORDER = {
    ProcessingState.UNPROCESSED: 0,
    ProcessingState.PROCESSING: 1,
    ProcessingState.PROCESSED: 2,
}


@dataclass
class ImportResult:
    """Outcome of importing or refreshing one record."""
    collection: str
    message: str
    record: Optional[Dict[str, Any]] = None
    created: bool = False
    complete: bool = False
    already_processed: bool = False
    queued: int = 0

    @property
    def record_id(self) -> Optional[int]:
        return self.record.get("id") if self.record else None


@dataclass
class BatchResult:
    """Outcome of a batched refresh or enqueue request."""
    message: str
    results: List[ImportResult] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    queued: int = 0
    skipped: int = 0


@dataclass
class FollowUpTask:
    """Background refresh of a record that still needs enrichment."""
    record_id: int
    collection: str = GAMES
    parent_id: Optional[int] = None
    depth: int = 0

    @property
    def key(self) -> NodeKey:
        return (self.collection, self.record_id)


class FollowUpRequest(BaseModel):
    """An externally supplied item to enqueue for background completion."""
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(gt=0)
    collection: Literal["games", "accessories"] = Field(default=GAMES, alias="collectionKind")
    parent_id: Optional[int] = Field(default=None, alias="parentId")

    def to_task(self) -> FollowUpTask:
        return FollowUpTask(record_id=self.id, collection=self.collection, parent_id=self.parent_id)
