"""
Processing-state tracking for games and accessories.

A record moves UNPROCESSED -> PROCESSING -> PROCESSED and never back.
Games persist the state as ``processing_state``; accessories persist the
inverted boolean ``processing`` (True while incomplete).

Parent completion is driven by a DependencyGraph: each parent keeps the
set of children it still waits on, and completing the last child completes
the parent. When the graph knows nothing about a parent (a fresh process,
or a parent id handed in from outside) ``rollup`` does the full check
against the store instead.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..database import DocumentStore
from ..error_handling import RollupCheckFailure
from ..models import ACCESSORIES, GAMES, FollowUpTask, NodeKey, ProcessingState

logger = logging.getLogger(__name__)

# Relationship lists whose members gate a game's completion
GATING_RELATIONSHIPS = (
    ("expansions", GAMES),
    ("accessories", ACCESSORIES),
    ("implementations", GAMES),
)

# Relationship kinds that failed to reconcile on the last write; blocks completion
UNRESOLVED_FIELD = "unresolved_relationships"


class DependencyGraph:
    """Parent -> pending children edges, safe to share between threads."""

    def __init__(self):
        self._children: Dict[NodeKey, Set[NodeKey]] = defaultdict(set)
        self._parents: Dict[NodeKey, Set[NodeKey]] = defaultdict(set)
        self._lock = threading.RLock()

    def _reachable(self, start: NodeKey, target: NodeKey) -> bool:
        seen = set()
        stack = [start]
        while stack:
            node = stack.pop()
            if node == target:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._children.get(node, ()))
        return False

    def add(self, parent: NodeKey, child: NodeKey) -> bool:
        """
        Record that parent waits on child.

        Returns:
            False when the edge would close a cycle and was not added
        """
        with self._lock:
            if parent == child or self._reachable(child, parent):
                return False
            self._children[parent].add(child)
            self._parents[child].add(parent)
            return True

    def discard(self, parent: NodeKey, child: NodeKey) -> None:
        with self._lock:
            self._children.get(parent, set()).discard(child)
            parents = self._parents.get(child)
            if parents is not None:
                parents.discard(parent)
                if not parents:
                    del self._parents[child]

    def complete(self, child: NodeKey) -> List[NodeKey]:
        """
        Remove a completed child from every parent waiting on it.

        Returns:
            Parents whose pending count dropped to zero
        """
        with self._lock:
            ready = []
            for parent in self._parents.pop(child, set()):
                pending = self._children.get(parent)
                if pending is None:
                    continue
                pending.discard(child)
                if not pending:
                    ready.append(parent)
            return ready

    def forget(self, parent: NodeKey) -> None:
        with self._lock:
            for child in self._children.pop(parent, set()):
                self.discard(parent, child)

    def tracks(self, parent: NodeKey) -> bool:
        with self._lock:
            return parent in self._children

    def pending(self, parent: NodeKey) -> int:
        with self._lock:
            return len(self._children.get(parent, ()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._children)


@dataclass
class Completion:
    """Where a record stands after its relationships were written."""
    complete: bool = False
    pending: List[NodeKey] = field(default_factory=list)
    unprocessed: List[NodeKey] = field(default_factory=list)


class ProcessingStateTracker:
    """
    Owns processing-state transitions and parent rollup.
    """

    def __init__(self, store: DocumentStore, graph: Optional[DependencyGraph] = None,
                 submit: Optional[Callable[[FollowUpTask], bool]] = None, max_depth: int = 3):
        """
        Initialize the tracker.

        Args:
            store: Document store holding games and accessories
            graph: Dependency graph shared across imports
            submit: Follow-up queue submit function; None disables dispatch
            max_depth: Follow-ups deeper than this are not dispatched
        """
        self.store = store
        self.graph = graph if graph is not None else DependencyGraph()
        self.submit = submit
        self.max_depth = max_depth

    # State encoding

    @staticmethod
    def state_fields(collection: str, state: ProcessingState) -> dict:
        if collection == ACCESSORIES:
            return {"processing": state is not ProcessingState.PROCESSED}
        return {"processing_state": state.value}

    def initial_fields(self, collection: str) -> dict:
        """Fields a newly created tracked record starts with."""
        if collection in (GAMES, ACCESSORIES):
            return self.state_fields(collection, ProcessingState.UNPROCESSED)
        return {}

    @staticmethod
    def state_of(collection: str, doc: dict) -> ProcessingState:
        if collection == ACCESSORIES:
            if doc.get("processing") is False:
                return ProcessingState.PROCESSED
            return ProcessingState.UNPROCESSED
        try:
            return ProcessingState(doc.get("processing_state") or ProcessingState.UNPROCESSED.value)
        except ValueError:
            logger.warning(f"Unknown processing state {doc.get('processing_state')!r} on game {doc.get('id')}")
            return ProcessingState.UNPROCESSED

    def is_complete(self, collection: str, doc: dict) -> bool:
        return self.state_of(collection, doc) is ProcessingState.PROCESSED

    @staticmethod
    def has_state(collection: str, doc: dict) -> bool:
        return ("processing" if collection == ACCESSORIES else "processing_state") in doc

    @staticmethod
    def has_unresolved(doc: dict) -> bool:
        return bool(doc.get(UNRESOLVED_FIELD))

    # Transitions

    def advance(self, key: NodeKey, target: ProcessingState,
                current: Optional[ProcessingState] = None) -> bool:
        """
        Move a record forward to the target state.

        Returns:
            True if a write happened; moves that are not forward are skipped
        """
        collection, doc_id = key
        if current is None:
            current = self.state_of(collection, self.store.find_by_id(collection, doc_id))
        if target.rank <= current.rank:
            return False
        fields = self.state_fields(collection, target)
        if fields == self.state_fields(collection, current):
            return False
        self.store.update(collection, doc_id, fields)
        logger.info(f"{collection} {doc_id}: {current.value} -> {target.value}")
        return True

    def mark_created(self, key: NodeKey, doc: dict) -> bool:
        """Give a record that predates state tracking its initial state."""
        collection, doc_id = key
        if self.has_state(collection, doc):
            return False
        self.store.update(collection, doc_id, self.initial_fields(collection))
        return True

    def mark_complete(self, key: NodeKey, primary_populated: bool,
                      current: Optional[ProcessingState] = None) -> bool:
        """Complete a record, unless its own fields were never populated."""
        if not primary_populated:
            logger.debug(f"Not completing {key}: primary fields are not populated")
            return False
        return self.advance(key, ProcessingState.PROCESSED, current)

    # Relationships

    def children_of(self, collection: str, doc: dict) -> List[NodeKey]:
        if collection != GAMES:
            return []
        children = []
        for field_name, child_collection in GATING_RELATIONSHIPS:
            for child_id in doc.get(field_name) or []:
                key = (child_collection, child_id)
                if key not in children:
                    children.append(key)
        return children

    @staticmethod
    def parents_of(collection: str, doc: dict) -> List[NodeKey]:
        """Records that list this one as a gating child."""
        if collection == ACCESSORIES:
            return [(GAMES, game_id) for game_id in doc.get("games") or []]
        if doc.get("base_game"):
            return [(GAMES, doc["base_game"])]
        return []

    def load(self, keys: Iterable[NodeKey]) -> Dict[NodeKey, dict]:
        """Fetch documents for keys with one query per collection. Missing ones are left out."""
        by_collection: Dict[str, List[int]] = defaultdict(list)
        for collection, doc_id in keys:
            by_collection[collection].append(doc_id)
        docs = {}
        for collection, ids in by_collection.items():
            for doc in self.store.find(collection, {"id": {"in": ids}}):
                docs[(collection, doc["id"])] = doc
        return docs

    # Completion

    def finish(self, key: NodeKey, primary_populated: bool, dependents: Iterable[NodeKey],
               parent_hint: Optional[NodeKey] = None) -> Completion:
        """
        Register a record's gating children and complete it if none is pending.

        Args:
            key: The record that was just written
            primary_populated: Whether the record's own fields were written
            dependents: Gating children of the record
            parent_hint: Parent that asked for this record, if any

        Returns:
            Completion with the still-pending and never-fetched children
        """
        dependents = list(dict.fromkeys(dependents))
        if primary_populated:
            for child in dependents:
                if not self.graph.add(key, child):
                    logger.debug(f"Skipping dependency {key} -> {child}: it would close a cycle")

        docs = self.load(dependents)
        completion = Completion()
        for child in dependents:
            doc = docs.get(child)
            if doc is None:
                logger.debug(f"Gating child {child} of {key} does not exist; ignoring it")
                self.graph.discard(key, child)
                continue
            state = self.state_of(child[0], doc)
            if state is ProcessingState.PROCESSED:
                self.graph.discard(key, child)
                continue
            completion.pending.append(child)
            if state is ProcessingState.UNPROCESSED:
                completion.unprocessed.append(child)

        if not primary_populated:
            return completion
        if self.graph.pending(key) == 0:
            self.graph.forget(key)
            doc = self.store.find_by_id(*key)
            self.mark_complete(key, True, self.state_of(key[0], doc))
            completion.complete = True
            hints = self.parents_of(key[0], doc)
            if parent_hint is not None:
                hints.insert(0, parent_hint)
            self._propagate(key, hints)
        else:
            logger.info(f"{key[0]} {key[1]} waits on {self.graph.pending(key)} child record(s)")
        return completion

    def child_completed(self, key: NodeKey, parent_hint: Optional[NodeKey] = None) -> None:
        """Propagate a child's completion to the parents waiting on it."""
        self._propagate(key, [parent_hint] if parent_hint else [])

    def _propagate(self, key: NodeKey, hints: List[NodeKey]) -> None:
        ready = self.graph.complete(key)
        for parent in ready:
            self._complete_parent(parent)
        for parent in dict.fromkeys(hints):
            if parent in ready or self.graph.tracks(parent):
                continue
            self.rollup(parent)

    def _complete_parent(self, parent: NodeKey) -> None:
        try:
            doc = self.store.find_by_id(*parent)
        except Exception as e:
            logger.warning(str(RollupCheckFailure(parent, e)))
            return
        self.graph.forget(parent)
        state = self.state_of(parent[0], doc)
        if state is not ProcessingState.PROCESSING:
            # Complete already, or never populated; either way nothing to do
            return
        if self.has_unresolved(doc):
            logger.info(f"Not completing {parent}: {doc[UNRESOLVED_FIELD]} still unresolved")
            return
        if self.mark_complete(parent, True, state):
            self._propagate(parent, self.parents_of(parent[0], doc))

    def rollup(self, parent: NodeKey) -> bool:
        """
        Full completeness check of a parent against the store.

        Safe to call repeatedly; a complete parent is left untouched.

        Returns:
            True if the parent is complete after the check
        """
        try:
            doc = self.store.find_by_id(*parent)
            state = self.state_of(parent[0], doc)
            if state is ProcessingState.PROCESSED:
                return True
            if state is ProcessingState.UNPROCESSED:
                logger.debug(f"Rollup of {parent}: primary fields not populated yet")
                return False
            if self.has_unresolved(doc):
                logger.debug(f"Rollup of {parent}: {doc[UNRESOLVED_FIELD]} still unresolved")
                return False

            children = self.children_of(parent[0], doc)
            docs = self.load(children)
            pending = []
            for child in children:
                child_doc = docs.get(child)
                if child_doc is None or self.is_complete(child[0], child_doc):
                    continue
                # Mutual links (implementations) would otherwise wait on each other forever
                if parent in self.children_of(child[0], child_doc):
                    continue
                pending.append(child)
            if pending:
                logger.debug(f"Rollup of {parent}: {len(pending)} child record(s) still incomplete")
                return False

            self.mark_complete(parent, True, state)
        except Exception as e:
            logger.error(str(RollupCheckFailure(parent, e)))
            return False

        self.graph.forget(parent)
        self._propagate(parent, self.parents_of(parent[0], doc))
        return True

    # Follow-ups

    def dispatch(self, keys: Iterable[NodeKey], parent: Optional[NodeKey] = None, depth: int = 0) -> int:
        """
        Queue background refreshes for incomplete records.

        Returns:
            Number of tasks accepted by the queue
        """
        if self.submit is None:
            return 0
        if depth > self.max_depth:
            logger.debug(f"Not dispatching follow-ups at depth {depth} (max {self.max_depth})")
            return 0
        accepted = 0
        for collection, record_id in dict.fromkeys(keys):
            task = FollowUpTask(
                record_id=record_id,
                collection=collection,
                parent_id=parent[1] if parent else None,
                depth=depth,
            )
            if self.submit(task):
                accepted += 1
        return accepted
