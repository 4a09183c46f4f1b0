"""
Create-or-find reconciliation of referenced entities.

Games and accessories that carry a catalog id are resolved by that id;
every other candidate is resolved by trimmed name. One batched lookup per
key finds the existing entities, missing ones are created, and a create
that loses a race with another writer is recovered by re-querying once.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, MutableMapping, Optional

from ..database import DocumentStore
from ..error_handling import ReconciliationConflict
from ..models import TRACKED_COLLECTIONS
from ..parsing import NamedCandidate

logger = logging.getLogger(__name__)

SYNTHETIC_ID_BASE = 1_000_000_000


class EntityCache:
    """
    (collection, key) -> id cache, keyed by trimmed name or by "#<bgg_id>"
    for games and accessories that carry a catalog id.

    The session tier is cleared when the owning context closes. The optional
    persistent tier is any mapping supplied by the caller; it is written
    through on every put and outlives the context.
    """

    def __init__(self, persistent: Optional[MutableMapping[str, int]] = None):
        self.session: Dict[str, int] = {}
        self.persistent = persistent

    @staticmethod
    def key(collection: str, name: str) -> str:
        return f"{collection}:{name}"

    def get(self, collection: str, name: str) -> Optional[int]:
        key = self.key(collection, name)
        if key in self.session:
            return self.session[key]
        if self.persistent is not None and key in self.persistent:
            self.session[key] = self.persistent[key]
            return self.session[key]
        return None

    def put(self, collection: str, name: str, doc_id: int) -> None:
        key = self.key(collection, name)
        self.session[key] = doc_id
        if self.persistent is not None:
            self.persistent[key] = doc_id

    def clear_session(self) -> None:
        self.session.clear()

    def __len__(self) -> int:
        return len(self.session)


class SyntheticIdGenerator:
    """
    Placeholder external ids for records whose catalog id is unusable.

    Ids are time-derived with a random offset and live above
    SYNTHETIC_ID_BASE, clear of the catalog's own id range.
    """

    def __init__(self, clock: Callable[[], float] = time.time, rng: Optional[random.Random] = None):
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._issued = set()

    def __call__(self) -> int:
        with self._lock:
            while True:
                now_ms = int(self._clock() * 1000)
                candidate = SYNTHETIC_ID_BASE + (now_ms % 1_000_000) * 1000 + self._rng.randint(0, 999)
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate


@dataclass
class Resolution:
    """Result of reconciling one batch of candidates."""
    ids: List[int] = field(default_factory=list)
    created: List[int] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


def usable_external_id(value) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class EntityReconciler:
    """
    Resolves named candidates to document ids, creating missing entities.
    """

    def __init__(self, store: DocumentStore, cache: Optional[EntityCache] = None,
                 id_generator: Optional[Callable[[], int]] = None,
                 initial_fields: Optional[Callable[[str], dict]] = None):
        """
        Initialize the reconciler.

        Args:
            store: Document store to resolve against
            cache: Entity cache shared across reconciliations
            id_generator: Source of synthetic external ids
            initial_fields: Extra fields for newly created documents, per collection
        """
        self.store = store
        self.cache = cache if cache is not None else EntityCache()
        self.id_generator = id_generator or SyntheticIdGenerator()
        self.initial_fields = initial_fields or (lambda collection: {})

    def resolve_or_create(self, collection: str, candidates: Iterable[NamedCandidate]) -> List[int]:
        """Resolve candidates to ids; unresolvable candidates are dropped."""
        return self.resolve(collection, candidates).ids

    def resolve(self, collection: str, candidates: Iterable[NamedCandidate]) -> Resolution:
        resolution = Resolution()

        # Games and accessories that carry a catalog id are keyed by it;
        # everything else is keyed by trimmed name
        unique: Dict[str, NamedCandidate] = {}
        names: Dict[str, str] = {}
        external: Dict[str, int] = {}
        for candidate in candidates or []:
            name = getattr(candidate, "name", None)
            if not isinstance(name, str) or not name.strip():
                logger.warning(f"Dropping {collection} candidate without a usable name: {candidate!r}")
                resolution.dropped.append(repr(candidate))
                continue
            bgg_id = self._external_id(collection, candidate)
            identity = f"#{bgg_id}" if bgg_id is not None else name.strip()
            if identity not in unique:
                unique[identity] = candidate
                names[identity] = name.strip()
                if bgg_id is not None:
                    external[identity] = bgg_id
        if not unique:
            return resolution

        resolved: Dict[str, int] = {}
        by_id: Dict[int, str] = {}
        by_name = []
        for identity in unique:
            cached = self.cache.get(collection, identity)
            if cached is not None:
                resolved[identity] = cached
            elif identity in external:
                by_id[external[identity]] = identity
            else:
                by_name.append(identity)

        if by_id:
            for doc in self.store.find(collection, {"bgg_id": {"in": list(by_id)}}):
                identity = by_id.get(doc.get("bgg_id"))
                if identity is None or identity in resolved:
                    continue
                resolved[identity] = doc["id"]
                self.cache.put(collection, identity, doc["id"])
        if by_name:
            for doc in self.store.find(collection, {"name": {"in": by_name}}):
                if doc["name"] in resolved or doc["name"] not in unique:
                    continue
                resolved[doc["name"]] = doc["id"]
                self.cache.put(collection, doc["name"], doc["id"])
                self._backfill_external_id(collection, doc, unique[doc["name"]])

        missing = [identity for identity in unique if identity not in resolved]
        if missing:
            logger.info(f"{len(missing)} {collection} item(s) need to be created")
        for identity in missing:
            doc_id = self._create(collection, identity, names[identity], unique[identity],
                                  external.get(identity))
            if doc_id is None:
                resolution.dropped.append(names[identity])
                continue
            resolved[identity] = doc_id
            resolution.created.append(doc_id)

        resolution.ids = [resolved[identity] for identity in unique if identity in resolved]
        logger.debug(f"Resolved {len(resolution.ids)} {collection} ({len(resolution.created)} created, "
                     f"{len(resolution.dropped)} dropped)")
        return resolution

    @staticmethod
    def _external_id(collection: str, candidate: NamedCandidate) -> Optional[int]:
        if collection not in TRACKED_COLLECTIONS:
            return None
        return usable_external_id(getattr(candidate, "bgg_id", None))

    def _create(self, collection: str, identity: str, name: str, candidate: NamedCandidate,
                external_id: Optional[int] = None) -> Optional[int]:
        data = {"name": name}
        bgg_id = usable_external_id(getattr(candidate, "bgg_id", None))
        if bgg_id is None and collection in TRACKED_COLLECTIONS:
            bgg_id = self.id_generator()
            logger.info(f"Generated synthetic bgg_id {bgg_id} for {collection} '{name}'")
        if bgg_id is not None:
            data["bgg_id"] = bgg_id
        data.update(self.initial_fields(collection))

        try:
            doc = self.store.create(collection, data)
        except Exception as e:
            conflict = ReconciliationConflict(collection, name, e)
            logger.info(f"{conflict}; re-querying")
            return self._requery(collection, identity, external_id)

        self.cache.put(collection, identity, doc["id"])
        logger.info(f"Created {collection} '{name}' ({doc['id']})")
        return doc["id"]

    def _requery(self, collection: str, identity: str, external_id: Optional[int] = None) -> Optional[int]:
        if external_id is not None:
            where = {"bgg_id": {"equals": external_id}}
        else:
            where = {"name": {"equals": identity}}
        try:
            doc = self.store.find_one(collection, where)
        except Exception as e:
            logger.warning(f"Dropping {collection} {identity!r}: re-query after failed create errored: {e}")
            return None
        if doc is None:
            logger.warning(f"Dropping {collection} {identity!r}: create failed and no existing entity was found")
            return None
        self.cache.put(collection, identity, doc["id"])
        return doc["id"]

    def _backfill_external_id(self, collection: str, doc: dict, candidate: Optional[NamedCandidate]) -> None:
        if doc.get("bgg_id") or candidate is None:
            return
        bgg_id = usable_external_id(candidate.bgg_id)
        if bgg_id is None:
            return
        try:
            self.store.update(collection, doc["id"], {"bgg_id": bgg_id})
        except Exception as e:
            logger.warning(f"Could not backfill bgg_id {bgg_id} on {collection} {doc['id']}: {e}")
