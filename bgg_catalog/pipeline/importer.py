"""
Catalog importer driven by LangGraph.

One import runs lookup -> fetch -> parse -> map -> reconcile -> persist ->
track as an explicit graph. Relationship kinds are reconciled in parallel
and written to the record in a single update together with its primary
fields. Children that still need fetching are handed to the follow-up
queue, which calls back into ``refresh``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional, TypedDict

from langgraph.graph import END, StateGraph
from pydantic import ValidationError

from ..config import RELATIONSHIP_COLLECTIONS, SEARCH_RESULT_LIMIT
from ..error_handling import CatalogError, DuplicateDocument, ImportFailed, safe_execute
from ..models import (
    ACCESSORIES,
    GAMES,
    BatchResult,
    FollowUpRequest,
    FollowUpTask,
    ImportResult,
    NodeKey,
    ProcessingState,
)
from ..parsing import CatalogRecord, MappedAccessory, MappedGame, SearchHit, format_rich_text
from ..parsing.richtext import has_rich_text
from .context import PipelineContext
from .reconciler import SYNTHETIC_ID_BASE, Resolution
from .state import UNRESOLVED_FIELD, Completion

logger = logging.getLogger(__name__)

PUBLISHERS = "publishers"


class ImportState(TypedDict, total=False):
    collection: str
    bgg_id: Optional[int]
    record_id: Optional[int]
    name: Optional[str]
    parent: Optional[NodeKey]
    depth: int
    process_accessories: bool
    existing: Optional[dict]
    already_processed: bool
    raw: bytes
    item: CatalogRecord
    mapped: Any
    relations: Dict[str, List[int]]
    failed_kinds: List[str]
    created_parents: List[NodeKey]
    base_game_id: Optional[int]
    record: dict
    created: bool
    completion: Optional[Completion]
    queued: int


class CatalogImporter:
    """
    Imports and refreshes games, accessories and publishers.
    """

    def __init__(self, context: Optional[PipelineContext] = None):
        self.context = context or PipelineContext.create()
        if self.context.follow_ups.handler is None:
            self.context.follow_ups.handler = self._handle_follow_up
        self.graph = self._build_graph()

    @property
    def store(self):
        return self.context.store

    @property
    def tracker(self):
        return self.context.tracker

    def _build_graph(self):
        graph = StateGraph(ImportState)
        ctx = self.context

        def lookup(state: ImportState) -> ImportState:
            collection = state["collection"]
            if state.get("record_id") is not None:
                existing = ctx.store.find_by_id(collection, state["record_id"])
            elif state.get("bgg_id") is not None:
                existing = ctx.store.find_one(collection, {"bgg_id": {"equals": state["bgg_id"]}})
            else:
                existing = None
            if existing is None and collection == PUBLISHERS and state.get("name"):
                existing = ctx.store.find_one(collection, {"name": {"equals": state["name"].strip()}})

            bgg_id = state.get("bgg_id") or (existing or {}).get("bgg_id")
            if existing is not None and collection in (GAMES, ACCESSORIES):
                if ctx.tracker.is_complete(collection, existing):
                    return {"existing": existing, "bgg_id": bgg_id, "already_processed": True}
                ctx.tracker.mark_created((collection, existing["id"]), existing)

            if not bgg_id or bgg_id >= SYNTHETIC_ID_BASE:
                raise ImportFailed(f"{collection} {state.get('record_id')} has no catalog id to fetch")
            return {"existing": existing, "bgg_id": bgg_id, "already_processed": False}

        def fetch(state: ImportState) -> ImportState:
            if state["collection"] == PUBLISHERS:
                raw = ctx.transport.fetch_family(state["bgg_id"])
            else:
                raw = ctx.transport.fetch_thing(state["bgg_id"])
            return {"raw": raw}

        def parse(state: ImportState) -> ImportState:
            items = ctx.normalizer.items(state["raw"])
            if not items:
                raise ImportFailed(f"Catalog service has no {state['collection']} with id {state['bgg_id']}")
            return {"item": items[0]}

        def map_record(state: ImportState) -> ImportState:
            collection = state["collection"]
            if collection == GAMES:
                mapped = ctx.mapper.map_game(state["item"])
            elif collection == ACCESSORIES:
                mapped = ctx.mapper.map_accessory(state["item"])
            else:
                mapped = ctx.mapper.map_publisher(state["item"])
            if mapped.bgg_id is None:
                mapped.bgg_id = state["bgg_id"]
            return {"mapped": mapped}

        def reconcile(state: ImportState) -> ImportState:
            relations, resolutions, failed = self._reconcile_relationships(
                state["mapped"], state.get("process_accessories", True))
            created_parents = []
            base_game_id = None

            base = resolutions.pop("base_game", None)
            if base is not None and base.ids:
                base_game_id = base.ids[0]
                created_parents.extend((GAMES, doc_id) for doc_id in base.created)
            games = resolutions.get("games")
            if games is not None:
                created_parents.extend((GAMES, doc_id) for doc_id in games.created)
            return {"relations": relations, "failed_kinds": failed, "created_parents": created_parents,
                    "base_game_id": base_game_id}

        def persist(state: ImportState) -> ImportState:
            try:
                record, created = self._write_record(state)
            except CatalogError:
                raise
            except Exception as e:
                raise ImportFailed(f"Could not write {state['collection']} {state['bgg_id']}: {e}") from e
            return {"record": record, "created": created}

        def track(state: ImportState) -> ImportState:
            collection = state["collection"]
            if collection not in (GAMES, ACCESSORIES):
                return {"completion": None, "queued": 0}
            record = state["record"]
            key = (collection, record["id"])
            depth = state.get("depth", 0) + 1
            if state.get("failed_kinds"):
                # Left at PROCESSING so a later refresh resolves the missing batches
                logger.warning(f"{collection} {record['id']} stays incomplete: "
                               f"{', '.join(state['failed_kinds'])} not reconciled")
                queued = ctx.tracker.dispatch(state.get("created_parents") or [], depth=depth)
                return {"completion": Completion(), "queued": queued}
            completion = ctx.tracker.finish(
                key,
                primary_populated=bool(state["mapped"].name),
                dependents=ctx.tracker.children_of(collection, record),
                parent_hint=state.get("parent"),
            )
            queued = ctx.tracker.dispatch(completion.unprocessed, parent=key, depth=depth)
            queued += ctx.tracker.dispatch(state.get("created_parents") or [], depth=depth)
            return {"completion": completion, "queued": queued}

        graph.add_node("lookup", lookup)
        graph.add_node("fetch", fetch)
        graph.add_node("parse", parse)
        graph.add_node("map", map_record)
        graph.add_node("reconcile", reconcile)
        graph.add_node("persist", persist)
        graph.add_node("track", track)

        graph.add_conditional_edges(
            "lookup",
            lambda state: END if state.get("already_processed") else "fetch",
            {"fetch": "fetch", END: END},
        )
        graph.add_edge("fetch", "parse")
        graph.add_edge("parse", "map")
        graph.add_edge("map", "reconcile")
        graph.add_edge("reconcile", "persist")
        graph.add_edge("persist", "track")
        graph.add_edge("track", END)

        graph.set_entry_point("lookup")
        return graph.compile()

    # Steps

    def _reconcile_relationships(self, mapped, process_accessories: bool = True):
        """
        Resolve every relationship kind concurrently.

        Returns:
            (relations, resolutions, failed): id lists keyed by field name for
            the kinds that resolved, the raw Resolution per kind, and the
            field names of the kinds that raised
        """
        jobs: Dict[str, tuple] = {}
        if isinstance(mapped, MappedGame):
            for kind, candidates in mapped.relationships().items():
                if kind == "expansions" and mapped.is_expansion:
                    continue
                if kind == "accessories" and not process_accessories:
                    continue
                jobs[kind] = (RELATIONSHIP_COLLECTIONS[kind], candidates)
            if mapped.base_game is not None:
                jobs["base_game"] = (GAMES, [mapped.base_game])
        elif isinstance(mapped, MappedAccessory):
            jobs["publishers"] = (PUBLISHERS, mapped.publishers)
            jobs["games"] = (GAMES, mapped.games)
        if not jobs:
            return {}, {}, []

        reconciler = self.context.reconciler
        workers = max(1, min(self.context.settings.reconcile_workers, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as executor:
            futures = {
                kind: executor.submit(
                    safe_execute, reconciler.resolve, collection, candidates,
                    default_return=None, error_msg=f"Reconciling {kind} failed",
                )
                for kind, (collection, candidates) in jobs.items()
            }
            resolutions: Dict[str, Resolution] = {}
            for kind, future in futures.items():
                resolution = future.result()
                if resolution is not None:
                    resolutions[kind] = resolution

        relations = {kind: resolution.ids for kind, resolution in resolutions.items() if kind != "base_game"}
        failed = [kind for kind in jobs if kind not in resolutions]
        return relations, resolutions, failed

    def _write_record(self, state: ImportState):
        collection = state["collection"]
        mapped = state["mapped"]
        existing = state.get("existing")
        ctx = self.context

        data: Dict[str, Any] = {}
        if mapped.name:
            data["name"] = mapped.name
        if mapped.bgg_id:
            data["bgg_id"] = mapped.bgg_id

        if isinstance(mapped, MappedGame):
            data.update(mapped.primary_fields())
            if state.get("base_game_id"):
                data["base_game"] = state["base_game_id"]
        else:
            for field_name in ("alternate_names", "thumbnail_url", "year_published"):
                value = getattr(mapped, field_name, None)
                if value:
                    data[field_name] = value
        data.update(state.get("relations") or {})

        if mapped.description and not (existing and has_rich_text(existing.get("description"))):
            description = format_rich_text(mapped.description)
            if description:
                data["description"] = description
        if mapped.image_url and not (existing and existing.get("image")):
            media_id = ctx.assets.store_from_url(mapped.image_url, alt=mapped.name)
            if media_id:
                data["image"] = media_id

        if collection in (GAMES, ACCESSORIES):
            if existing is None:
                data.update(ctx.tracker.initial_fields(collection))
            failed = state.get("failed_kinds") or []
            if failed or (existing and existing.get(UNRESOLVED_FIELD)):
                data[UNRESOLVED_FIELD] = failed
            if mapped.name:
                current = ctx.tracker.state_of(collection, existing or {})
                if current.rank < ProcessingState.PROCESSING.rank:
                    data.update(ctx.tracker.state_fields(collection, ProcessingState.PROCESSING))

        if existing is not None:
            record = ctx.store.update(collection, existing["id"], data)
            logger.info(f"Updated {collection} {existing['id']} ({record.get('name')})")
            return record, False

        try:
            record = ctx.store.create(collection, data)
        except DuplicateDocument:
            # A concurrent import created the same record first
            found = ctx.store.find_one(collection, {"bgg_id": {"equals": data.get("bgg_id")}})
            if found is None:
                raise
            record = ctx.store.update(collection, found["id"], data)
            return record, False
        logger.info(f"Created {collection} {record['id']} ({record.get('name')})")
        return record, True

    def _run(self, collection: str, bgg_id: Optional[int] = None, record_id: Optional[int] = None,
             name: Optional[str] = None, parent: Optional[NodeKey] = None, depth: int = 0,
             process_accessories: bool = True) -> ImportResult:
        state: ImportState = {
            "collection": collection,
            "bgg_id": bgg_id,
            "record_id": record_id,
            "name": name,
            "parent": parent,
            "depth": depth,
            "process_accessories": process_accessories,
        }
        final: ImportState = self.graph.invoke(state)

        if final.get("already_processed"):
            record = final["existing"]
            if parent is not None:
                self.tracker.child_completed((collection, record["id"]), parent)
            return ImportResult(
                collection=collection,
                message=f"{collection} {record['id']} is already processed",
                record=record,
                complete=True,
                already_processed=True,
            )

        record = final["record"]
        completion = final.get("completion")
        complete = bool(completion and completion.complete)
        if completion is not None:
            record = self.store.find_by_id(collection, record["id"])
        verb = "Created" if final.get("created") else "Updated"
        failed = final.get("failed_kinds") or []
        if completion is None:
            message = f"{verb} {collection} {record['id']}"
        elif failed:
            message = (f"{verb} {collection} {record['id']}; could not reconcile {', '.join(failed)}, "
                       f"left incomplete")
        elif complete:
            message = f"{verb} {collection} {record['id']}; processing complete"
        else:
            message = (f"{verb} {collection} {record['id']}; waiting on {len(completion.pending)} "
                       f"related record(s), {final.get('queued', 0)} queued")
        return ImportResult(
            collection=collection,
            message=message,
            record=record,
            created=bool(final.get("created")),
            complete=complete,
            queued=final.get("queued", 0),
        )

    # Operations

    def import_game(self, bgg_id: int) -> ImportResult:
        """
        Import a game (or expansion) by catalog id.

        Importing an id that is already complete returns the stored record
        without fetching. An incomplete record is resumed.
        """
        logger.info(f"Importing game {bgg_id}")
        return self._run(GAMES, bgg_id=bgg_id)

    def import_accessory(self, bgg_id: int) -> ImportResult:
        logger.info(f"Importing accessory {bgg_id}")
        return self._run(ACCESSORIES, bgg_id=bgg_id)

    def import_publisher(self, bgg_id: int, name: Optional[str] = None) -> ImportResult:
        """Fetch a publisher's family record and enrich the stored publisher."""
        logger.info(f"Importing publisher {bgg_id}")
        return self._run(PUBLISHERS, bgg_id=bgg_id, name=name)

    def refresh(self, record_id: int, collection: str = GAMES, parent_id: Optional[int] = None,
                process_accessories: bool = True, depth: int = 0) -> ImportResult:
        """
        Re-fetch a stored record that is still incomplete.

        Args:
            record_id: Document id of the game or accessory
            collection: "games" or "accessories"
            parent_id: Game that referenced this record, checked for rollup afterwards
            process_accessories: Whether to reconcile a game's accessories
            depth: Follow-up depth of this refresh
        """
        if collection not in (GAMES, ACCESSORIES):
            raise ValueError(f"Cannot refresh collection {collection}")
        parent = (GAMES, parent_id) if parent_id else None
        return self._run(collection, record_id=record_id, parent=parent, depth=depth,
                         process_accessories=process_accessories)

    def refresh_many(self, ids: Iterable[int], collection: str = GAMES) -> BatchResult:
        """Refresh several records; one failing id does not stop the rest."""
        results: List[ImportResult] = []
        errors: List[Dict[str, Any]] = []
        ids = list(ids)
        for record_id in ids:
            try:
                results.append(self.refresh(record_id, collection))
            except Exception as e:
                logger.error(f"Refreshing {collection} {record_id} failed: {e}")
                errors.append({"id": record_id, "collection": collection, "error": str(e)})
        completed = sum(1 for r in results if r.complete)
        return BatchResult(
            message=(f"Refreshed {len(results)} of {len(ids)} {collection}: "
                     f"{completed} complete, {len(errors)} failed"),
            results=results,
            errors=errors,
            queued=sum(r.queued for r in results),
        )

    def refresh_pending(self, limit: int = 10) -> BatchResult:
        """
        Find incomplete games and accessories and push them forward.

        Games whose own fields are already written get a rollup check first
        and are only re-fetched if that does not complete them.
        """
        games = self.store.find(
            GAMES, {"processing_state": {"in": [ProcessingState.UNPROCESSED.value,
                                                ProcessingState.PROCESSING.value]}}, limit=limit)
        accessories = self.store.find(ACCESSORIES, {"processing": {"equals": True}}, limit=limit)
        logger.info(f"Found {len(games)} incomplete games and {len(accessories)} incomplete accessories")

        game_ids = []
        rolled_up = 0
        for game in games:
            key = (GAMES, game["id"])
            if self.tracker.state_of(GAMES, game) is ProcessingState.PROCESSING and self.tracker.rollup(key):
                rolled_up += 1
                continue
            game_ids.append(game["id"])

        batch = self.refresh_many(game_ids, GAMES)
        accessory_batch = self.refresh_many([a["id"] for a in accessories], ACCESSORIES)
        batch.results.extend(accessory_batch.results)
        batch.errors.extend(accessory_batch.errors)
        batch.queued += accessory_batch.queued
        batch.message = (f"Processed {len(games)} games and {len(accessories)} accessories: "
                         f"{rolled_up} completed by rollup, {len(batch.results)} refreshed, "
                         f"{len(batch.errors)} failed")
        return batch

    def enqueue(self, items: Iterable[Mapping[str, Any]]) -> BatchResult:
        """
        Queue records for background completion.

        Each item is a mapping like {"id": 12, "collectionKind": "games", "parentId": 3}.
        Items that do not validate are skipped.
        """
        queued = 0
        skipped = 0
        for item in items:
            try:
                request = FollowUpRequest.model_validate(item)
            except ValidationError as e:
                skipped += 1
                logger.warning(f"Skipping invalid follow-up item {item!r}: {e.error_count()} error(s)")
                continue
            task = request.to_task()
            parent = (GAMES, task.parent_id) if task.parent_id else None
            if self.tracker.dispatch([task.key], parent=parent, depth=task.depth):
                queued += 1
            else:
                skipped += 1
        return BatchResult(message=f"Queued {queued} item(s), skipped {skipped}", queued=queued, skipped=skipped)

    def search(self, query: str) -> List[SearchHit]:
        """Search the catalog by name; at most the first 25 hits are returned."""
        if not query or not query.strip():
            return []
        raw = self.context.transport.search(query.strip())
        return self.context.mapper.map_search_results(self.context.normalizer.items(raw),
                                                      limit=SEARCH_RESULT_LIMIT)

    def _handle_follow_up(self, task: FollowUpTask) -> ImportResult:
        result = self.refresh(task.record_id, task.collection, parent_id=task.parent_id, depth=task.depth)
        logger.info(f"Follow-up {task.collection} {task.record_id}: {result.message}")
        return result

    def wait_for_follow_ups(self) -> None:
        self.context.follow_ups.join()

    def close(self, wait: bool = True) -> None:
        self.context.close(wait=wait)
