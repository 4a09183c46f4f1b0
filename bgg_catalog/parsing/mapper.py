"""
Projects normalized catalog records into domain-shaped records.

Missing or unparsable optional fields map to None and are logged at debug
level only; the mapper never raises for them.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..config import LINK_TYPES, WEBSITE_LINK_TYPES
from .normalizer import CatalogRecord

logger = logging.getLogger(__name__)

NOT_RANKED = "Not Ranked"
OVERALL_RANK_ID = "1"
OVERALL_RANK_NAME = "boardgame"
LANGUAGE_POLL = "language_dependence"
PLAYER_COUNT_POLL = "suggested_numplayers"

GAME_RELATIONSHIPS = (
    "publishers", "designers", "artists", "categories", "mechanics",
    "types", "accessories", "expansions", "implementations",
)


class NamedCandidate(BaseModel):
    """A relationship target as referenced by a link entry."""
    name: Optional[str] = None
    bgg_id: Optional[int] = None


class LanguageDependence(BaseModel):
    level: Optional[int] = None
    label: str
    votes: int = 0


class PlayerCountVotes(BaseModel):
    player_count: str
    best: int = 0
    recommended: int = 0
    not_recommended: int = 0


class MappedGame(BaseModel):
    bgg_id: Optional[int] = None
    item_type: Optional[str] = None
    name: Optional[str] = None
    alternate_names: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    official_link: Optional[str] = None
    year_published: Optional[int] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None
    playing_time: Optional[int] = None
    min_playtime: Optional[int] = None
    max_playtime: Optional[int] = None
    min_age: Optional[int] = None
    complexity: Optional[float] = None
    user_rating: Optional[float] = None
    user_rated_count: Optional[int] = None
    bgg_rank: Optional[int] = None
    language_dependence: Optional[LanguageDependence] = None
    suggested_player_count: List[PlayerCountVotes] = Field(default_factory=list)

    publishers: List[NamedCandidate] = Field(default_factory=list)
    designers: List[NamedCandidate] = Field(default_factory=list)
    artists: List[NamedCandidate] = Field(default_factory=list)
    categories: List[NamedCandidate] = Field(default_factory=list)
    mechanics: List[NamedCandidate] = Field(default_factory=list)
    types: List[NamedCandidate] = Field(default_factory=list)
    accessories: List[NamedCandidate] = Field(default_factory=list)
    expansions: List[NamedCandidate] = Field(default_factory=list)
    implementations: List[NamedCandidate] = Field(default_factory=list)
    base_game: Optional[NamedCandidate] = None

    @property
    def is_expansion(self) -> bool:
        return self.item_type == LINK_TYPES["expansions"]

    def relationships(self) -> Dict[str, List[NamedCandidate]]:
        return {kind: getattr(self, kind) for kind in GAME_RELATIONSHIPS}

    def primary_fields(self) -> dict:
        """Scalar fields to persist, leaving out the ones that are unset."""
        fields = self.model_dump(
            exclude=set(GAME_RELATIONSHIPS) | {"base_game", "description", "image_url", "bgg_id", "name"},
            exclude_none=True,
        )
        if not fields.get("suggested_player_count"):
            fields.pop("suggested_player_count", None)
        if not fields.get("alternate_names"):
            fields.pop("alternate_names", None)
        return fields


class MappedAccessory(BaseModel):
    bgg_id: Optional[int] = None
    name: Optional[str] = None
    alternate_names: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    year_published: Optional[int] = None
    publishers: List[NamedCandidate] = Field(default_factory=list)
    games: List[NamedCandidate] = Field(default_factory=list)


class MappedPublisher(BaseModel):
    bgg_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None


class SearchHit(BaseModel):
    bgg_id: int
    item_type: Optional[str] = None
    name: str
    year_published: Optional[int] = None


def to_int(value: Optional[str], field_name: str = "") -> Optional[int]:
    """Coerce to int; absent or non-numeric values become None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.debug(f"Unparsable integer for {field_name or 'field'}: {value!r}")
        return None


def to_float(value: Optional[str], field_name: str = "") -> Optional[float]:
    """Coerce to float; absent or non-numeric values become None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparsable number for {field_name or 'field'}: {value!r}")
        return None


def _text(value) -> Optional[str]:
    if isinstance(value, CatalogRecord):
        value = value.text
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


class CatalogRecordMapper:
    """
    Maps CatalogRecord items into MappedGame, MappedAccessory and
    MappedPublisher records.
    """

    def __init__(self, link_types: Optional[Dict[str, str]] = None):
        self.link_types = dict(link_types or LINK_TYPES)

    # Names

    def select_names(self, record: CatalogRecord):
        """
        Pick the primary name and alternates.

        Returns:
            Tuple of (primary name or None, list of alternate names)
        """
        entries = []
        for name in record.get_all("name"):
            if isinstance(name, CatalogRecord):
                value = name.attr("value", name.text)
                entries.append((name.attr("type"), value))
            elif name:
                entries.append((None, name))
        entries = [(kind, value.strip()) for kind, value in entries if value and value.strip()]
        if not entries:
            logger.debug(f"No name found for item {record.attr('id')}")
            return None, []

        primary_index = next((i for i, (kind, _) in enumerate(entries) if kind == "primary"), 0)
        primary = entries[primary_index][1]
        alternates = [value for i, (_, value) in enumerate(entries) if i != primary_index]
        return primary, alternates

    # Links

    def links_of_type(self, record: CatalogRecord, link_type: str) -> List[CatalogRecord]:
        return [link for link in record.records("link") if link.attr("type") == link_type]

    def _candidate(self, link: CatalogRecord) -> NamedCandidate:
        return NamedCandidate(name=link.attr("value"), bgg_id=to_int(link.attr("id"), "link id"))

    def extract_links(self, record: CatalogRecord, kind: str) -> List[NamedCandidate]:
        """Links for one relationship kind, excluding inbound expansion links."""
        link_type = self.link_types[kind]
        links = self.links_of_type(record, link_type)
        if kind in ("expansions", "accessories"):
            links = [link for link in links if not _is_inbound(link)]
        return [self._candidate(link) for link in links]

    def extract_base_game(self, record: CatalogRecord) -> Optional[NamedCandidate]:
        inbound = [link for link in self.links_of_type(record, self.link_types["expansions"])
                   if _is_inbound(link)]
        if not inbound:
            return None
        if len(inbound) > 1:
            logger.debug(f"Item {record.attr('id')} expands {len(inbound)} base games; keeping the first")
        return self._candidate(inbound[0])

    def extract_official_link(self, record: CatalogRecord) -> Optional[str]:
        for link in record.records("link"):
            if link.attr("type") in WEBSITE_LINK_TYPES:
                return link.attr("value") or link.attr("href")
        return None

    # Statistics

    def _ratings(self, record: CatalogRecord) -> Optional[CatalogRecord]:
        statistics = record.get("statistics")
        if not isinstance(statistics, CatalogRecord):
            return None
        ratings = statistics.get("ratings")
        return ratings if isinstance(ratings, CatalogRecord) else None

    def extract_rank(self, ratings: Optional[CatalogRecord]) -> Optional[int]:
        """Overall rank, or None when absent or reported as not ranked."""
        if ratings is None:
            return None
        ranks = ratings.get("ranks")
        if not isinstance(ranks, CatalogRecord):
            return None
        for rank in ranks.records("rank"):
            if rank.attr("id") == OVERALL_RANK_ID or rank.attr("name") == OVERALL_RANK_NAME:
                value = rank.attr("value")
                if value is None or value == NOT_RANKED:
                    return None
                return to_int(value, "rank")
        return None

    # Polls

    def _poll(self, record: CatalogRecord, name: str) -> Optional[CatalogRecord]:
        return next((p for p in record.records("poll") if p.attr("name") == name), None)

    def extract_language_dependence(self, record: CatalogRecord) -> Optional[LanguageDependence]:
        poll = self._poll(record, LANGUAGE_POLL)
        if poll is None:
            return None
        options = []
        for results in poll.records("results"):
            options.extend(results.records("result"))
        best = None
        best_votes = -1
        for option in options:
            votes = to_int(option.attr("numvotes"), "numvotes") or 0
            if votes > best_votes:
                best, best_votes = option, votes
        if best is None or not best.attr("value"):
            return None
        # Vote options are numbered 1-5 on the wire; the stored scale is 0-4
        wire_level = to_int(best.attr("level"), "language level")
        level = wire_level - 1 if wire_level is not None and 1 <= wire_level <= 5 else None
        return LanguageDependence(
            level=level,
            label=best.attr("value"),
            votes=max(best_votes, 0),
        )

    def extract_player_counts(self, record: CatalogRecord) -> List[PlayerCountVotes]:
        poll = self._poll(record, PLAYER_COUNT_POLL)
        if poll is None:
            return []
        rows = []
        for results in poll.records("results"):
            count = results.attr("numplayers")
            if not count:
                continue
            tallies = {r.attr("value"): to_int(r.attr("numvotes"), "numvotes") or 0
                       for r in results.records("result")}
            rows.append(PlayerCountVotes(
                player_count=count,
                best=tallies.get("Best", 0),
                recommended=tallies.get("Recommended", 0),
                not_recommended=tallies.get("Not Recommended", 0),
            ))
        return rows

    # Records

    def map_game(self, record: CatalogRecord) -> MappedGame:
        name, alternates = self.select_names(record)
        ratings = self._ratings(record)

        def rating_value(field_name):
            return ratings.value_of(field_name) if ratings is not None else None

        game = MappedGame(
            bgg_id=to_int(record.attr("id"), "id"),
            item_type=record.attr("type"),
            name=name,
            alternate_names=alternates,
            description=_text(record.get("description")),
            image_url=_text(record.get("image")),
            thumbnail_url=_text(record.get("thumbnail")),
            official_link=self.extract_official_link(record),
            year_published=to_int(record.value_of("yearpublished"), "yearpublished"),
            min_players=to_int(record.value_of("minplayers"), "minplayers"),
            max_players=to_int(record.value_of("maxplayers"), "maxplayers"),
            playing_time=to_int(record.value_of("playingtime"), "playingtime"),
            min_playtime=to_int(record.value_of("minplaytime"), "minplaytime"),
            max_playtime=to_int(record.value_of("maxplaytime"), "maxplaytime"),
            min_age=to_int(record.value_of("minage"), "minage"),
            complexity=to_float(rating_value("averageweight"), "averageweight"),
            user_rating=to_float(rating_value("average"), "average"),
            user_rated_count=to_int(rating_value("usersrated"), "usersrated"),
            bgg_rank=self.extract_rank(ratings),
            language_dependence=self.extract_language_dependence(record),
            suggested_player_count=self.extract_player_counts(record),
            base_game=self.extract_base_game(record),
            **{kind: self.extract_links(record, kind) for kind in GAME_RELATIONSHIPS},
        )

        # Fall back to the item type when no explicit type links are present
        if not game.types and game.item_type:
            game.types = [NamedCandidate(name=game.item_type)]
        return game

    def map_accessory(self, record: CatalogRecord) -> MappedAccessory:
        name, alternates = self.select_names(record)
        games = [self._candidate(link)
                 for link in self.links_of_type(record, self.link_types["accessories"])
                 if _is_inbound(link)]
        return MappedAccessory(
            bgg_id=to_int(record.attr("id"), "id"),
            name=name,
            alternate_names=alternates,
            description=_text(record.get("description")),
            image_url=_text(record.get("image")),
            thumbnail_url=_text(record.get("thumbnail")),
            year_published=to_int(record.value_of("yearpublished"), "yearpublished"),
            publishers=self.extract_links(record, "publishers"),
            games=games,
        )

    def map_publisher(self, record: CatalogRecord) -> MappedPublisher:
        name, _ = self.select_names(record)
        return MappedPublisher(
            bgg_id=to_int(record.attr("id"), "id"),
            name=name,
            description=_text(record.get("description")),
            image_url=_text(record.get("image")),
            thumbnail_url=_text(record.get("thumbnail")),
        )

    def map_search_results(self, records: List[CatalogRecord], limit: Optional[int] = None) -> List[SearchHit]:
        hits = []
        for record in records:
            bgg_id = to_int(record.attr("id"), "id")
            name, _ = self.select_names(record)
            if bgg_id is None or not name:
                continue
            hits.append(SearchHit(
                bgg_id=bgg_id,
                item_type=record.attr("type"),
                name=name,
                year_published=to_int(record.value_of("yearpublished"), "yearpublished"),
            ))
            if limit is not None and len(hits) >= limit:
                break
        return hits


def _is_inbound(link: CatalogRecord) -> bool:
    return (link.attr("inbound") or "").lower() == "true"
