"""
Unit tests for the catalog record mapper
"""

import pytest

from bgg_catalog.parsing import CatalogRecordMapper, WireFormatNormalizer
from bgg_catalog.parsing.mapper import to_float, to_int

from .conftest import ACCESSORY_XML, EXPANSION_XML, FAMILY_XML, GAME_XML, SEARCH_XML


@pytest.fixture
def mapper():
    return CatalogRecordMapper()


def _item(raw):
    return WireFormatNormalizer().items(raw)[0]


def _wrap(body: str):
    return _item(f'<items><item type="boardgame" id="1">{body}</item></items>')


class TestCoercion:
    """Test numeric coercion of wire values"""

    def test_to_int(self):
        assert to_int("12") == 12
        assert to_int("12.0") == 12
        assert to_int(None) is None
        assert to_int("") is None
        assert to_int("Not Ranked") is None

    def test_to_float(self):
        assert to_float("3.91") == pytest.approx(3.91)
        assert to_float("n/a") is None


class TestMapGame:
    """Test mapping a full game record"""

    def test_primary_fields(self, mapper):
        game = mapper.map_game(_item(GAME_XML))

        assert game.bgg_id == 174430
        assert game.name == "Gloomhaven"
        assert game.alternate_names == ["Gloomhaven: Edycja Polska"]
        assert game.year_published == 2017
        assert (game.min_players, game.max_players) == (1, 4)
        assert (game.playing_time, game.min_playtime, game.max_playtime) == (120, 60, 120)
        assert game.min_age == 14
        assert game.complexity == pytest.approx(3.91)
        assert game.user_rating == pytest.approx(8.6)
        assert game.user_rated_count == 60000
        assert game.image_url == "https://cf.geekdo-images.com/gloomhaven.jpg"
        assert game.description.startswith("Gloomhaven is a game")

    def test_overall_rank(self, mapper):
        """Test the rank entry with id 1 is the overall rank"""
        game = mapper.map_game(_item(GAME_XML))

        assert game.bgg_rank == 12

    def test_not_ranked_sentinel_is_unset(self, mapper):
        game = mapper.map_game(_item(EXPANSION_XML))

        assert game.bgg_rank is None

    def test_missing_statistics_leave_fields_unset(self, mapper):
        game = mapper.map_game(_wrap('<name type="primary" value="Bare"/><minplayers value=""/>'))

        assert game.name == "Bare"
        assert game.min_players is None
        assert game.complexity is None
        assert game.bgg_rank is None

    def test_relationship_lists(self, mapper):
        game = mapper.map_game(_item(GAME_XML))

        assert [p.name for p in game.publishers] == ["Stonemaier Games"]
        assert game.publishers[0].bgg_id == 76
        assert [c.name for c in game.categories] == ["Adventure", "Exploration"]
        assert [m.name for m in game.mechanics] == ["Cooperative Game"]
        assert [d.name for d in game.designers] == ["Isaac Childres"]
        assert [a.name for a in game.artists] == ["Alexandr Elichev"]
        assert [e.bgg_id for e in game.expansions] == [226868]
        assert game.base_game is None

    def test_types_fall_back_to_item_type(self, mapper):
        game = mapper.map_game(_item(GAME_XML))

        assert [t.name for t in game.types] == ["boardgame"]

    def test_expansion_and_base_game_are_split(self, mapper):
        """Test the inbound flag separates the base game from expansions"""
        record = _wrap(
            '<name type="primary" value="X"/>'
            '<link type="boardgameexpansion" id="10" value="Some Expansion"/>'
            '<link type="boardgameexpansion" id="20" value="Base Game" inbound="true"/>'
        )

        game = mapper.map_game(record)

        assert [e.name for e in game.expansions] == ["Some Expansion"]
        assert game.base_game.name == "Base Game"
        assert game.base_game.bgg_id == 20

    def test_expansion_record(self, mapper):
        game = mapper.map_game(_item(EXPANSION_XML))

        assert game.is_expansion
        assert game.expansions == []
        assert game.base_game.bgg_id == 174430

    def test_language_dependence_picks_most_voted_option(self, mapper):
        game = mapper.map_game(_item(GAME_XML))

        assert game.language_dependence.level == 3
        assert game.language_dependence.label.startswith("Extensive use of text")
        assert game.language_dependence.votes == 400

    @pytest.mark.parametrize("level_attr,expected", [('level="1"', 0), ('level="5"', 4), ("", None)])
    def test_language_level_uses_zero_based_scale(self, mapper, level_attr, expected):
        record = _wrap('<name type="primary" value="X"/>'
                       '<poll name="language_dependence" totalvotes="3"><results>'
                       f'<result {level_attr} value="Some label" numvotes="3"/>'
                       '</results></poll>')

        assert mapper.map_game(record).language_dependence.level == expected

    def test_player_count_poll_rows(self, mapper):
        game = mapper.map_game(_item(GAME_XML))

        rows = {row.player_count: row for row in game.suggested_player_count}
        assert set(rows) == {"1", "3"}
        assert (rows["3"].best, rows["3"].recommended, rows["3"].not_recommended) == (700, 250, 20)

    def test_primary_name_falls_back_to_first(self, mapper):
        record = _wrap('<name type="alternate" value="First"/><name type="alternate" value="Second"/>')

        assert mapper.map_game(record).name == "First"

    def test_official_link(self, mapper):
        record = _wrap('<name type="primary" value="X"/>'
                       '<link type="boardgamewebsite" id="0" value="https://example.com/x"/>')

        assert mapper.map_game(record).official_link == "https://example.com/x"

    def test_primary_fields_leave_out_unset_values(self, mapper):
        game = mapper.map_game(_wrap('<name type="primary" value="X"/><yearpublished value="2001"/>'))

        fields = game.primary_fields()
        assert fields["year_published"] == 2001
        assert "min_players" not in fields
        assert "publishers" not in fields
        assert "name" not in fields


class TestOtherRecords:
    """Test accessories, publishers and search hits"""

    def test_map_accessory(self, mapper):
        accessory = mapper.map_accessory(_item(ACCESSORY_XML))

        assert accessory.bgg_id == 230000
        assert accessory.name == "Gloomhaven: Removable Sticker Set"
        assert [p.name for p in accessory.publishers] == ["Stonemaier Games"]
        assert [g.bgg_id for g in accessory.games] == [174430]

    def test_map_publisher(self, mapper):
        publisher = mapper.map_publisher(_item(FAMILY_XML))

        assert publisher.bgg_id == 76
        assert publisher.name == "Stonemaier Games"
        assert publisher.image_url == "https://cf.geekdo-images.com/stonemaier.png"

    def test_map_search_results_respects_limit(self, mapper):
        records = WireFormatNormalizer().items(SEARCH_XML)

        hits = mapper.map_search_results(records)
        limited = mapper.map_search_results(records, limit=1)

        assert [(h.bgg_id, h.name, h.year_published) for h in hits] == [
            (174430, "Gloomhaven", 2017),
            (226868, "Gloomhaven: Forgotten Circles", 2019),
        ]
        assert len(limited) == 1
