"""
Unit tests for the wire format normalizer
"""

import pytest

from bgg_catalog.error_handling import MalformedWireData
from bgg_catalog.parsing import CatalogRecord, Many, Single, WireFormatNormalizer, as_list

from .conftest import GAME_XML


@pytest.fixture
def normalizer():
    return WireFormatNormalizer()


class TestShapes:
    """Test the Single / Many wrappers"""

    def test_as_list_flattens_every_shape(self):
        assert as_list(None) == []
        assert as_list(Single("a")) == ["a"]
        assert as_list(Many(["a", "b"])) == ["a", "b"]
        assert as_list(["a"]) == ["a"]
        assert as_list("a") == ["a"]

    def test_repeated_children_become_many(self, normalizer):
        record = normalizer.parse(b"<item><link id='1'/><link id='2'/><name value='x'/></item>")

        assert isinstance(record.shape("link"), Many)
        assert isinstance(record.shape("name"), Single)
        assert [link.attr("id") for link in record.records("link")] == ["1", "2"]
        assert record.get("missing") is None


class TestWireFormatNormalizer:
    """Test parsing catalog responses"""

    def test_items_returns_item_records(self, normalizer):
        items = normalizer.items(GAME_XML)

        assert len(items) == 1
        item = items[0]
        assert isinstance(item, CatalogRecord)
        assert item.attr("id") == "174430"
        assert item.attr("type") == "boardgame"

    def test_text_only_elements_collapse_to_scalars(self, normalizer):
        item = normalizer.items(GAME_XML)[0]

        assert item.get("image") == "https://cf.geekdo-images.com/gloomhaven.jpg"
        assert item.value_of("yearpublished") == "2017"
        assert item.get("description").startswith("Gloomhaven is a game")

    def test_children_keep_document_order(self, normalizer):
        item = normalizer.items(GAME_XML)[0]

        names = [name.attr("value") for name in item.records("name")]
        assert names == ["Gloomhaven", "Gloomhaven: Edycja Polska"]

    def test_nested_records(self, normalizer):
        item = normalizer.items(GAME_XML)[0]

        ratings = item.get("statistics").get("ratings")
        assert ratings.value_of("average") == "8.6"
        ranks = ratings.get("ranks").records("rank")
        assert [r.attr("id") for r in ranks] == ["1", "5497"]

    def test_empty_element_collapses_to_empty_string(self, normalizer):
        record = normalizer.parse("<item><description></description></item>")

        assert record.get("description") == ""

    def test_str_payloads_are_accepted(self, normalizer):
        items = normalizer.items('<items><item id="5" type="boardgame"/></items>')

        assert items[0].attr("id") == "5"

    def test_empty_items(self, normalizer):
        assert normalizer.items(b"<items total='0'></items>") == []

    @pytest.mark.parametrize("payload", [b"", b"   ", b"<items><item>", b"not xml at all"])
    def test_unparseable_payloads_raise(self, normalizer, payload):
        with pytest.raises(MalformedWireData):
            normalizer.parse(payload)

    def test_error_document_raises(self, normalizer):
        """Test the service's in-band error document is surfaced"""
        payload = b"<errors><error><message>Rate limit exceeded.</message></error></errors>"

        with pytest.raises(MalformedWireData, match="Rate limit exceeded"):
            normalizer.items(payload)

    def test_unexpected_root_raises(self, normalizer):
        with pytest.raises(MalformedWireData):
            normalizer.items(b"<html><body>maintenance</body></html>")
