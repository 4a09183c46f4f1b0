"""
Unit tests for the document store and asset store
"""

from unittest.mock import Mock

import pytest

from bgg_catalog.database import AssetStore, derive_filename
from bgg_catalog.error_handling import DocumentNotFound, DuplicateDocument


class TestDocumentStore:
    """Test create / find / update over sqlite"""

    def test_create_and_find_by_id(self, store):
        doc = store.create("games", {"name": "Gloomhaven", "bgg_id": 174430, "processing_state": "unprocessed"})

        found = store.find_by_id("games", doc["id"])
        assert found["name"] == "Gloomhaven"
        assert found["bgg_id"] == 174430
        assert found["processing_state"] == "unprocessed"

    def test_find_by_unknown_id_raises(self, store):
        with pytest.raises(DocumentNotFound):
            store.find_by_id("games", 999)

    def test_in_filter_on_name(self, store):
        for name in ("Reiner Knizia", "Uwe Rosenberg", "Vital Lacerda"):
            store.create("designers", {"name": name})

        docs = store.find("designers", {"name": {"in": ["Reiner Knizia", "Vital Lacerda", "Nobody"]}})

        assert sorted(d["name"] for d in docs) == ["Reiner Knizia", "Vital Lacerda"]

    def test_empty_in_filter_matches_nothing(self, store):
        store.create("designers", {"name": "Reiner Knizia"})

        assert store.find("designers", {"name": {"in": []}}) == []

    def test_equals_filter_on_json_fields(self, store):
        store.create("accessories", {"name": "Sleeves", "bgg_id": 1, "processing": True})
        store.create("accessories", {"name": "Insert", "bgg_id": 2, "processing": False})

        pending = store.find("accessories", {"processing": {"equals": True}})

        assert [d["name"] for d in pending] == ["Sleeves"]

    def test_unique_names_for_taxonomy_collections(self, store):
        store.create("publishers", {"name": "Stonemaier Games"})

        with pytest.raises(DuplicateDocument):
            store.create("publishers", {"name": "Stonemaier Games"})

    def test_unique_bgg_id(self, store):
        store.create("games", {"name": "A", "bgg_id": 1})

        with pytest.raises(DuplicateDocument):
            store.create("games", {"name": "B", "bgg_id": 1})

    def test_update_merges_fields(self, store):
        doc = store.create("games", {"name": "A", "bgg_id": 1, "min_players": 2})

        updated = store.update("games", doc["id"], {"max_players": 4, "publishers": [1, 2]})

        assert updated["min_players"] == 2
        assert updated["max_players"] == 4
        assert store.find_by_id("games", doc["id"])["publishers"] == [1, 2]

    def test_update_unknown_id_raises(self, store):
        with pytest.raises(DocumentNotFound):
            store.update("games", 42, {"name": "x"})

    def test_unknown_collection_is_rejected(self, store):
        with pytest.raises(ValueError):
            store.find("rulebooks")

    def test_statistics_count_incomplete_records(self, store):
        store.create("games", {"name": "A", "bgg_id": 1, "processing_state": "processing"})
        store.create("games", {"name": "B", "bgg_id": 2, "processing_state": "processed"})
        store.create("accessories", {"name": "C", "bgg_id": 3, "processing": True})

        stats = store.get_statistics()

        assert stats["total_games"] == 2
        assert stats["incomplete_games"] == 1
        assert stats["incomplete_accessories"] == 1


class TestAssetStore:
    """Test image download and dedupe"""

    def test_derive_filename(self):
        assert derive_filename("https://cf.geekdo-images.com/abc/pic123.jpg") == "pic123.jpg"
        assert derive_filename("https://cf.geekdo-images.com/abc/pic 1") == "pic_1.jpg"
        assert len(derive_filename("https://x.test/" + "a" * 200 + ".png")) <= 100

    def test_store_from_url_downloads_once(self, store, tmp_path):
        session = Mock()
        session.headers = {}
        session.get.return_value = Mock(content=b"\x89PNG", raise_for_status=Mock())
        assets = AssetStore(store, tmp_path / "media", session=session)

        first = assets.store_from_url("https://cf.geekdo-images.com/x/pic1.png", alt="Gloomhaven")
        second = assets.store_from_url("https://cf.geekdo-images.com/x/pic1.png")

        assert first == second
        assert session.get.call_count == 1
        media = store.find_by_id("media", first)
        assert media["name"] == "pic1.png"
        assert media["mimetype"] == "image/png"
        assert (tmp_path / "media" / "pic1.png").read_bytes() == b"\x89PNG"

    def test_existing_media_is_reused(self, store, tmp_path):
        existing = store.create("media", {"name": "pic1.png"})
        session = Mock()
        session.headers = {}
        assets = AssetStore(store, tmp_path / "media", session=session)

        assert assets.store_from_url("https://other.host/pic1.png") == existing["id"]
        session.get.assert_not_called()

    def test_download_failure_returns_none(self, store, tmp_path):
        session = Mock()
        session.headers = {}
        session.get.side_effect = ConnectionError("offline")
        assets = AssetStore(store, tmp_path / "media", session=session)

        assert assets.store_from_url("https://cf.geekdo-images.com/x/pic2.png") is None
        assert assets.store_from_url(None) is None
