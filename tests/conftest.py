"""
Pytest configuration and fixtures
"""

from typing import Dict, List
from unittest.mock import Mock

import pytest

from bgg_catalog.config import PipelineSettings
from bgg_catalog.database import DocumentStore
from bgg_catalog.pipeline import CatalogImporter, PipelineContext


GAME_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<items termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgame" id="174430">
    <thumbnail>https://cf.geekdo-images.com/gloomhaven_thumb.jpg</thumbnail>
    <image>https://cf.geekdo-images.com/gloomhaven.jpg</image>
    <name type="primary" sortindex="1" value="Gloomhaven" />
    <name type="alternate" sortindex="1" value="Gloomhaven: Edycja Polska" />
    <description>Gloomhaven is a game of Euro-inspired tactical combat.&amp;#10;&amp;#10;Players take on the role of wandering adventurers.</description>
    <yearpublished value="2017" />
    <minplayers value="1" />
    <maxplayers value="4" />
    <poll name="suggested_numplayers" title="User Suggested Number of Players" totalvotes="1000">
      <results numplayers="1">
        <result value="Best" numvotes="150" />
        <result value="Recommended" numvotes="500" />
        <result value="Not Recommended" numvotes="200" />
      </results>
      <results numplayers="3">
        <result value="Best" numvotes="700" />
        <result value="Recommended" numvotes="250" />
        <result value="Not Recommended" numvotes="20" />
      </results>
    </poll>
    <playingtime value="120" />
    <minplaytime value="60" />
    <maxplaytime value="120" />
    <minage value="14" />
    <poll name="language_dependence" title="Language Dependence" totalvotes="500">
      <results>
        <result level="1" value="No necessary in-game text" numvotes="5" />
        <result level="2" value="Some necessary text - easily memorized or small crib sheet" numvotes="20" />
        <result level="3" value="Moderate in-game text - needs crib sheet or paste ups" numvotes="60" />
        <result level="4" value="Extensive use of text - massive conversion needed to be playable" numvotes="400" />
        <result level="5" value="Unplayable in another language" numvotes="15" />
      </results>
    </poll>
    <link type="boardgamecategory" id="1022" value="Adventure" />
    <link type="boardgamecategory" id="1020" value="Exploration" />
    <link type="boardgamemechanic" id="2023" value="Cooperative Game" />
    <link type="boardgameexpansion" id="226868" value="Gloomhaven: Forgotten Circles" />
    <link type="boardgamedesigner" id="69802" value="Isaac Childres" />
    <link type="boardgameartist" id="77084" value="Alexandr Elichev" />
    <link type="boardgamepublisher" id="76" value="Stonemaier Games" />
    <statistics page="1">
      <ratings>
        <usersrated value="60000" />
        <average value="8.6" />
        <bayesaverage value="8.4" />
        <ranks>
          <rank type="subtype" id="1" name="boardgame" friendlyname="Board Game Rank" value="12" bayesaverage="8.4" />
          <rank type="family" id="5497" name="strategygames" friendlyname="Strategy Game Rank" value="3" bayesaverage="8.4" />
        </ranks>
        <averageweight value="3.91" />
      </ratings>
    </statistics>
  </item>
</items>
"""

EXPANSION_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<items termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgameexpansion" id="226868">
    <image>https://cf.geekdo-images.com/forgotten_circles.jpg</image>
    <name type="primary" sortindex="1" value="Gloomhaven: Forgotten Circles" />
    <description>The first expansion for Gloomhaven.</description>
    <yearpublished value="2019" />
    <minplayers value="1" />
    <maxplayers value="4" />
    <link type="boardgamecategory" id="1022" value="Adventure" />
    <link type="boardgameexpansion" id="174430" value="Gloomhaven" inbound="true" />
    <link type="boardgamedesigner" id="69802" value="Isaac Childres" />
    <link type="boardgamepublisher" id="76" value="Stonemaier Games" />
    <statistics page="1">
      <ratings>
        <usersrated value="5000" />
        <average value="8.3" />
        <ranks>
          <rank type="subtype" id="1" name="boardgame" friendlyname="Board Game Rank" value="Not Ranked" bayesaverage="Not Ranked" />
        </ranks>
        <averageweight value="3.8" />
      </ratings>
    </statistics>
  </item>
</items>
"""

ACCESSORY_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<items termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgameaccessory" id="230000">
    <name type="primary" sortindex="1" value="Gloomhaven: Removable Sticker Set" />
    <description>Removable stickers for Gloomhaven.</description>
    <yearpublished value="2018" />
    <link type="boardgamepublisher" id="76" value="Stonemaier Games" />
    <link type="boardgameaccessory" id="174430" value="Gloomhaven" inbound="true" />
  </item>
</items>
"""

FAMILY_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<items termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgamefamily" id="76">
    <thumbnail>https://cf.geekdo-images.com/stonemaier_thumb.png</thumbnail>
    <image>https://cf.geekdo-images.com/stonemaier.png</image>
    <name type="primary" sortindex="1" value="Stonemaier Games" />
    <description>Publisher of tabletop games.</description>
  </item>
</items>
"""

SEARCH_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<items total="2" termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgame" id="174430">
    <name type="primary" value="Gloomhaven" />
    <yearpublished value="2017" />
  </item>
  <item type="boardgameexpansion" id="226868">
    <name type="primary" value="Gloomhaven: Forgotten Circles" />
    <yearpublished value="2019" />
  </item>
</items>
"""

EMPTY_ITEMS_XML = b'<?xml version="1.0" encoding="utf-8"?><items termsofuse="x"></items>'


class FakeClock:
    """Manually advanced monotonic clock; sleeping advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport:
    """Serves canned XML per catalog id and records what was fetched."""

    def __init__(self, things: Dict[int, bytes] = None, families: Dict[int, bytes] = None,
                 search_xml: bytes = SEARCH_XML):
        self.things = dict(things or {})
        self.families = dict(families or {})
        self.search_xml = search_xml
        self.thing_calls: List[int] = []
        self.family_calls: List[int] = []
        self.search_calls: List[str] = []

    def fetch_thing(self, ids, stats=True):
        self.thing_calls.append(int(ids))
        return self.things.get(int(ids), EMPTY_ITEMS_XML)

    def fetch_family(self, ids):
        self.family_calls.append(int(ids))
        return self.families.get(int(ids), EMPTY_ITEMS_XML)

    def search(self, query, types=("boardgame", "boardgameexpansion"), exact=False):
        self.search_calls.append(query)
        return self.search_xml


class SyncQueue:
    """Follow-up queue that holds tasks until drain() runs them in order."""

    def __init__(self):
        self.handler = None
        self.tasks = []
        self.submitted = 0

    def submit(self, task) -> bool:
        self.tasks.append(task)
        self.submitted += 1
        return True

    def drain(self, limit: int = 50) -> int:
        ran = 0
        while self.tasks and ran < limit:
            self.handler(self.tasks.pop(0))
            ran += 1
        return ran

    def join(self):
        self.drain()

    def shutdown(self, wait=True):
        self.tasks.clear()

    def stats(self):
        return {"submitted": self.submitted, "pending": len(self.tasks)}


@pytest.fixture
def fake_clock():
    """Fake clock shared by rate limit tests"""
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """File-backed document store under the test's tmp directory"""
    return DocumentStore(tmp_path / "catalog.db")


@pytest.fixture
def transport():
    """Fake transport with the Gloomhaven family of records"""
    return FakeTransport(
        things={174430: GAME_XML, 226868: EXPANSION_XML, 230000: ACCESSORY_XML},
        families={76: FAMILY_XML},
    )


@pytest.fixture
def assets():
    """Asset store stand-in that never touches the network"""
    mock_assets = Mock()
    mock_assets.store_from_url.return_value = 501
    return mock_assets


@pytest.fixture
def follow_ups():
    return SyncQueue()


@pytest.fixture
def context(tmp_path, store, transport, assets, follow_ups):
    """Pipeline context wired to fakes"""
    settings = PipelineSettings(
        db_path=tmp_path / "catalog.db",
        media_dir=tmp_path / "media",
        follow_up_max_delay_s=0,
    )
    ctx = PipelineContext.create(settings, store=store, transport=transport,
                                 assets=assets, follow_ups=follow_ups)
    yield ctx
    ctx.close()


@pytest.fixture
def importer(context):
    return CatalogImporter(context)
