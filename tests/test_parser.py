"""Tests for the catalog XML parsers."""

from __future__ import annotations

from datetime import UTC, datetime

from shelfwise.storage.models import BoxDimensions, ExpansionLink
from shelfwise.sync.parser import parse_collection, parse_dimensions, parse_expansions

# ---------------------------------------------------------------------------
# Expansion links
# ---------------------------------------------------------------------------

_THING_XML = """<?xml version="1.0" encoding="utf-8"?>
<items termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgame" id="822">
    <name type="primary" sortindex="1" value="Carcassonne"/>
    <link type="boardgameexpansion" id="2993" value="Carcassonne: Expansion 1"/>
    <link type="boardgamemechanic" id="2002" value="Tile Placement"/>
  </item>
  <item type="boardgameexpansion" id="2993">
    <name type="primary" sortindex="1" value="Carcassonne: Expansion 1"/>
    <link type="boardgameexpansion" id="822" value="Carcassonne" inbound="true"/>
    <link type="boardgamepublisher" id="267" value="Hans im Glück"/>
  </item>
  <item type="boardgameaccessory" id="5000">
    <link type="boardgameexpansion" id="822" value="Carcassonne" inbound="true"/>
  </item>
</items>
"""


def test_expansion_links_only_inbound():
    result = parse_expansions(_THING_XML)
    assert result[2993] == [ExpansionLink(base_id=822, base_name="Carcassonne")]
    assert result[822] == []


def test_expansion_ignores_non_game_items():
    assert 5000 not in parse_expansions(_THING_XML)


def test_expansion_malformed_item_skipped():
    xml = """<items>
      <item type="boardgameexpansion" id="abc">
        <link type="boardgameexpansion" id="1" value="X" inbound="true"/>
      </item>
      <item type="boardgameexpansion" id="7">
        <link type="boardgameexpansion" id="1" value="X" inbound="true"/>
      </item>
    </items>"""
    assert parse_expansions(xml) == {7: [ExpansionLink(base_id=1, base_name="X")]}


def test_expansion_malformed_payload_is_empty():
    assert parse_expansions("<html><body>Service unavailable") == {}
    assert parse_expansions(b"") == {}


# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------

_VERSIONS_XML = """<items>
  <item type="boardgame" id="13">
    <versions>
      <item type="boardgameversion" id="1">
        <width value="0"/><length value="0"/><depth value="0"/>
      </item>
      <item type="boardgameversion" id="2">
        <width value="11.75"/><length value="11.75"/><depth value="2.5"/>
      </item>
      <item type="boardgameversion" id="3">
        <width value="10"/><length value="10"/><depth value="3"/>
      </item>
    </versions>
  </item>
  <item type="boardgame" id="14">
    <versions>
      <item type="boardgameversion" id="9">
        <width value="12"/><length value="12"/><depth value=""/>
      </item>
    </versions>
  </item>
  <item type="boardgame" id="15"/>
</items>
"""


def test_dimensions_first_complete_version_wins():
    result = parse_dimensions(_VERSIONS_XML)
    assert result[13] == BoxDimensions(width=11.75, length=11.75, depth=2.5, volume=345.16)


def test_dimensions_incomplete_items_omitted():
    result = parse_dimensions(_VERSIONS_XML)
    assert 14 not in result
    assert 15 not in result


def test_dimensions_volume_uses_unrounded_values():
    xml = """<items><item type="boardgame" id="1"><versions>
      <item type="boardgameversion" id="1">
        <width value="10.004"/><length value="10.004"/><depth value="10.004"/>
      </item>
    </versions></item></items>"""
    dims = parse_dimensions(xml)[1]
    assert dims.width == 10.0
    assert dims.volume == round(10.004**3, 2)


def test_dimensions_too_small_to_round_skips_version_not_siblings():
    xml = """<items>
      <item type="boardgame" id="1"><versions>
        <item type="boardgameversion" id="1">
          <width value="0.1"/><length value="0.1"/><depth value="0.1"/>
        </item>
      </versions></item>
      <item type="boardgame" id="2"><versions>
        <item type="boardgameversion" id="2">
          <width value="0.004"/><length value="12"/><depth value="3"/>
        </item>
        <item type="boardgameversion" id="3">
          <width value="12"/><length value="12"/><depth value="3"/>
        </item>
      </versions></item>
      <item type="boardgame" id="3"><versions>
        <item type="boardgameversion" id="4">
          <width value="12"/><length value="12"/><depth value="3"/>
        </item>
      </versions></item>
    </items>"""
    result = parse_dimensions(xml)
    assert 1 not in result
    assert result[2] == BoxDimensions(width=12, length=12, depth=3, volume=432)
    assert result[3].volume == 432


def test_dimensions_malformed_payload_is_empty():
    assert parse_dimensions("not xml") == {}


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

_COLLECTION_XML = """<items totalitems="3">
  <item objecttype="thing" objectid="13" subtype="boardgame" collid="1001">
    <name sortindex="1">Catan</name>
    <yearpublished>1995</yearpublished>
    <stats minplayers="3" maxplayers="4">
      <rating value="7.5"><averageweight value="2.3"/></rating>
    </stats>
    <status own="1" lastmodified="2019-03-02 10:11:12"/>
    <numplays>4</numplays>
    <comment>Missing one road</comment>
  </item>
  <item objecttype="thing" objectid="822" subtype="boardgame" collid="1002">
    <name sortindex="1">Carcassonne</name>
    <stats minplayers="2" maxplayers="5">
      <rating value="N/A"><averageweight value="1.9"/></rating>
    </stats>
    <status own="1" lastmodified="2021-07-01 00:00:00"/>
    <numplays>0</numplays>
  </item>
  <item objecttype="thing" objectid="2993" subtype="boardgameexpansion" collid="1003">
    <name sortindex="1">Carcassonne: Expansion 1</name>
  </item>
  <item objecttype="thing" subtype="boardgame" collid="1004">
    <name sortindex="1">No id</name>
  </item>
</items>
"""


def test_collection_parses_fields():
    items = {item.item_id: item for item in parse_collection(_COLLECTION_XML)}
    catan = items[13]
    assert catan.name == "Catan"
    assert catan.collection_id == 1001
    assert catan.year_published == 1995
    assert catan.play_count == 4
    assert catan.user_rating == 7.5
    assert catan.weight == 2.3
    assert (catan.min_players, catan.max_players) == (3, 4)
    assert catan.comment == "Missing one road"
    assert catan.date_added == datetime(2019, 3, 2, 10, 11, 12, tzinfo=UTC)
    assert catan.last_played == catan.date_added


def test_collection_unrated_and_unplayed():
    carcassonne = next(i for i in parse_collection(_COLLECTION_XML) if i.item_id == 822)
    assert carcassonne.user_rating is None
    assert carcassonne.play_count == 0
    assert carcassonne.last_played is None


def test_collection_skips_expansions_and_malformed():
    assert [i.item_id for i in parse_collection(_COLLECTION_XML)] == [13, 822]


def test_collection_malformed_payload_is_empty():
    assert parse_collection("<items") == []
