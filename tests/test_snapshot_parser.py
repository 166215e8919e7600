from __future__ import annotations

import json
import logging
import re

import pytest

from cs2_tracker.services.snapshot_parser import (
    SnapshotFormatError,
    parse_embedded_attribute,
    parse_inventory,
    parse_keychain_html,
    parse_name_tag,
    parse_snapshot_text,
    parse_sticker_html,
)
from snapshot_builders import (
    AK_REDLINE,
    INSPECT_LINK,
    NAME_TAG,
    SEALED_GRAFFITI,
    item,
    keychain_line,
    snapshot,
    snapshot_json,
    sticker_line,
    storage_unit,
)


def _parse(*entries):
    return parse_inventory(parse_snapshot_text(snapshot_json(*entries)))


def test_record_carries_float_pattern_and_inspect_link():
    [record] = _parse(item("1001", AK_REDLINE, float_value=0.2512, pattern=661))

    assert record.asset_id == "1001"
    assert record.market_hash_name == AK_REDLINE
    assert record.float_value == pytest.approx(0.2512)
    assert record.pattern_index == 661
    assert record.inspect_link == INSPECT_LINK
    assert not record.is_stattrak
    assert not record.is_souvenir


def test_inspect_link_requires_marker():
    entry = item("1001", AK_REDLINE, inspect=False)
    entry["description"]["actions"] = [{"link": "https://example.com/not-an-inspect-link"}]
    [record] = _parse(entry)
    assert record.inspect_link is None


def test_sealed_graffiti_kept_unsealed_graffiti_dropped():
    records = _parse(
        item("2001", SEALED_GRAFFITI, item_type="CSGO_Type_Spray"),
        item("2002", "Graffiti | Lambda (Blood Red)", item_type="CSGO_Type_Spray"),
    )
    assert [r.asset_id for r in records] == ["2001"]


def test_storage_unit_dropped_other_tools_kept():
    records = _parse(
        item("3001", NAME_TAG, item_type="CSGO_Type_Tool"),
        storage_unit("3002"),
    )
    assert [r.market_hash_name for r in records] == [NAME_TAG]


def test_collectibles_dropped():
    records = _parse(
        item("4001", "Service Medal 2024", item_type="CSGO_Type_Collectible"),
        item("4002", AK_REDLINE),
    )
    assert [r.asset_id for r in records] == ["4002"]


def test_stattrak_from_tag_and_souvenir_from_name():
    stattrak_tag = {"category": "Quality", "internal_name": "strange", "localized_tag_name": "StatTrak™"}
    records = _parse(
        item("5001", AK_REDLINE, tags=[stattrak_tag]),
        item("5002", "Souvenir AWP | Dragon Lore (Factory New)"),
    )
    by_id = {r.asset_id: r for r in records}
    assert by_id["5001"].is_stattrak
    assert by_id["5002"].is_souvenir
    assert not by_id["5002"].is_stattrak


def test_duplicate_asset_ids_keep_first(caplog):
    first = item("6001", AK_REDLINE)
    second = item("6001", NAME_TAG, item_type="CSGO_Type_Tool")
    with caplog.at_level(logging.WARNING):
        records = _parse(first, second)

    assert len(records) == 1
    assert records[0].market_hash_name == AK_REDLINE
    assert "Duplicate asset id" in caplog.text


def test_asset_without_description_is_skipped(caplog):
    raw = snapshot(item("7001", AK_REDLINE))
    raw["assets"].append({"assetid": "7002", "classid": "999", "instanceid": "0"})
    with caplog.at_level(logging.WARNING):
        records = parse_inventory(parse_snapshot_text(json.dumps(raw)))
    assert [r.asset_id for r in records] == ["7001"]
    assert "Description not found" in caplog.text


def test_stickers_keychain_and_name_tag_are_extracted():
    entry = item(
        "8001",
        AK_REDLINE,
        lines=[
            sticker_line("Sticker: Crown (Foil)", "Patch: Metal Skull Lock", "Howling Dawn"),
            keychain_line("Charm: Lil' Ava"),
            {"type": "html", "name": "nametag", "value": "Name Tag: ''Lucky One''"},
        ],
    )
    [record] = _parse(entry)

    assert [(s.type, s.name, s.slot) for s in record.stickers] == [
        ("Sticker", "Crown (Foil)", 0),
        ("Patch", "Metal Skull Lock", 1),
        ("Sticker", "Howling Dawn", 2),
    ]
    assert record.keychain.name == "Lil' Ava"
    assert record.keychain.image_url == "https://cdn.example/charm.png"
    assert record.name_tag == "Lucky One"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Name Tag: ''Lucky One''", "Lucky One"),
        ("Name Tag: 'Solo'", "Solo"),
        ('Name Tag: "Double"', "Double"),
        ("<span>Name Tag: Bare Words</span>", "Bare Words"),
        ("''Only Quotes''", "Only Quotes"),
        ("", None),
    ],
)
def test_parse_name_tag(value, expected):
    assert parse_name_tag(value) == expected


def test_sticker_and_keychain_html_without_images():
    assert parse_sticker_html("<div>no stickers</div>") is None
    assert parse_keychain_html("<div>no charm</div>") is None


def test_parse_embedded_attribute():
    pattern = re.compile(r"Number of Items:\s*(\d+)")
    assert parse_embedded_attribute("Number of Items: 73", pattern) == "73"
    assert parse_embedded_attribute("nothing here", pattern) is None
    assert parse_embedded_attribute(None, pattern) is None


def test_blank_snapshot_text_is_empty_snapshot():
    assert parse_snapshot_text("").assets == []
    assert parse_snapshot_text("   ").assets == []
    assert parse_snapshot_text(None).descriptions == []


def test_malformed_snapshot_text_raises():
    with pytest.raises(SnapshotFormatError):
        parse_snapshot_text('{"assets": [')
    with pytest.raises(SnapshotFormatError):
        parse_snapshot_text('{"assets": "nope"}')
