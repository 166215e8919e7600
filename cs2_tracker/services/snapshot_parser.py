"""
Steam inventory snapshot parser

Input: the raw JSON of GET /inventory/{steamid}/730/2 (assets, descriptions,
asset_properties). Output: NormalizedRecord list, one per tradeable item.

Filtering:
  CSGO_Type_Collectible  → skipped (medals, coins, pins)
  CSGO_Type_Spray        → skipped unless the hash name contains "Sealed Graffiti"
  CSGO_Type_Tool         → skipped only for "Storage Unit" (see storage_box.py),
                           every other tool is an ordinary item

Sticker / charm / name tag data only exists as HTML fragments inside the
description lines; all of that scraping goes through parse_embedded_attribute().
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from pydantic import ValidationError

from cs2_tracker.schemas.inventory import Keychain, NormalizedRecord, Sticker
from cs2_tracker.schemas.steam import (
    SteamAsset,
    SteamAssetProperty,
    SteamDescription,
    SteamDescriptionLine,
    SteamInventorySnapshot,
)

logger = logging.getLogger(__name__)

COLLECTIBLE_TYPES = {"CSGO_Type_Collectible", "Type_Collectible"}
SPRAY_TYPES = {"CSGO_Type_Spray", "Type_Spray"}
TOOL_TYPES = {"CSGO_Type_Tool", "Type_Tool"}

SEALED_GRAFFITI_MARKER = "Sealed Graffiti"
STORAGE_UNIT_MARKER = "Storage Unit"
INSPECT_LINK_MARKER = "csgo_econ_action_preview"
STATTRAK_MARKER = "StatTrak™"
SOUVENIR_MARKER = "Souvenir"

PROPERTY_PATTERN_INDEX = 1
PROPERTY_FLOAT_VALUE = 2

_IMG_TITLE_RE = re.compile(r'<img[^>]+src="([^"]+)"[^>]+title="([^"]+)"')
_STICKER_TYPE_RE = re.compile(r"^(Sticker|Patch):\s*(.+)$")
_CHARM_PREFIX_RE = re.compile(r"^Charm:\s*")
_HTML_TAG_RE = re.compile(r"<[^>]+>")

_NAME_TAG_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"Name Tag:\s*''([^']+)''"),
    re.compile(r"Name Tag:\s*'([^']+)'"),
    re.compile(r'Name Tag:\s*"([^"]+)"'),
)
_NAME_TAG_FALLBACK_RE = re.compile(r"Name Tag:\s*(.+?)(?:</|$)")
_QUOTED_RE = re.compile(r"['\"]([^'\"]+)['\"]")


class SnapshotFormatError(ValueError):
    """Raised when snapshot text is not a valid inventory export."""


# ------------------------------------------------------------------ #
#  Embedded text scraping                                              #
# ------------------------------------------------------------------ #

def parse_embedded_attribute(text: Optional[str], pattern: Pattern[str]) -> Optional[str]:
    """First non-empty capture group of `pattern` in `text`, or None."""
    if not text:
        return None
    match = pattern.search(text)
    if not match:
        return None
    if not match.groups():
        return match.group(0)
    for group in match.groups():
        if group:
            return group
    return None


def strip_html(text: str) -> str:
    return _HTML_TAG_RE.sub("", text)


def parse_name_tag(value: Optional[str]) -> Optional[str]:
    """
    Name tag text from a `nametag` description line.
    Steam writes it as  Name Tag: ''My Name''  (sometimes single or double quotes).
    """
    if not value:
        return None
    for pattern in _NAME_TAG_PATTERNS:
        found = parse_embedded_attribute(value, pattern)
        if found:
            return found

    found = parse_embedded_attribute(value, _NAME_TAG_FALLBACK_RE)
    if found:
        cleaned = strip_html(found).strip().strip("'\" ")
        if cleaned:
            return cleaned

    found = parse_embedded_attribute(value, _QUOTED_RE)
    if found:
        return found
    cleaned = strip_html(value).strip().strip("'\" ")
    return cleaned or None


def parse_sticker_html(html: str) -> Optional[List[Sticker]]:
    """Stickers and patches share the `sticker_info` blob; type comes from the title prefix."""
    stickers: List[Sticker] = []
    for slot, match in enumerate(_IMG_TITLE_RE.finditer(html)):
        image_url, title = match.group(1), match.group(2)
        sticker_type = "Sticker"
        name = title
        typed = _STICKER_TYPE_RE.match(title)
        if typed:
            sticker_type, name = typed.group(1), typed.group(2)
        stickers.append(Sticker(slot=slot, name=name, type=sticker_type, image_url=image_url))
    return stickers or None


def parse_keychain_html(html: str) -> Optional[Keychain]:
    match = _IMG_TITLE_RE.search(html)
    if not match:
        return None
    image_url, title = match.group(1), match.group(2)
    name = _CHARM_PREFIX_RE.sub("", title)
    if not name:
        return None
    return Keychain(name=name, image_url=image_url)


def _find_line(lines: Iterable[SteamDescriptionLine], name: str) -> Optional[str]:
    for line in lines:
        if line.name == name and line.value:
            return line.value
    return None


# ------------------------------------------------------------------ #
#  Classification                                                      #
# ------------------------------------------------------------------ #

def extract_item_type(description: SteamDescription) -> Optional[str]:
    for tag in description.tags:
        if tag.category == "Type":
            return tag.internal_name or None
    return None


def is_storage_unit(description: SteamDescription) -> bool:
    return (
        extract_item_type(description) in TOOL_TYPES
        and description.market_hash_name == STORAGE_UNIT_MARKER
    )


def should_skip(description: SteamDescription) -> bool:
    """True for entries that are not tradeable inventory items."""
    item_type = extract_item_type(description)

    if item_type in SPRAY_TYPES:
        if SEALED_GRAFFITI_MARKER in description.market_hash_name:
            return False
        logger.debug("Skipping unsealed graffiti: %s", description.market_hash_name)
        return True

    if item_type in TOOL_TYPES:
        if STORAGE_UNIT_MARKER in description.name or STORAGE_UNIT_MARKER in description.market_hash_name:
            logger.debug("Skipping storage unit (handled separately): %s", description.name)
            return True
        return False

    if item_type in COLLECTIBLE_TYPES:
        return True
    return any(
        tag.category == "Type" and tag.internal_name in COLLECTIBLE_TYPES
        for tag in description.tags
    )


# ------------------------------------------------------------------ #
#  Snapshot → records                                                  #
# ------------------------------------------------------------------ #

def parse_snapshot_text(text: Optional[str]) -> SteamInventorySnapshot:
    """Validate raw JSON text. Blank input is an empty snapshot."""
    if text is None or not text.strip():
        return SteamInventorySnapshot()
    try:
        return SteamInventorySnapshot.model_validate_json(text)
    except ValidationError as e:
        raise SnapshotFormatError(str(e)) from e


def extract_float_and_pattern(
    properties: Optional[List[SteamAssetProperty]],
) -> Tuple[Optional[float], Optional[int]]:
    float_value: Optional[float] = None
    pattern_index: Optional[int] = None
    for prop in properties or []:
        if prop.propertyid == PROPERTY_FLOAT_VALUE and prop.float_value is not None:
            float_value = float(prop.float_value)
        elif prop.propertyid == PROPERTY_PATTERN_INDEX and prop.int_value is not None:
            pattern_index = int(prop.int_value)
    return float_value, pattern_index


def map_asset(
    asset: SteamAsset,
    description: SteamDescription,
    properties: Optional[List[SteamAssetProperty]],
) -> NormalizedRecord:
    float_value, pattern_index = extract_float_and_pattern(properties)

    inspect_link = next(
        (a.link for a in description.actions if INSPECT_LINK_MARKER in a.link),
        None,
    )

    name = description.name
    is_stattrak = STATTRAK_MARKER in name
    is_souvenir = SOUVENIR_MARKER in name
    for tag in description.tags:
        if tag.localized_tag_name == STATTRAK_MARKER:
            is_stattrak = True
        elif tag.localized_tag_name == SOUVENIR_MARKER:
            is_souvenir = True

    sticker_html = _find_line(description.descriptions, "sticker_info")
    keychain_html = _find_line(description.descriptions, "keychain_info")
    name_tag_text = _find_line(description.descriptions, "nametag")

    return NormalizedRecord(
        asset_id=asset.assetid,
        class_id=asset.classid,
        instance_id=asset.instanceid,
        name=name or None,
        market_hash_name=description.market_hash_name or None,
        float_value=float_value,
        pattern_index=pattern_index,
        inspect_link=inspect_link,
        is_stattrak=is_stattrak,
        is_souvenir=is_souvenir,
        stickers=parse_sticker_html(sticker_html) if sticker_html else None,
        keychain=parse_keychain_html(keychain_html) if keychain_html else None,
        name_tag=parse_name_tag(name_tag_text) if name_tag_text else None,
    )


def deduplicate_records(records: Iterable[NormalizedRecord]) -> List[NormalizedRecord]:
    """Keep the first record per asset id."""
    seen: set[str] = set()
    unique: List[NormalizedRecord] = []
    for record in records:
        if record.asset_id in seen:
            logger.warning("Duplicate asset id in snapshot: %s", record.asset_id)
            continue
        seen.add(record.asset_id)
        unique.append(record)
    return unique


def parse_inventory(snapshot: SteamInventorySnapshot) -> List[NormalizedRecord]:
    descriptions: Dict[str, SteamDescription] = {d.key: d for d in snapshot.descriptions}
    properties: Dict[str, List[SteamAssetProperty]] = {
        p.assetid: p.asset_properties for p in snapshot.asset_properties
    }

    records: List[NormalizedRecord] = []
    for asset in snapshot.assets:
        description = descriptions.get(f"{asset.classid}_{asset.instanceid}")
        if description is None:
            logger.warning(
                "Description not found for asset %s (class %s, instance %s)",
                asset.assetid, asset.classid, asset.instanceid,
            )
            continue
        if should_skip(description):
            logger.debug("Skipping non-tradeable item: %s", description.name)
            continue
        records.append(map_asset(asset, description, properties.get(asset.assetid)))

    return deduplicate_records(records)
