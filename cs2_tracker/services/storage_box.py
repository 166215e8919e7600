"""
Storage unit service

Steam boxes:
  Recognised in a snapshot by Type tag CSGO_Type_Tool + market_hash_name
  "Storage Unit". Unlike ordinary items, a storage unit keeps its asset id
  across snapshots, so boxes are matched on asset_id.
  Metadata read from the description lines:
    nametag                   → box name  (Name Tag: ''My Box'')
    attr: items count         → reported_count  (Number of Items: 73)
    attr: modification date   → modification_date  (Modification Date: Sep 11, 2025 (22:25:42) GMT)

Manual boxes (asset_id NULL):
  Created by the user (e.g. items lent to a friend). No sync path ever
  selects them; only create / rename / delete / manual move touch them.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.models.db_models import ItemUser, StorageBox
from cs2_tracker.schemas.inventory import StorageBoxDescriptor
from cs2_tracker.schemas.steam import SteamDescription, SteamInventorySnapshot
from cs2_tracker.services.inventory import count_storage_box_contents
from cs2_tracker.services.snapshot_parser import (
    STORAGE_UNIT_MARKER,
    is_storage_unit,
    parse_embedded_attribute,
    parse_name_tag,
)

logger = logging.getLogger(__name__)

DEFAULT_BOX_NAME = STORAGE_UNIT_MARKER

_FIRST_INT_RE = re.compile(r"(\d+)")
_MODIFICATION_DATE_RE = re.compile(r"Modification Date:\s*(.+)\s+GMT")
_MODIFICATION_DATE_FORMATS = (
    "%b %d, %Y (%H:%M:%S)",
    "%b %d, %Y %H:%M:%S",
    "%B %d, %Y (%H:%M:%S)",
    "%b %d, %Y",
)


# ------------------------------------------------------------------ #
#  Snapshot extraction                                                 #
# ------------------------------------------------------------------ #

def parse_modification_date(value: str) -> Optional[datetime]:
    """Naive-UTC datetime from a 'Modification Date: ... GMT' line; None if unparseable."""
    raw = parse_embedded_attribute(value, _MODIFICATION_DATE_RE)
    if raw is None:
        return None
    raw = raw.strip()
    for fmt in _MODIFICATION_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    logger.warning("Failed to parse storage box modification date: %r", raw)
    return None


def parse_storage_box(description: SteamDescription, snapshot: SteamInventorySnapshot) -> StorageBoxDescriptor:
    asset_id = next(
        (
            a.assetid for a in snapshot.assets
            if a.classid == description.classid and a.instanceid == description.instanceid
        ),
        None,
    )

    name = DEFAULT_BOX_NAME
    item_count = 0
    modification_date: Optional[datetime] = None

    for line in description.descriptions:
        if line.name == "nametag":
            name = parse_name_tag(line.value) or DEFAULT_BOX_NAME
        elif line.name == "attr: items count":
            count = parse_embedded_attribute(line.value, _FIRST_INT_RE)
            if count is not None:
                item_count = int(count)
        elif line.name == "attr: modification date":
            modification_date = parse_modification_date(line.value)

    return StorageBoxDescriptor(
        asset_id=asset_id,
        name=name,
        item_count=item_count,
        modification_date=modification_date,
    )


def extract_storage_boxes(snapshot: SteamInventorySnapshot) -> List[StorageBoxDescriptor]:
    return [parse_storage_box(d, snapshot) for d in snapshot.descriptions if is_storage_unit(d)]


# ------------------------------------------------------------------ #
#  Steam box sync                                                      #
# ------------------------------------------------------------------ #

async def find_steam_box(db: AsyncSession, user_id: int, asset_id: str) -> Optional[StorageBox]:
    result = await db.execute(
        select(StorageBox).where(StorageBox.user_id == user_id, StorageBox.asset_id == asset_id)
    )
    return result.scalar_one_or_none()


def apply_descriptor(box: StorageBox, descriptor: StorageBoxDescriptor) -> None:
    box.name = descriptor.name
    box.reported_count = descriptor.item_count
    if descriptor.modification_date is not None:
        box.modification_date = descriptor.modification_date


async def sync_storage_boxes(
    db: AsyncSession,
    user_id: int,
    descriptors: Iterable[StorageBoxDescriptor],
) -> List[StorageBox]:
    """
    Create / refresh Steam boxes from snapshot descriptors.
    Lookups are by non-null asset_id, so manual boxes are never selected.
    Items inside boxes are not touched here.
    """
    synced: List[StorageBox] = []
    for descriptor in descriptors:
        if not descriptor.asset_id:
            logger.warning("Storage box descriptor without asset id, skipping: %s", descriptor.name)
            continue

        box = await find_steam_box(db, user_id, descriptor.asset_id)
        if box is None:
            box = StorageBox(user_id=user_id, asset_id=descriptor.asset_id, name=descriptor.name)
            db.add(box)
            logger.info("Creating Steam storage box %s (%s)", descriptor.asset_id, descriptor.name)
        apply_descriptor(box, descriptor)
        synced.append(box)
    return synced


# ------------------------------------------------------------------ #
#  Queries                                                             #
# ------------------------------------------------------------------ #

async def get_storage_box(db: AsyncSession, user_id: int, storage_box_id: int) -> StorageBox:
    box = await db.get(StorageBox, storage_box_id)
    if box is None:
        raise LookupError(f"Storage box {storage_box_id} not found")
    if box.user_id != user_id:
        raise PermissionError(f"Storage box {storage_box_id} does not belong to user")
    return box


async def list_storage_boxes(db: AsyncSession, user_id: int) -> List[Dict[str, object]]:
    boxes = (await db.execute(
        select(StorageBox).where(StorageBox.user_id == user_id).order_by(StorageBox.name)
    )).scalars().all()

    rows = []
    for box in boxes:
        actual = await count_storage_box_contents(db, box.id)
        rows.append({
            "id": box.id,
            "asset_id": box.asset_id,
            "name": box.name,
            "is_manual": box.is_manual,
            "item_count": actual,
            "reported_count": box.reported_count,
            "in_sync": box.is_manual or box.reported_count == actual,
            "modification_date": box.modification_date.isoformat() if box.modification_date else None,
        })
    return rows


async def validate_item_count(db: AsyncSession, box: StorageBox) -> bool:
    """Reported vs tracked count. A mismatch is only a staleness signal."""
    actual = await count_storage_box_contents(db, box.id)
    if box.reported_count is not None and box.reported_count != actual:
        logger.warning(
            "Storage box %s (%s) count mismatch: reported=%s actual=%d",
            box.id, box.name, box.reported_count, actual,
        )
        return False
    return True


# ------------------------------------------------------------------ #
#  Manual boxes                                                        #
# ------------------------------------------------------------------ #

def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Storage box name cannot be empty")
    if len(cleaned) > 255:
        raise ValueError("Storage box name is too long (max 255 characters)")
    return cleaned


async def create_manual_box(db: AsyncSession, user_id: int, name: str) -> StorageBox:
    box = StorageBox(user_id=user_id, asset_id=None, name=_clean_name(name))
    db.add(box)
    await db.commit()
    logger.info("Created manual storage box %r for user %s", box.name, user_id)
    return box


async def rename_manual_box(db: AsyncSession, box: StorageBox, name: str) -> StorageBox:
    if not box.is_manual:
        raise ValueError("Cannot rename Steam-imported storage boxes")
    old_name = box.name
    box.name = _clean_name(name)
    await db.commit()
    logger.info("Renamed manual storage box %s: %r → %r", box.id, old_name, box.name)
    return box


async def delete_manual_box(db: AsyncSession, box: StorageBox) -> int:
    """Delete a manual box; its items go back to the active inventory."""
    if not box.is_manual:
        raise ValueError("Cannot delete Steam-imported storage boxes")
    box_id = box.id
    moved = await db.execute(
        update(ItemUser).where(ItemUser.storage_box_id == box_id).values(storage_box_id=None)
    )
    await db.execute(delete(StorageBox).where(StorageBox.id == box_id))
    await db.commit()
    logger.info("Deleted manual storage box %s, %d items moved back", box_id, moved.rowcount)
    return moved.rowcount


async def move_item(
    db: AsyncSession,
    user_id: int,
    record_id: int,
    target_box_id: Optional[int],
) -> ItemUser:
    """
    Manually move a record into a manual box, or back to the active
    inventory. Steam box contents only change through deposit / withdraw.
    """
    record = await db.get(ItemUser, record_id)
    if record is None:
        raise LookupError(f"Item {record_id} not found")
    if record.user_id != user_id:
        raise PermissionError(f"Item {record_id} does not belong to user")

    if record.storage_box_id is not None:
        source = await db.get(StorageBox, record.storage_box_id)
        if source is not None and not source.is_manual:
            raise ValueError("Items in Steam storage units can only be moved by a withdraw")

    if target_box_id is not None:
        target = await get_storage_box(db, user_id, target_box_id)
        if not target.is_manual:
            raise ValueError("Items can only be moved into Steam storage units by a deposit")

    record.storage_box_id = target_box_id
    await db.commit()
    logger.info("Moved item %s to %s", record_id, target_box_id or "active inventory")
    return record
