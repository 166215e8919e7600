"""
Whole-inventory import: preview → (user picks rows) → confirm

Preview:
  tradeable + trade-locked snapshot → parse (both or neither) → merge/dedupe
  → catalog match → diff against the ACTIVE inventory only
  (storage_box_id IS NULL) → enrich with prices → stage under a token.

  to_add    = incoming records whose asset_id is not tracked in active inventory
  to_remove = active records whose asset_id is not in the incoming snapshot

Confirm, one transaction, fixed order:
  1. Steam storage box metadata sync
  2. DELETE ... WHERE user_id = ? AND storage_box_id IS NULL AND asset_id IN (...)
  3. INSERT the selected new records

Per-record policy: every staged record is validated (catalog item exists,
asset id not already tracked, float in [0, 1]) before it is added to the
session. A rejected record is skipped and reported; it never reaches the
session, so nothing of it can be flushed. Accepted records stay pending in
the outer transaction and commit or roll back together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.models.db_models import Item, ItemUser, wear_category_for
from cs2_tracker.schemas.inventory import (
    ApplyResult,
    DiffEntry,
    ImportPreview,
    NormalizedRecord,
    StagedImport,
    StagedItem,
    StorageBoxDescriptor,
)
from cs2_tracker.schemas.steam import SteamInventorySnapshot
from cs2_tracker.services.catalog import match_records
from cs2_tracker.services.inventory import find_active_inventory
from cs2_tracker.services.pricing import PriceBook, accessory_hash_names, load_price_book
from cs2_tracker.services.snapshot_parser import (
    SnapshotFormatError,
    deduplicate_records,
    parse_inventory,
    parse_snapshot_text,
)
from cs2_tracker.services.staging import IMPORT_PREFIX, StagedDiffStore
from cs2_tracker.services.storage_box import extract_storage_boxes, sync_storage_boxes

logger = logging.getLogger(__name__)

ADD_PREFIX = "add-"
REMOVE_PREFIX = "remove-"

NO_SNAPSHOT_ERROR = "Please provide at least one JSON file"
SESSION_EXPIRED_ERROR = "Session data not found or expired"


# ------------------------------------------------------------------ #
#  Snapshot loading (shared with storage box transactions)             #
# ------------------------------------------------------------------ #

def load_snapshots(
    tradeable_json: Optional[str],
    trade_locked_json: Optional[str],
) -> Tuple[List[SteamInventorySnapshot], List[str]]:
    """
    Parse both snapshots. If either is malformed, neither is used:
    returns ([], errors). Valid snapshots with no assets are kept; only
    two blank inputs count as nothing provided.
    """
    if not any(text and text.strip() for text in (tradeable_json, trade_locked_json)):
        return [], [NO_SNAPSHOT_ERROR]

    snapshots: List[SteamInventorySnapshot] = []
    errors: List[str] = []
    for label, text in (("tradeable", tradeable_json), ("trade-locked", trade_locked_json)):
        try:
            snapshots.append(parse_snapshot_text(text))
        except SnapshotFormatError as e:
            logger.warning("Invalid %s snapshot JSON: %s", label, e)
            errors.append(f"Invalid JSON in {label} snapshot: {e}")

    if errors:
        return [], errors
    return snapshots, []


def merge_records(snapshots: Iterable[SteamInventorySnapshot]) -> List[NormalizedRecord]:
    records: List[NormalizedRecord] = []
    for snapshot in snapshots:
        records.extend(parse_inventory(snapshot))
    return deduplicate_records(records)


def merge_storage_boxes(snapshots: Iterable[SteamInventorySnapshot]) -> List[StorageBoxDescriptor]:
    boxes: List[StorageBoxDescriptor] = []
    seen: Set[str] = set()
    for snapshot in snapshots:
        for box in extract_storage_boxes(snapshot):
            if box.asset_id and box.asset_id in seen:
                continue
            if box.asset_id:
                seen.add(box.asset_id)
            boxes.append(box)
    return boxes


# ------------------------------------------------------------------ #
#  Diff                                                                #
# ------------------------------------------------------------------ #

def compute_import_diff(
    current: Sequence[ItemUser],
    incoming: Sequence[Tuple[Item, NormalizedRecord]],
) -> Tuple[List[Tuple[Item, NormalizedRecord]], List[ItemUser]]:
    """(to_add, to_remove). `current` must be active-inventory records only."""
    current_ids = {r.asset_id for r in current if r.asset_id}
    incoming_ids = {record.asset_id for _, record in incoming}

    to_add = [(item, record) for item, record in incoming if record.asset_id not in current_ids]
    # records without an asset id were never imported from Steam; leave them alone
    to_remove = [r for r in current if r.asset_id and r.asset_id not in incoming_ids]
    return to_add, to_remove


def _added_entry(item: Item, record: NormalizedRecord, prices: PriceBook) -> DiffEntry:
    price = prices.for_item(item.id)
    return DiffEntry(
        selection_key=f"{ADD_PREFIX}{record.asset_id}",
        asset_id=record.asset_id,
        item_id=item.id,
        hash_name=item.hash_name,
        name=item.name,
        float_value=record.float_value,
        pattern_index=record.pattern_index,
        is_stattrak=record.is_stattrak,
        is_souvenir=record.is_souvenir,
        name_tag=record.name_tag,
        stickers=prices.priced_stickers(record.stickers),
        keychain=prices.priced_keychain(record.keychain),
        price=price.price if price else None,
        median_price=price.median_price if price else None,
    )


def _removed_entry(record: ItemUser, prices: PriceBook) -> DiffEntry:
    price = prices.for_item(record.item_id)
    return DiffEntry(
        selection_key=f"{REMOVE_PREFIX}{record.asset_id}",
        asset_id=record.asset_id,
        item_id=record.item_id,
        record_id=record.id,
        hash_name=record.item.hash_name,
        name=record.item.name,
        float_value=record.float_value,
        pattern_index=record.pattern_index,
        is_stattrak=record.is_stattrak,
        is_souvenir=record.is_souvenir,
        name_tag=record.name_tag,
        stickers=prices.priced_stickers(record.stickers),
        keychain=prices.priced_keychain(record.keychain),
        price=price.price if price else None,
        median_price=price.median_price if price else None,
    )


async def prepare_import_preview(
    db: AsyncSession,
    store: StagedDiffStore,
    user_id: int,
    tradeable_json: Optional[str],
    trade_locked_json: Optional[str] = None,
) -> ImportPreview:
    snapshots, errors = load_snapshots(tradeable_json, trade_locked_json)
    if errors:
        return ImportPreview(errors=errors)

    boxes = merge_storage_boxes(snapshots)
    records = merge_records(snapshots)
    matched, unmatched = await match_records(db, records)
    current = await find_active_inventory(db, user_id)

    to_add, to_remove = compute_import_diff(current, matched)

    accessories: List[str] = []
    for _, record in to_add:
        accessories.extend(accessory_hash_names(record.stickers, record.keychain))
    for existing in to_remove:
        accessories.extend(accessory_hash_names(existing.stickers, existing.keychain))
    prices = await load_price_book(
        db,
        [item.id for item, _ in to_add] + [r.item_id for r in to_remove],
        accessories,
    )

    staged = StagedImport(
        user_id=user_id,
        items_to_add=[StagedItem(item_id=item.id, data=record) for item, record in to_add],
        items_to_remove=[r.asset_id for r in to_remove],
        storage_boxes=boxes,
    )
    token = store.store(user_id, staged, IMPORT_PREFIX)

    logger.info(
        "Import preview for user %s: %d parsed, %d to add, %d to remove, %d unmatched, %d boxes",
        user_id, len(records), len(to_add), len(to_remove), len(unmatched), len(boxes),
    )
    return ImportPreview(
        total_items=len(records),
        items_to_add=[_added_entry(item, record, prices) for item, record in to_add],
        items_to_remove=[_removed_entry(r, prices) for r in to_remove],
        unmatched_items=unmatched,
        session_key=token,
        storage_box_count=len(boxes),
    )


# ------------------------------------------------------------------ #
#  Apply                                                               #
# ------------------------------------------------------------------ #

def _selected_ids(keys: Iterable[str], prefix: str) -> Set[str]:
    return {k[len(prefix):] for k in keys if k.startswith(prefix) and len(k) > len(prefix)}


def build_item_user(user_id: int, staged: StagedItem, item: Item) -> ItemUser:
    data = staged.data
    return ItemUser(
        user_id=user_id,
        item=item,
        asset_id=data.asset_id,
        float_value=data.float_value,
        pattern_index=data.pattern_index,
        wear_category=wear_category_for(data.float_value),
        inspect_link=data.inspect_link,
        is_stattrak=data.is_stattrak,
        is_souvenir=data.is_souvenir,
        stickers=[s.model_dump() for s in data.stickers] if data.stickers else None,
        keychain=data.keychain.model_dump() if data.keychain else None,
        name_tag=data.name_tag,
        storage_box_id=None,
        acquired_date=datetime.now(timezone.utc).replace(tzinfo=None),
    )


async def validate_staged_item(db: AsyncSession, staged: StagedItem) -> Tuple[Optional[Item], Optional[str]]:
    """(catalog item, None) if the record can be inserted, else (None, reason)."""
    data = staged.data
    if not data.asset_id:
        return None, "Staged record has no asset id"
    if data.float_value is not None and not 0.0 <= data.float_value <= 1.0:
        return None, f"Invalid float value {data.float_value} for asset {data.asset_id}"
    catalog_item = await db.get(Item, staged.item_id)
    if catalog_item is None:
        return None, f"Item with ID {staged.item_id} not found"
    tracked = (await db.execute(
        select(ItemUser.id).where(ItemUser.asset_id == data.asset_id)
    )).scalar_one_or_none()
    if tracked is not None:
        return None, f"Asset {data.asset_id} is already tracked"
    return catalog_item, None


async def apply_import(
    db: AsyncSession,
    store: StagedDiffStore,
    user_id: int,
    token: str,
    selected_add_keys: Iterable[str] = (),
    selected_remove_keys: Iterable[str] = (),
) -> ApplyResult:
    staged = store.retrieve(user_id, token, StagedImport)
    if staged is None or staged.user_id != user_id:
        logger.warning("apply_import: no staged diff for user %s token %s", user_id, token)
        return ApplyResult(error_count=1, errors=[SESSION_EXPIRED_ERROR])

    add_ids = _selected_ids(selected_add_keys, ADD_PREFIX)
    remove_ids = _selected_ids(selected_remove_keys, REMOVE_PREFIX)

    staged_add_ids = {s.data.asset_id for s in staged.items_to_add}
    staged_remove_ids = set(staged.items_to_remove)
    result = ApplyResult()

    for asset_id in sorted(add_ids - staged_add_ids):
        logger.warning("apply_import: add-%s not in staged diff, skipping", asset_id)
        result.skipped_items.append(f"{ADD_PREFIX}{asset_id}")
    for asset_id in sorted(remove_ids - staged_remove_ids):
        logger.warning("apply_import: remove-%s not in staged diff, skipping", asset_id)
        result.skipped_items.append(f"{REMOVE_PREFIX}{asset_id}")

    removal = [a for a in staged.items_to_remove if a in remove_ids]
    additions = [s for s in staged.items_to_add if s.data.asset_id in add_ids]

    try:
        await sync_storage_boxes(db, user_id, staged.storage_boxes)

        if removal:
            deleted = await db.execute(
                delete(ItemUser).where(
                    ItemUser.user_id == user_id,
                    ItemUser.storage_box_id.is_(None),
                    ItemUser.asset_id.in_(removal),
                )
            )
            result.removed_count = deleted.rowcount
        result.total_processed += len(removal)

        for staged_item in additions:
            result.total_processed += 1
            catalog_item, reason = await validate_staged_item(db, staged_item)
            if catalog_item is None:
                logger.warning("apply_import: skipping asset %s: %s", staged_item.data.asset_id, reason)
                result.error_count += 1
                result.errors.append(reason)
                result.skipped_items.append(f"{ADD_PREFIX}{staged_item.data.asset_id}")
                continue
            db.add(build_item_user(user_id, staged_item, catalog_item))
            result.added_count += 1

        await db.flush()
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("apply_import failed for user %s, transaction rolled back", user_id)
        return ApplyResult(
            total_processed=result.total_processed,
            error_count=1,
            errors=[f"Import failed: {e}"],
        )

    store.clear(user_id, token)
    logger.info(
        "Import applied for user %s: %d added, %d removed, %d errors",
        user_id, result.added_count, result.removed_count, result.error_count,
    )
    return result


def cancel_import(store: StagedDiffStore, user_id: int, token: str) -> bool:
    """Drop a staged import. False if there was nothing staged under the token."""
    if store.retrieve(user_id, token, StagedImport) is None:
        return False
    store.clear(user_id, token)
    logger.info("Import %s cancelled by user %s", token, user_id)
    return True
