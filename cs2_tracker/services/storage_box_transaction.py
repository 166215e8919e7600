"""
Steam storage unit deposit / withdraw

The user snapshots the active inventory AFTER moving items in game:

  deposit   items that disappeared from the active snapshot went into the box
            → to_deposit = active records whose asset_id is not in the snapshot
  withdraw  items that appeared in the active snapshot came out of the box
            → matched against the box's contents:
                1. same asset_id
                2. same hash name + float (±epsilon) + pattern index
            Steam hands out a new asset id when an item leaves a storage
            unit, so a property match rewrites the stored asset_id (heal).
            Appeared items with no match are left to the whole-inventory import.

Both previews stage the moves (plus the box descriptor from the snapshot);
confirm applies them in one transaction, refreshing the box's reported
count / modification date first.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.core.config import settings
from cs2_tracker.models.db_models import ItemUser, StorageBox
from cs2_tracker.schemas.inventory import (
    DepositPreview,
    MoveEntry,
    NormalizedRecord,
    StagedTransaction,
    StorageBoxDescriptor,
    TransactionResult,
    WithdrawPreview,
)
from cs2_tracker.services.inventory import (
    count_storage_box_contents,
    find_active_inventory,
    find_storage_box_contents,
)
from cs2_tracker.services.inventory_import import (
    NO_SNAPSHOT_ERROR,
    load_snapshots,
    merge_records,
    merge_storage_boxes,
)
from cs2_tracker.services.staging import TRANSACTION_PREFIX, StagedDiffStore
from cs2_tracker.services.storage_box import apply_descriptor, get_storage_box, validate_item_count

logger = logging.getLogger(__name__)

TRANSACTION_EXPIRED_ERROR = "Transaction data not found or expired"


def _move_entry(record: ItemUser) -> MoveEntry:
    return MoveEntry(
        record_id=record.id,
        asset_id=record.asset_id,
        hash_name=record.item.hash_name,
        name=record.item.name,
        float_value=record.float_value,
        pattern_index=record.pattern_index,
    )


def _descriptor_for(box: StorageBox, descriptors: Iterable[StorageBoxDescriptor]) -> Optional[StorageBoxDescriptor]:
    return next((d for d in descriptors if d.asset_id and d.asset_id == box.asset_id), None)


async def _steam_box(db: AsyncSession, user_id: int, storage_box_id: int) -> StorageBox:
    box = await get_storage_box(db, user_id, storage_box_id)
    if box.is_manual:
        raise ValueError("Manual storage boxes are not synced from snapshots; move items manually")
    return box


# ------------------------------------------------------------------ #
#  Property matching                                                   #
# ------------------------------------------------------------------ #

def floats_match(a: Optional[float], b: Optional[float], epsilon: float) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return abs(a - b) < epsilon


def match_item_in_storage(
    record: NormalizedRecord,
    contents: Iterable[ItemUser],
    already_matched: Set[int],
    epsilon: Optional[float] = None,
) -> Optional[ItemUser]:
    """
    Stored record in a box that corresponds to an appeared snapshot record.
    Each stored record is matched at most once (`already_matched` holds ids).
    """
    eps = settings.float_match_epsilon if epsilon is None else epsilon
    candidates = [c for c in contents if c.id not in already_matched]

    for candidate in candidates:
        if candidate.asset_id and candidate.asset_id == record.asset_id:
            return candidate

    for candidate in candidates:
        if candidate.item.hash_name != record.market_hash_name:
            continue
        if not floats_match(candidate.float_value, record.float_value, eps):
            continue
        if candidate.pattern_index != record.pattern_index:
            continue
        return candidate
    return None


# ------------------------------------------------------------------ #
#  Previews                                                            #
# ------------------------------------------------------------------ #

async def prepare_deposit_preview(
    db: AsyncSession,
    store: StagedDiffStore,
    user_id: int,
    storage_box_id: int,
    tradeable_json: Optional[str],
    trade_locked_json: Optional[str] = None,
) -> DepositPreview:
    box = await _steam_box(db, user_id, storage_box_id)
    current_count = await count_storage_box_contents(db, box.id)

    snapshots, errors = load_snapshots(tradeable_json, trade_locked_json)
    if errors:
        return DepositPreview(errors=errors, current_item_count=current_count, new_item_count=current_count)

    records = merge_records(snapshots)
    if not records:
        return DepositPreview(
            errors=[NO_SNAPSHOT_ERROR], current_item_count=current_count, new_item_count=current_count
        )

    snapshot_ids = {r.asset_id for r in records}
    active = await find_active_inventory(db, user_id)
    to_deposit = [r for r in active if r.asset_id and r.asset_id not in snapshot_ids]

    if not to_deposit:
        return DepositPreview(
            errors=["No items to deposit were found"],
            current_item_count=current_count,
            new_item_count=current_count,
        )

    staged = StagedTransaction(
        type="deposit",
        user_id=user_id,
        storage_box_id=box.id,
        items_to_move=[r.id for r in to_deposit],
        storage_box=_descriptor_for(box, merge_storage_boxes(snapshots)),
    )
    token = store.store(user_id, staged, TRANSACTION_PREFIX)

    logger.info("Deposit preview for box %s: %d items", box.id, len(to_deposit))
    return DepositPreview(
        items_to_deposit=[_move_entry(r) for r in to_deposit],
        current_item_count=current_count,
        new_item_count=current_count + len(to_deposit),
        session_key=token,
    )


async def _heal_asset_id(db: AsyncSession, stored: ItemUser, new_asset_id: str) -> bool:
    """Rewrite a stored asset id unless another row already holds the new one."""
    holder = (await db.execute(
        select(ItemUser.id).where(ItemUser.asset_id == new_asset_id, ItemUser.id != stored.id)
    )).scalar_one_or_none()
    if holder is not None:
        logger.warning(
            "Cannot heal asset id of item %s to %s: already held by item %s",
            stored.id, new_asset_id, holder,
        )
        return False
    logger.info("Healing asset id of item %s: %s → %s", stored.id, stored.asset_id, new_asset_id)
    stored.asset_id = new_asset_id
    return True


async def prepare_withdraw_preview(
    db: AsyncSession,
    store: StagedDiffStore,
    user_id: int,
    storage_box_id: int,
    tradeable_json: Optional[str],
    trade_locked_json: Optional[str] = None,
) -> WithdrawPreview:
    box = await _steam_box(db, user_id, storage_box_id)
    current_count = await count_storage_box_contents(db, box.id)

    snapshots, errors = load_snapshots(tradeable_json, trade_locked_json)
    if errors:
        return WithdrawPreview(errors=errors, current_item_count=current_count, new_item_count=current_count)

    records = merge_records(snapshots)
    if not records:
        return WithdrawPreview(
            errors=[NO_SNAPSHOT_ERROR], current_item_count=current_count, new_item_count=current_count
        )

    active_ids = {r.asset_id for r in await find_active_inventory(db, user_id) if r.asset_id}
    appeared = [r for r in records if r.asset_id not in active_ids]
    contents = await find_storage_box_contents(db, box.id)

    to_withdraw: List[ItemUser] = []
    matched_ids: Set[int] = set()
    healed = 0
    for record in appeared:
        stored = match_item_in_storage(record, contents, matched_ids)
        if stored is None:
            logger.debug("Appeared asset %s (%s) not in box %s", record.asset_id, record.market_hash_name, box.id)
            continue
        if stored.asset_id != record.asset_id:
            if not await _heal_asset_id(db, stored, record.asset_id):
                continue
            healed += 1
        matched_ids.add(stored.id)
        to_withdraw.append(stored)

    if healed:
        await db.commit()

    if not to_withdraw:
        return WithdrawPreview(
            errors=["No items to withdraw were found"],
            current_item_count=current_count,
            new_item_count=current_count,
            healed_asset_ids=healed,
        )

    staged = StagedTransaction(
        type="withdraw",
        user_id=user_id,
        storage_box_id=box.id,
        items_to_move=[r.id for r in to_withdraw],
        storage_box=_descriptor_for(box, merge_storage_boxes(snapshots)),
    )
    token = store.store(user_id, staged, TRANSACTION_PREFIX)

    logger.info("Withdraw preview for box %s: %d items, %d asset ids healed", box.id, len(to_withdraw), healed)
    return WithdrawPreview(
        items_to_withdraw=[_move_entry(r) for r in to_withdraw],
        current_item_count=current_count,
        new_item_count=current_count - len(to_withdraw),
        healed_asset_ids=healed,
        session_key=token,
    )


# ------------------------------------------------------------------ #
#  Apply                                                               #
# ------------------------------------------------------------------ #

async def apply_transaction(
    db: AsyncSession,
    store: StagedDiffStore,
    user_id: int,
    token: str,
    storage_box_id: Optional[int] = None,
    transaction_type: Optional[str] = None,
) -> TransactionResult:
    staged = store.retrieve(user_id, token, StagedTransaction)
    if staged is None or staged.user_id != user_id:
        logger.warning("apply_transaction: no staged transaction for user %s token %s", user_id, token)
        return TransactionResult(errors=[TRANSACTION_EXPIRED_ERROR])
    if (storage_box_id is not None and staged.storage_box_id != storage_box_id) or (
        transaction_type is not None and staged.type != transaction_type
    ):
        return TransactionResult(errors=["Staged transaction does not belong to this storage box operation"])

    box = await db.get(StorageBox, staged.storage_box_id)
    if box is None or box.user_id != user_id:
        return TransactionResult(errors=[f"Storage box {staged.storage_box_id} not found"])

    errors: List[str] = []
    moved = 0
    try:
        if staged.storage_box is not None and not box.is_manual and staged.storage_box.asset_id == box.asset_id:
            apply_descriptor(box, staged.storage_box)

        for record_id in staged.items_to_move:
            record = await db.get(ItemUser, record_id)
            if record is None:
                errors.append(f"Item with ID {record_id} not found")
                continue
            if record.user_id != user_id:
                logger.warning("apply_transaction: item %s does not belong to user %s", record_id, user_id)
                errors.append(f"Unauthorized: Item {record_id} does not belong to user")
                continue

            if staged.type == "deposit":
                if record.storage_box_id is not None:
                    errors.append(f"Item {record_id} is already in a storage box")
                    continue
                record.storage_box_id = box.id
            else:
                if record.storage_box_id != box.id:
                    errors.append(f"Item {record_id} is not in this storage box")
                    continue
                record.storage_box_id = None
            moved += 1

        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("apply_transaction (%s) failed for box %s, rolled back", staged.type, staged.storage_box_id)
        return TransactionResult(errors=[f"Transaction failed: {e}"])

    store.clear(user_id, token)
    await validate_item_count(db, box)
    logger.info(
        "%s applied for box %s: %d moved, %d errors",
        staged.type.capitalize(), box.id, moved, len(errors),
    )
    return TransactionResult(items_moved=moved, success=True, errors=errors)
