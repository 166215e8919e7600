"""
Storage units

── Boxes ─────────────────────────────────────────────────────────────
GET    /api/storage-boxes                          list boxes (reported vs tracked count)
POST   /api/storage-boxes/manual                   create a manual box
PATCH  /api/storage-boxes/{id}                     rename a manual box
DELETE /api/storage-boxes/{id}                     delete a manual box (items go back to inventory)

── Steam box sync (snapshot after moving items in game) ──────────────
POST /api/storage-boxes/{id}/deposit/preview       items that left the active inventory
POST /api/storage-boxes/{id}/deposit/confirm
POST /api/storage-boxes/{id}/withdraw/preview      items that came back (asset ids healed)
POST /api/storage-boxes/{id}/withdraw/confirm

── Manual moves ──────────────────────────────────────────────────────
POST /api/storage-boxes/items/{record_id}/move     into a manual box / back to inventory
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.api.deps import get_current_user, get_store
from cs2_tracker.core.database import get_db
from cs2_tracker.models.db_models import User
from cs2_tracker.schemas.inventory import DepositPreview, TransactionResult, WithdrawPreview
from cs2_tracker.services import storage_box as box_svc
from cs2_tracker.services import storage_box_transaction as tx_svc
from cs2_tracker.services.staging import StagedDiffStore

logger = logging.getLogger(__name__)
router = APIRouter()


class ManualBoxCreate(BaseModel):
    name: str


class ManualBoxRename(BaseModel):
    name: str


class SnapshotRequest(BaseModel):
    tradeable_json: Optional[str] = None
    trade_locked_json: Optional[str] = None


class TransactionConfirm(BaseModel):
    session_key: str


class MoveRequest(BaseModel):
    storage_box_id: Optional[int] = None     # None → back to the active inventory


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _box_payload(box) -> dict:
    return {"id": box.id, "asset_id": box.asset_id, "name": box.name, "is_manual": box.is_manual}


# ──────────────────────────────────────────────────────────────────── #
#  Boxes                                                                #
# ──────────────────────────────────────────────────────────────────── #

@router.get("/")
async def list_boxes(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    boxes = await box_svc.list_storage_boxes(db, user.id)
    return {"total": len(boxes), "data": boxes}


@router.post("/manual", status_code=201)
async def create_manual_box(
    body: ManualBoxCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Manual boxes track items held outside Steam storage units
    (lent out, kept on another account...). Snapshots never touch them.
    """
    try:
        box = await box_svc.create_manual_box(db, user.id, body.name)
    except ValueError as e:
        raise _to_http(e)
    return _box_payload(box)


@router.patch("/{storage_box_id}")
async def rename_manual_box(
    storage_box_id: int,
    body: ManualBoxRename,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        box = await box_svc.get_storage_box(db, user.id, storage_box_id)
        box = await box_svc.rename_manual_box(db, box, body.name)
    except (LookupError, PermissionError, ValueError) as e:
        raise _to_http(e)
    return _box_payload(box)


@router.delete("/{storage_box_id}")
async def delete_manual_box(
    storage_box_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        box = await box_svc.get_storage_box(db, user.id, storage_box_id)
        moved = await box_svc.delete_manual_box(db, box)
    except (LookupError, PermissionError, ValueError) as e:
        raise _to_http(e)
    return {"deleted": storage_box_id, "items_moved_to_inventory": moved}


# ──────────────────────────────────────────────────────────────────── #
#  Deposit / withdraw                                                   #
# ──────────────────────────────────────────────────────────────────── #

@router.post("/{storage_box_id}/deposit/preview", response_model=DepositPreview)
async def deposit_preview(
    storage_box_id: int,
    body: SnapshotRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: StagedDiffStore = Depends(get_store),
):
    """
    Snapshot of the active inventory taken AFTER depositing in game.
    Tracked items missing from it are proposed as deposited.
    """
    try:
        return await tx_svc.prepare_deposit_preview(
            db, store, user.id, storage_box_id, body.tradeable_json, body.trade_locked_json
        )
    except (LookupError, PermissionError, ValueError) as e:
        raise _to_http(e)


@router.post("/{storage_box_id}/withdraw/preview", response_model=WithdrawPreview)
async def withdraw_preview(
    storage_box_id: int,
    body: SnapshotRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: StagedDiffStore = Depends(get_store),
):
    """
    Snapshot of the active inventory taken AFTER withdrawing in game.
    New items are matched to the box's contents by asset id, then by
    hash name + float + pattern; drifted asset ids are rewritten.
    """
    try:
        return await tx_svc.prepare_withdraw_preview(
            db, store, user.id, storage_box_id, body.tradeable_json, body.trade_locked_json
        )
    except (LookupError, PermissionError, ValueError) as e:
        raise _to_http(e)


@router.post("/{storage_box_id}/deposit/confirm", response_model=TransactionResult)
async def deposit_confirm(
    storage_box_id: int,
    body: TransactionConfirm,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: StagedDiffStore = Depends(get_store),
):
    return await tx_svc.apply_transaction(db, store, user.id, body.session_key, storage_box_id, "deposit")


@router.post("/{storage_box_id}/withdraw/confirm", response_model=TransactionResult)
async def withdraw_confirm(
    storage_box_id: int,
    body: TransactionConfirm,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: StagedDiffStore = Depends(get_store),
):
    return await tx_svc.apply_transaction(db, store, user.id, body.session_key, storage_box_id, "withdraw")


# ──────────────────────────────────────────────────────────────────── #
#  Manual moves                                                         #
# ──────────────────────────────────────────────────────────────────── #

@router.post("/items/{record_id}/move")
async def move_item(
    record_id: int,
    body: MoveRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        record = await box_svc.move_item(db, user.id, record_id, body.storage_box_id)
    except (LookupError, PermissionError, ValueError) as e:
        raise _to_http(e)
    return {"id": record.id, "asset_id": record.asset_id, "storage_box_id": record.storage_box_id}
