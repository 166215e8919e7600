"""
Inventory import (Steam snapshot → tracked inventory)

── Two-step import ───────────────────────────────────────────────────
POST /api/import/preview      diff pasted snapshots against the active inventory
POST /api/import/confirm      apply the selected rows of a staged preview
POST /api/import/cancel       drop a staged preview

── Live snapshot ─────────────────────────────────────────────────────
POST /api/import/fetch        pull the snapshot JSON from Steam Community
"""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.api.deps import get_current_user, get_store
from cs2_tracker.core.database import get_db
from cs2_tracker.models.db_models import User
from cs2_tracker.schemas.inventory import ImportPreview
from cs2_tracker.services import inventory_import as import_svc
from cs2_tracker.services import steam as steam_svc
from cs2_tracker.services.staging import StagedDiffStore

logger = logging.getLogger(__name__)
router = APIRouter()


class ImportRequest(BaseModel):
    tradeable_json: Optional[str] = None
    trade_locked_json: Optional[str] = None


class ConfirmRequest(BaseModel):
    session_key: str
    selected_add: List[str] = Field(default_factory=list)       # add-<asset_id>
    selected_remove: List[str] = Field(default_factory=list)    # remove-<asset_id>


class CancelRequest(BaseModel):
    session_key: str


class FetchRequest(BaseModel):
    steam_id: Optional[str] = None


@router.post("/preview", response_model=ImportPreview)
async def preview_import(
    body: ImportRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: StagedDiffStore = Depends(get_store),
):
    """
    Parse the tradeable and trade-locked snapshots (either may be empty) and
    diff them against the active inventory. Items already in storage boxes
    are not part of the comparison.

    The returned session_key is passed to /confirm together with the
    selected add-<asset_id> / remove-<asset_id> keys.
    """
    preview = await import_svc.prepare_import_preview(
        db, store, user.id, body.tradeable_json, body.trade_locked_json
    )
    if preview.has_errors:
        raise HTTPException(status_code=400, detail=preview.errors)
    return preview


@router.post("/confirm")
async def confirm_import(
    body: ConfirmRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: StagedDiffStore = Depends(get_store),
):
    """
    Apply the selected rows in one transaction. Always answers with a
    summary (counts + errors); a failed transaction is rolled back whole.
    """
    result = await import_svc.apply_import(
        db, store, user.id, body.session_key, body.selected_add, body.selected_remove
    )
    return {**result.model_dump(), "success": result.is_success}


@router.post("/cancel")
async def cancel_import(
    body: CancelRequest,
    user: User = Depends(get_current_user),
    store: StagedDiffStore = Depends(get_store),
):
    return {"cancelled": import_svc.cancel_import(store, user.id, body.session_key)}


@router.post("/fetch")
async def fetch_snapshot(
    body: FetchRequest,
    user: User = Depends(get_current_user),
):
    """
    Fetch the current inventory from Steam Community and return it as
    snapshot JSON text, ready for /preview. Uses the user's steam_id unless
    one is given.
    """
    steam_id = body.steam_id or user.steam_id
    if not steam_id:
        raise HTTPException(status_code=400, detail="No Steam ID given and none stored for this user")
    try:
        snapshot_json = await steam_svc.fetch_inventory_json(steam_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (RuntimeError, httpx.HTTPError) as e:
        logger.warning("Steam inventory fetch failed for %s: %s", steam_id, e)
        raise HTTPException(status_code=502, detail=str(e))
    return {"steam_id": steam_id, "snapshot_json": snapshot_json}
