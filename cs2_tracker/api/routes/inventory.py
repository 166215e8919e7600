"""
Tracked inventory

GET /api/inventory            records with latest prices (active / box / all)
GET /api/inventory/summary    value of the active inventory and of stored items
PATCH /api/inventory/{id}     acquisition price / date / notes of one record
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.api.deps import get_current_user
from cs2_tracker.core.database import get_db
from cs2_tracker.models.db_models import User
from cs2_tracker.services import inventory as inventory_svc

router = APIRouter()


@router.get("/summary")
async def inventory_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Item value = base price + charm. Applied stickers are listed with their
    price but never counted.
    """
    return await inventory_svc.get_inventory_summary(db, user.id)


@router.get("/")
async def list_inventory(
    location: str = Query("active", description="active | box | all"),
    storage_box_id: Optional[int] = Query(None, description="required when location=box"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if location not in inventory_svc.VALID_LOCATIONS:
        raise HTTPException(status_code=400, detail=f"Invalid location: {location}")
    if location == "box" and storage_box_id is None:
        raise HTTPException(status_code=400, detail="storage_box_id is required for location=box")

    items = await inventory_svc.list_inventory_with_prices(db, user.id, location, storage_box_id)
    return {
        "total": len(items),
        "location": location,
        "total_value": round(sum(i["item_total_value"] for i in items), 2),
        "data": items,
    }


class AcquisitionPatch(BaseModel):
    acquired_price: Optional[float] = Field(None, ge=0)
    acquired_date: Optional[datetime] = None
    notes: Optional[str] = None


@router.patch("/{record_id}")
async def patch_acquisition(
    record_id: int,
    body: AcquisitionPatch,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Record what was paid for an item; feeds profit / loss in the summary."""
    try:
        record = await inventory_svc.update_acquisition(
            db, user.id, record_id, body.acquired_price, body.acquired_date, body.notes
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "id": record.id,
        "asset_id": record.asset_id,
        "acquired_price": record.acquired_price,
        "acquired_date": record.acquired_date.isoformat() if record.acquired_date else None,
        "notes": record.notes,
    }
