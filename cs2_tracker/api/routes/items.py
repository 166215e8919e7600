"""
Item catalog + price history

GET  /api/items                  list catalog entries (search by name / hash name)
PUT  /api/items                  create or update a catalog entry
POST /api/items/{id}/prices      record a price sample
GET  /api/items/{id}/trends      latest price + 24h / 7d / 30d trend
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.core.database import get_db
from cs2_tracker.models.db_models import Item
from cs2_tracker.services import catalog as catalog_svc
from cs2_tracker.services import pricing as pricing_svc

router = APIRouter()


class ItemUpsert(BaseModel):
    hash_name: str
    name: str
    type: Optional[str] = None
    category: Optional[str] = None
    rarity: Optional[str] = None
    image_url: Optional[str] = None
    stattrak_available: Optional[bool] = None
    souvenir_available: Optional[bool] = None


class PriceSample(BaseModel):
    price: float = Field(ge=0)
    median_price: Optional[float] = Field(None, ge=0)
    volume: Optional[int] = Field(None, ge=0)
    price_date: Optional[datetime] = None      # naive UTC; defaults to now
    source: str = "steam"


@router.get("/")
async def list_items(
    q: Optional[str] = Query(None, description="fuzzy match on name or hash name"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List catalog entries, with keyword search"""
    stmt = select(Item)
    if q:
        pattern = f"%{q}%"
        stmt = stmt.where(Item.name.like(pattern) | Item.hash_name.like(pattern))
    total_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(total_stmt)).scalar_one()

    stmt = stmt.offset(offset).limit(limit).order_by(Item.hash_name)
    rows = (await db.execute(stmt)).scalars().all()

    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "data": [
            {
                "id": r.id,
                "hash_name": r.hash_name,
                "name": r.name,
                "type": r.type,
                "category": r.category,
                "rarity": r.rarity,
            }
            for r in rows
        ],
    }


@router.put("/")
async def upsert_item(body: ItemUpsert, db: AsyncSession = Depends(get_db)):
    """
    Catalog entries normally come from the catalog sync pipeline; this is
    the manual way in. Snapshot items are matched on hash_name.
    """
    fields = body.model_dump(exclude={"hash_name", "name"})
    item = await catalog_svc.upsert_item(db, body.hash_name, body.name, **fields)
    item_id = item.id
    await db.commit()
    return {"id": item_id, "hash_name": body.hash_name, "name": body.name}


@router.post("/{item_id}/prices", status_code=201)
async def add_price(item_id: int, body: PriceSample, db: AsyncSession = Depends(get_db)):
    if await db.get(Item, item_id) is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    sample = await pricing_svc.record_price(
        db,
        item_id,
        body.price,
        median_price=body.median_price,
        price_date=body.price_date.replace(tzinfo=None) if body.price_date else None,
        volume=body.volume,
        source=body.source,
    )
    payload = {
        "item_id": item_id,
        "price_date": sample.price_date.isoformat(),
        "price": sample.price,
        "median_price": sample.median_price,
    }
    await db.commit()
    return payload


@router.get("/{item_id}/trends")
async def item_trends(item_id: int, db: AsyncSession = Depends(get_db)):
    """
    trend = (latest - past) / past * 100, past being the sample closest to
    (latest sample time - window) within ± window. null without history.
    """
    if await db.get(Item, item_id) is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return {"item_id": item_id, **await pricing_svc.calculate_trends(db, item_id)}
