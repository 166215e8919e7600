"""
Inventory read model + valuation

find_active_inventory()      : records with storage_box_id IS NULL
find_storage_box_contents()  : records inside one box
list_inventory_with_prices() : listing rows with base / sticker / charm prices
get_inventory_summary()      : totals for the active inventory and storage
update_acquisition()         : cost basis (price, date, notes) of one record
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.models.db_models import ItemUser
from cs2_tracker.services.pricing import PriceBook, accessory_hash_names, load_price_book

logger = logging.getLogger(__name__)

VALID_LOCATIONS = {"active", "box", "all"}


async def find_active_inventory(db: AsyncSession, user_id: int) -> List[ItemUser]:
    result = await db.execute(
        select(ItemUser)
        .where(ItemUser.user_id == user_id, ItemUser.storage_box_id.is_(None))
        .order_by(ItemUser.id)
    )
    return list(result.scalars().all())


async def find_storage_box_contents(db: AsyncSession, storage_box_id: int) -> List[ItemUser]:
    result = await db.execute(
        select(ItemUser).where(ItemUser.storage_box_id == storage_box_id).order_by(ItemUser.id)
    )
    return list(result.scalars().all())


async def count_storage_box_contents(db: AsyncSession, storage_box_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(ItemUser).where(ItemUser.storage_box_id == storage_box_id)
    )
    return result.scalar_one()


async def find_user_inventory(
    db: AsyncSession,
    user_id: int,
    location: str = "all",
    storage_box_id: Optional[int] = None,
) -> List[ItemUser]:
    stmt = select(ItemUser).where(ItemUser.user_id == user_id)
    if location == "active":
        stmt = stmt.where(ItemUser.storage_box_id.is_(None))
    elif location == "box":
        stmt = stmt.where(ItemUser.storage_box_id == storage_box_id)
    return list((await db.execute(stmt.order_by(ItemUser.id))).scalars().all())


def value_record(record: ItemUser, prices: PriceBook) -> Dict[str, object]:
    price = prices.for_item(record.item_id)
    base_value = price.price if price else 0.0
    stickers = prices.priced_stickers(record.stickers)
    keychain = prices.priced_keychain(record.keychain)
    sticker_value = round(sum(s.price for s in stickers), 2)
    keychain_value = keychain.price if keychain else 0.0

    return {
        "id": record.id,
        "asset_id": record.asset_id,
        "item_id": record.item_id,
        "hash_name": record.item.hash_name,
        "name": record.item.name,
        "float_value": record.float_value,
        "pattern_index": record.pattern_index,
        "wear_category": record.wear_category,
        "is_stattrak": record.is_stattrak,
        "is_souvenir": record.is_souvenir,
        "name_tag": record.name_tag,
        "storage_box_id": record.storage_box_id,
        "acquired_price": record.acquired_price,
        "price": price.price if price else None,
        "median_price": price.median_price if price else None,
        "price_date": price.price_date.isoformat() if price else None,
        "stickers": [s.model_dump() for s in stickers],
        "sticker_value": sticker_value,
        "keychain": keychain.model_dump() if keychain else None,
        "keychain_value": keychain_value,
        # stickers are not part of the item's value
        "item_total_value": round(base_value + keychain_value, 2),
    }


async def price_book_for(db: AsyncSession, records: List[ItemUser]) -> PriceBook:
    accessories: List[str] = []
    for record in records:
        accessories.extend(accessory_hash_names(record.stickers, record.keychain))
    return await load_price_book(db, (r.item_id for r in records), accessories)


async def list_inventory_with_prices(
    db: AsyncSession,
    user_id: int,
    location: str = "active",
    storage_box_id: Optional[int] = None,
) -> List[Dict[str, object]]:
    records = await find_user_inventory(db, user_id, location, storage_box_id)
    if not records:
        return []
    prices = await price_book_for(db, records)
    rows = [value_record(r, prices) for r in records]
    rows.sort(key=lambda r: r["item_total_value"], reverse=True)
    return rows


async def get_inventory_summary(db: AsyncSession, user_id: int) -> Dict[str, object]:
    rows = await list_inventory_with_prices(db, user_id, "all")

    def _group(subset: List[Dict[str, object]]) -> Dict[str, object]:
        costs = [r["acquired_price"] for r in subset if r["acquired_price"] is not None]
        return {
            "count": len(subset),
            "priced_count": len([r for r in subset if r["price"] is not None]),
            "value": round(sum(r["item_total_value"] for r in subset), 2),
            "total_cost": round(sum(costs), 2),
        }

    active = _group([r for r in rows if r["storage_box_id"] is None])
    stored = _group([r for r in rows if r["storage_box_id"] is not None])

    total_value = active["value"] + stored["value"]
    total_cost = active["total_cost"] + stored["total_cost"]
    profit = round(total_value - total_cost, 2) if total_cost else None

    return {
        "active": active,
        "stored": stored,
        "total_value": round(total_value, 2),
        "total_cost": round(total_cost, 2),
        "profit_loss": profit,
        "profit_pct": round(profit / total_cost * 100, 2) if profit is not None and total_cost else None,
    }


# ------------------------------------------------------------------ #
#  Acquisition details (cost basis for profit / loss)                  #
# ------------------------------------------------------------------ #

async def update_acquisition(
    db: AsyncSession,
    user_id: int,
    record_id: int,
    acquired_price: Optional[float] = None,
    acquired_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> ItemUser:
    """Set what the user paid for a record. Fields left as None are kept."""
    record = await db.get(ItemUser, record_id)
    if record is None:
        raise LookupError(f"Item with ID {record_id} not found")
    if record.user_id != user_id:
        raise PermissionError(f"Unauthorized: Item {record_id} does not belong to user")
    if acquired_price is not None and acquired_price < 0:
        raise ValueError("acquired_price cannot be negative")

    if acquired_price is not None:
        record.acquired_price = acquired_price
    if acquired_date is not None:
        record.acquired_date = acquired_date
    if notes is not None:
        record.notes = notes
    await db.commit()
    logger.info("Acquisition details updated for item %s (price=%s)", record_id, record.acquired_price)
    return record
