"""
Price lookups for display payloads (import previews, inventory listing).

Nothing here mutates inventory or staged diffs.

Valuation rules:
  base value      : latest item_price.price of the catalog item
  sticker value   : shown, but never counted in an item's value: applied
                    stickers cannot be scraped off and sold separately
  charm value     : counted: a charm can be detached and sold
Stickers and charms are priced through their own catalog entries,
"Sticker | <name>" / "Patch | <name>" / "Charm | <name>".

Trends:
  trend_Nh = (current - past) / past * 100, rounded to 2 decimals, where
  "past" is the sample closest to (latest sample time - N hours) within
  ±N hours. Both sides use the median price; None when either sample or
  its median is missing (or zero).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.models.db_models import Item, ItemPrice
from cs2_tracker.schemas.inventory import Keychain, PricedKeychain, PricedSticker, Sticker

logger = logging.getLogger(__name__)

TREND_WINDOWS_HOURS = {"trend_24h": 24, "trend_7d": 7 * 24, "trend_30d": 30 * 24}

StickerLike = Union[Sticker, Mapping[str, object]]
KeychainLike = Union[Keychain, Mapping[str, object]]


def sticker_hash_name(name: str, sticker_type: Optional[str] = None) -> str:
    return f"{sticker_type or 'Sticker'} | {name}"


def keychain_hash_name(name: str) -> str:
    return f"Charm | {name}"


def percentage_change(current: Optional[float], past: Optional[float]) -> Optional[float]:
    if current is None or past is None or past == 0:
        return None
    return round((current - past) / past * 100, 2)


def _as_sticker(sticker: StickerLike) -> Optional[Sticker]:
    if isinstance(sticker, Sticker):
        return sticker
    if not sticker.get("name"):
        return None
    return Sticker.model_validate(sticker)


def _as_keychain(keychain: Optional[KeychainLike]) -> Optional[Keychain]:
    if keychain is None or isinstance(keychain, Keychain):
        return keychain
    if not keychain.get("name"):
        return None
    return Keychain.model_validate(keychain)


# ------------------------------------------------------------------ #
#  Batched latest prices                                               #
# ------------------------------------------------------------------ #

async def latest_prices(db: AsyncSession, item_ids: Iterable[int]) -> Dict[int, ItemPrice]:
    ids = sorted(set(item_ids))
    if not ids:
        return {}

    subq = (
        select(ItemPrice.item_id, func.max(ItemPrice.price_date).label("latest_date"))
        .where(ItemPrice.item_id.in_(ids))
        .group_by(ItemPrice.item_id)
        .subquery()
    )
    rows = (await db.execute(
        select(ItemPrice).join(
            subq,
            (ItemPrice.item_id == subq.c.item_id)
            & (ItemPrice.price_date == subq.c.latest_date),
        )
    )).scalars().all()
    return {row.item_id: row for row in rows}


async def latest_price(db: AsyncSession, item_id: int) -> Optional[ItemPrice]:
    result = await db.execute(
        select(ItemPrice)
        .where(ItemPrice.item_id == item_id)
        .order_by(ItemPrice.price_date.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


class PriceBook:
    """Latest prices for a fixed set of items and sticker/charm hash names."""

    def __init__(self, by_item_id: Dict[int, ItemPrice], item_ids_by_hash: Dict[str, int]):
        self._by_item_id = by_item_id
        self._item_ids_by_hash = item_ids_by_hash

    def for_item(self, item_id: int) -> Optional[ItemPrice]:
        return self._by_item_id.get(item_id)

    def for_hash_name(self, hash_name: str) -> Optional[ItemPrice]:
        item_id = self._item_ids_by_hash.get(hash_name)
        return self._by_item_id.get(item_id) if item_id is not None else None

    def value(self, item_id: int) -> float:
        price = self.for_item(item_id)
        return price.price if price else 0.0

    def priced_stickers(self, stickers: Optional[Iterable[StickerLike]]) -> List[PricedSticker]:
        priced: List[PricedSticker] = []
        for raw in stickers or []:
            sticker = _as_sticker(raw)
            if sticker is None:
                continue
            hash_name = sticker_hash_name(sticker.name, sticker.type)
            price = self.for_hash_name(hash_name)
            priced.append(PricedSticker(
                **sticker.model_dump(),
                hash_name=hash_name,
                price=price.price if price else 0.0,
            ))
        return priced

    def priced_keychain(self, keychain: Optional[KeychainLike]) -> Optional[PricedKeychain]:
        parsed = _as_keychain(keychain)
        if parsed is None:
            return None
        hash_name = keychain_hash_name(parsed.name)
        price = self.for_hash_name(hash_name)
        return PricedKeychain(
            **parsed.model_dump(),
            hash_name=hash_name,
            price=price.price if price else 0.0,
        )


def accessory_hash_names(
    stickers: Optional[Iterable[StickerLike]],
    keychain: Optional[KeychainLike],
) -> List[str]:
    names: List[str] = []
    for raw in stickers or []:
        sticker = _as_sticker(raw)
        if sticker is not None:
            names.append(sticker_hash_name(sticker.name, sticker.type))
    parsed = _as_keychain(keychain)
    if parsed is not None:
        names.append(keychain_hash_name(parsed.name))
    return names


async def load_price_book(
    db: AsyncSession,
    item_ids: Iterable[int],
    accessory_names: Iterable[str] = (),
) -> PriceBook:
    names = sorted(set(accessory_names))
    item_ids_by_hash: Dict[str, int] = {}
    if names:
        rows = (await db.execute(
            select(Item.id, Item.hash_name).where(Item.hash_name.in_(names)).order_by(Item.id)
        )).all()
        for item_id, hash_name in rows:
            item_ids_by_hash.setdefault(hash_name, item_id)

    by_item_id = await latest_prices(db, set(item_ids) | set(item_ids_by_hash.values()))
    return PriceBook(by_item_id, item_ids_by_hash)


# ------------------------------------------------------------------ #
#  Price history                                                       #
# ------------------------------------------------------------------ #

async def record_price(
    db: AsyncSession,
    item_id: int,
    price: float,
    median_price: Optional[float] = None,
    price_date: Optional[datetime] = None,
    volume: Optional[int] = None,
    source: str = "steam",
) -> ItemPrice:
    when = price_date or datetime.now(timezone.utc).replace(tzinfo=None)
    existing = (await db.execute(
        select(ItemPrice).where(ItemPrice.item_id == item_id, ItemPrice.price_date == when)
    )).scalar_one_or_none()
    if existing is None:
        existing = ItemPrice(item_id=item_id, price_date=when, price=price)
        db.add(existing)
    existing.price = price
    existing.median_price = median_price
    existing.volume = volume
    existing.source = source
    await db.flush()
    return existing


async def find_closest_price(
    db: AsyncSession,
    item_id: int,
    target: datetime,
    tolerance_hours: int,
    before: Optional[datetime] = None,
) -> Optional[ItemPrice]:
    """Sample nearest to `target` within ±tolerance, strictly earlier than `before` if given."""
    low = target - timedelta(hours=tolerance_hours)
    high = target + timedelta(hours=tolerance_hours)

    earlier_stmt = (
        select(ItemPrice)
        .where(ItemPrice.item_id == item_id, ItemPrice.price_date >= low, ItemPrice.price_date <= target)
        .order_by(ItemPrice.price_date.desc())
        .limit(1)
    )
    later_stmt = (
        select(ItemPrice)
        .where(ItemPrice.item_id == item_id, ItemPrice.price_date > target, ItemPrice.price_date <= high)
        .order_by(ItemPrice.price_date.asc())
        .limit(1)
    )
    if before is not None:
        earlier_stmt = earlier_stmt.where(ItemPrice.price_date < before)
        later_stmt = later_stmt.where(ItemPrice.price_date < before)

    earlier = (await db.execute(earlier_stmt)).scalar_one_or_none()
    later = (await db.execute(later_stmt)).scalar_one_or_none()
    if earlier is None or later is None:
        return earlier or later
    if (target - earlier.price_date) <= (later.price_date - target):
        return earlier
    return later


def _trend_value(price: ItemPrice) -> Optional[float]:
    return price.median_price or None


async def calculate_trend(db: AsyncSession, item_id: int, hours: int) -> Optional[float]:
    current = await latest_price(db, item_id)
    if current is None:
        return None
    past = await find_closest_price(
        db, item_id, current.price_date - timedelta(hours=hours), hours, before=current.price_date
    )
    if past is None:
        return None
    return percentage_change(_trend_value(current), _trend_value(past))


async def calculate_trends(db: AsyncSession, item_id: int) -> Dict[str, Optional[float]]:
    current = await latest_price(db, item_id)
    trends: Dict[str, Optional[float]] = {
        "price": current.price if current else None,
        "median_price": current.median_price if current else None,
    }
    for key, hours in TREND_WINDOWS_HOURS.items():
        trends[key] = await calculate_trend(db, item_id, hours) if current else None
    return trends
