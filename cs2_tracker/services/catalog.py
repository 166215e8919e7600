"""
Catalog matching: snapshot record → item row by market hash name.

classid is not used: several cosmetic variants can share one classid, while
the hash name identifies the item type. Lookups order by id so that the
first catalog entry wins if the catalog ever holds duplicates.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.models.db_models import Item
from cs2_tracker.schemas.inventory import NormalizedRecord, UnmatchedRecord

logger = logging.getLogger(__name__)


async def find_item_by_hash_name(db: AsyncSession, hash_name: Optional[str]) -> Optional[Item]:
    if not hash_name:
        return None
    result = await db.execute(
        select(Item).where(Item.hash_name == hash_name).order_by(Item.id).limit(1)
    )
    return result.scalar_one_or_none()


async def find_items_by_hash_names(db: AsyncSession, hash_names: Iterable[str]) -> Dict[str, Item]:
    names = sorted({n for n in hash_names if n})
    if not names:
        return {}
    result = await db.execute(
        select(Item).where(Item.hash_name.in_(names)).order_by(Item.id)
    )
    found: Dict[str, Item] = {}
    for item in result.scalars().all():
        found.setdefault(item.hash_name, item)
    return found


async def match_records(
    db: AsyncSession,
    records: List[NormalizedRecord],
) -> Tuple[List[Tuple[Item, NormalizedRecord]], List[UnmatchedRecord]]:
    """Split records into (catalog item, record) pairs and unmatched entries."""
    catalog = await find_items_by_hash_names(db, (r.market_hash_name for r in records))

    matched: List[Tuple[Item, NormalizedRecord]] = []
    unmatched: List[UnmatchedRecord] = []
    for record in records:
        item = catalog.get(record.market_hash_name) if record.market_hash_name else None
        if item is None:
            unmatched.append(UnmatchedRecord(
                name=record.name or "Unknown",
                market_hash_name=record.market_hash_name or "Unknown",
                class_id=record.class_id,
                asset_id=record.asset_id,
            ))
            continue
        matched.append((item, record))

    if unmatched:
        logger.info("match_records: %d of %d records not in catalog", len(unmatched), len(records))
    return matched, unmatched


async def upsert_item(
    db: AsyncSession,
    hash_name: str,
    name: str,
    **fields: object,
) -> Item:
    """Create or update a catalog entry (the catalog sync pipeline itself lives elsewhere)."""
    item = await find_item_by_hash_name(db, hash_name)
    if item is None:
        item = Item(hash_name=hash_name, name=name)
        db.add(item)
    else:
        item.name = name
    for key, value in fields.items():
        if value is not None:
            setattr(item, key, value)
    await db.flush()
    return item
