from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncIterator, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from cs2_tracker.core.database import Base  # noqa: E402
from cs2_tracker.models.db_models import Item, User  # noqa: E402
from cs2_tracker.services.staging import InMemorySessionStore, StagedDiffStore  # noqa: E402
from snapshot_builders import (  # noqa: E402
    AK_REDLINE,
    AWP_ASIIMOV,
    CHARM_AVA,
    GLOCK_WATER,
    NAME_TAG,
    SEALED_GRAFFITI,
    STICKER_CROWN,
)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store() -> StagedDiffStore:
    return StagedDiffStore(InMemorySessionStore(ttl_seconds=3600))


@pytest_asyncio.fixture
async def user(db: AsyncSession) -> User:
    user = User(username="alice", steam_id="76561198000000001")
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db: AsyncSession) -> User:
    user = User(username="bob", steam_id="76561198000000002")
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def catalog(db: AsyncSession) -> Dict[str, Item]:
    items = {
        AK_REDLINE: Item(hash_name=AK_REDLINE, name="AK-47 | Redline", type="Rifle"),
        AWP_ASIIMOV: Item(hash_name=AWP_ASIIMOV, name="AWP | Asiimov", type="Sniper Rifle"),
        GLOCK_WATER: Item(hash_name=GLOCK_WATER, name="Glock-18 | Water Elemental", type="Pistol"),
        SEALED_GRAFFITI: Item(hash_name=SEALED_GRAFFITI, name="Sealed Graffiti | Lambda", type="Graffiti"),
        NAME_TAG: Item(hash_name=NAME_TAG, name="Name Tag", type="Tool"),
        STICKER_CROWN: Item(hash_name=STICKER_CROWN, name="Sticker | Crown (Foil)", type="Sticker"),
        CHARM_AVA: Item(hash_name=CHARM_AVA, name="Charm | Lil' Ava", type="Charm"),
    }
    db.add_all(items.values())
    await db.commit()
    return items
