"""Shared route dependencies"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from cs2_tracker.core.database import get_db
from cs2_tracker.models.db_models import User
from cs2_tracker.services.staging import StagedDiffStore, get_staged_store


async def get_current_user(
    x_user_id: Optional[int] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Acting user from the X-User-Id header. Authentication itself is handled
    in front of this service.
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = await db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail=f"Unknown user {x_user_id}")
    return user


def get_store() -> StagedDiffStore:
    return get_staged_store()
