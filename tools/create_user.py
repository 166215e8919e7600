"""
Create a user
Usage: python tools/create_user.py <username> [--steam-id 7656119...]

Prints the new user's id; send it as the X-User-Id header.
"""

import argparse
import asyncio
import sys
from typing import Optional

from sqlalchemy import select

from cs2_tracker.core.database import AsyncSessionLocal, init_db
from cs2_tracker.models.db_models import User


async def create_user(username: str, steam_id: Optional[str] = None) -> User:
    await init_db()
    async with AsyncSessionLocal() as db:
        existing = (await db.execute(select(User).where(User.username == username))).scalar_one_or_none()
        if existing:
            raise ValueError(f"User '{username}' already exists (id={existing.id})")
        user = User(username=username, steam_id=steam_id)
        db.add(user)
        await db.commit()
        return user


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a CS2 Tracker user")
    parser.add_argument("username")
    parser.add_argument("--steam-id", default=None, help="SteamID64 used by /api/import/fetch")
    args = parser.parse_args()

    try:
        user = asyncio.run(create_user(args.username, args.steam_id))
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(1)
    print(f"✅ Created user '{user.username}' id={user.id}")


if __name__ == "__main__":
    main()
