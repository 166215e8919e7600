"""
Steam Community inventory fetch

Endpoint: GET https://steamcommunity.com/inventory/{steamid}/730/2
          ?l=english&count=500[&start_assetid={cursor}]

Only a convenience source for the import preview: pages are merged into a
single snapshot and returned as raw JSON text, exactly what a user would
paste in. Storage unit contents are never part of this response.

Without cookies only public, tradeable items are visible (no trade-locked
items); with steamLoginSecure + sessionid the full top-level inventory is.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import httpx

from cs2_tracker.core.config import settings
from cs2_tracker.schemas.steam import SteamDescription, SteamInventorySnapshot

logger = logging.getLogger(__name__)

PAGE_SIZE = 500
PAGE_DELAY_SECONDS = 1.2

_BASE_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


def _build_cookies() -> Optional[Dict[str, str]]:
    if settings.steam_login_secure and settings.steam_session_id:
        return {
            "steamLoginSecure": settings.steam_login_secure,
            "sessionid": settings.steam_session_id,
        }
    return None


async def fetch_inventory_snapshot(
    steam_id: str,
    client: Optional[httpx.AsyncClient] = None,
) -> SteamInventorySnapshot:
    """Fetch every page of the top-level inventory and merge them."""
    cookies = _build_cookies()
    if cookies:
        logger.info("fetch_inventory_snapshot: cookie auth, trade-locked items visible")
    else:
        logger.warning("fetch_inventory_snapshot: no cookies, only public tradeable items visible")

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=30, headers=_BASE_HEADERS, cookies=cookies)

    merged = SteamInventorySnapshot()
    descriptions: Dict[str, SteamDescription] = {}
    cursor: Optional[str] = None
    try:
        while True:
            params: dict = {"l": "english", "count": PAGE_SIZE}
            if cursor:
                params["start_assetid"] = cursor

            r = await client.get(settings.steam_inventory_url.format(steam_id=steam_id), params=params)

            if r.status_code == 403:
                raise PermissionError(
                    "Inventory is private or the Steam cookies have expired. "
                    "Check the profile privacy settings or refresh the cookies in .env."
                )
            if r.status_code == 429:
                raise RuntimeError("Steam rate limit hit, try again later")
            r.raise_for_status()

            data = r.json()
            if not data.get("success"):
                raise RuntimeError(f"Steam returned failure: {data}")

            page = SteamInventorySnapshot.model_validate(data)
            merged.assets.extend(page.assets)
            merged.asset_properties.extend(page.asset_properties)
            for desc in page.descriptions:
                descriptions.setdefault(desc.key, desc)
            merged.total_inventory_count = page.total_inventory_count

            if not page.more_items or not page.last_assetid:
                break
            cursor = page.last_assetid
            await asyncio.sleep(PAGE_DELAY_SECONDS)
    finally:
        if own_client:
            await client.aclose()

    merged.descriptions = list(descriptions.values())
    logger.info(
        "fetch_inventory_snapshot: %s  assets=%d  total=%d  authed=%s",
        steam_id, len(merged.assets), merged.total_inventory_count, cookies is not None,
    )
    return merged


async def fetch_inventory_json(steam_id: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Snapshot as JSON text, ready for the import preview."""
    snapshot = await fetch_inventory_snapshot(steam_id, client)
    return snapshot.model_dump_json(exclude={"more_items", "last_assetid"})
