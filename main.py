import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cs2_tracker.core.config import settings
from cs2_tracker.core.database import init_db
from cs2_tracker.api.routes import inventory, inventory_import, items, storage_boxes

# ── Scheduled jobs ──────────────────────────────────────────────────────────
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from cs2_tracker.services.staging import purge_expired_staged_diffs

scheduler = AsyncIOScheduler()
logger = logging.getLogger(__name__)
# ────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title="CS2 Tracker",
    description="CS2 inventory tracking: snapshot import, storage units, valuation",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(items.router, prefix="/api/items", tags=["items"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
app.include_router(inventory_import.router, prefix="/api/import", tags=["import"])
app.include_router(storage_boxes.router, prefix="/api/storage-boxes", tags=["storage-boxes"])


@app.on_event("startup")
async def startup():
    await init_db()

    # Staged previews live in memory; drop the ones whose lifetime ran out
    scheduler.add_job(purge_expired_staged_diffs, "interval",
                      minutes=settings.staged_diff_purge_minutes,
                      id="purge_staged_diffs", misfire_grace_time=300)

    scheduler.start()
    logger.info("APScheduler started with 1 background job")


@app.on_event("shutdown")
async def shutdown():
    if scheduler.running:
        scheduler.shutdown(wait=False)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=True)
