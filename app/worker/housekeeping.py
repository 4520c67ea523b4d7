"""
Periodic cleanup of rows that are already dead by their own timestamps.

Reads never depend on this running: expired temporary DM blocks and expired
vibes are filtered out at query time. The sweep only keeps the tables small.

Run as an RQ job (``purge_expired_dm_blocks``) or inline from the app loop.
"""

import asyncio
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.logging import LatencyLogger, get_logger
from app.core.time import Clock, utcnow
from app.infra.db import AsyncSessionLocal
from app.infra.queue import QueueFactory
from app.models.vibe import Vibe
from app.services.dm import DmService

logger = get_logger(__name__)

JOB_PATH = "app.worker.housekeeping.purge_expired_dm_blocks"


async def purge_expired_vibes(db: AsyncSession, clock: Clock = utcnow) -> int:
    result = await db.execute(delete(Vibe).where(Vibe.expires_at <= clock()))
    await db.commit()
    return result.rowcount


async def run_housekeeping(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    clock: Clock = utcnow,
) -> dict:
    with LatencyLogger("housekeeping", logger):
        async with session_factory() as db:
            blocks = await DmService(db, clock=clock).purge_expired_blocks()
            vibes = await purge_expired_vibes(db, clock)
    logger.info("housekeeping.done", blocks_purged=blocks, vibes_purged=vibes)
    return {"blocks_purged": blocks, "vibes_purged": vibes}


def purge_expired_dm_blocks() -> dict:
    """RQ entrypoint"""
    return asyncio.run(run_housekeeping())


async def housekeeping_loop(interval: Optional[int] = None) -> None:
    """Background task started from the app lifespan"""
    interval = interval or settings.housekeeping_interval_seconds
    while True:
        try:
            if settings.housekeeping_use_queue:
                await asyncio.to_thread(QueueFactory.get_queue().enqueue, JOB_PATH)
            else:
                await run_housekeeping()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("housekeeping.failed", error=str(e))
        await asyncio.sleep(interval)
