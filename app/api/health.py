"""
Health check endpoint
"""

from fastapi import APIRouter
from sqlalchemy import text

from app.core.config import settings
from app.core.deps import SessionDep
from app.core.logging import get_logger
from app.infra.redis import get_redis

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health")
async def health(db: SessionDep):
    """Check the database, and redis when it backs the session store"""
    status = {"api": "ok", "env": settings.env, "db": "unknown"}

    try:
        await db.execute(text("SELECT 1"))
        status["db"] = "ok"
    except Exception as e:
        logger.warning("health.db.failed", error=str(e))
        status["db"] = f"error: {e}"

    if settings.session_backend == "redis":
        try:
            redis = await get_redis()
            await redis.ping()
            status["redis"] = "ok"
        except Exception as e:
            logger.warning("health.redis.failed", error=str(e))
            status["redis"] = f"error: {e}"

    return status
