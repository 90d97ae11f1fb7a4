import logging

from fastapi import APIRouter, Request
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import SessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    checks = {"database": "ok", "redis": "ok"}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unavailable"
    finally:
        db.close()

    try:
        await request.app.state.redis.ping()
    except (RedisError, OSError) as e:
        logger.error(f"Redis health check failed: {e}")
        checks["redis"] = "unavailable"

    healthy = all(v == "ok" for v in checks.values())
    return {"status": "ok" if healthy else "degraded", "checks": checks}
