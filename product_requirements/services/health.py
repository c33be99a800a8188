"""Readiness checks for the database and the search cache."""

import asyncio
from typing import Any, Callable, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from .cache import SearchCache

logger = structlog.get_logger()


def check_database(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.warning("database_unavailable", error=str(exc))
        return False
    finally:
        db.rollback()


def check_cache(cache: SearchCache) -> bool:
    return cache.ping()


async def _timed_check(name: str, check: Callable[[], bool], timeout: float) -> bool:
    try:
        return await asyncio.wait_for(asyncio.to_thread(check), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("readiness_check_timeout", check=name, timeout=timeout)
        return False


async def readiness(db: Session, cache: SearchCache) -> Dict[str, Any]:
    """Run both checks concurrently, each bounded by the health-check timeout."""
    timeout = get_settings().health_check_timeout_seconds
    database_ok, cache_ok = await asyncio.gather(
        _timed_check("database", lambda: check_database(db), timeout),
        _timed_check("cache", lambda: check_cache(cache), timeout),
    )
    return {
        "ready": database_ok and cache_ok,
        "checks": {
            "database": "ok" if database_ok else "unavailable",
            "cache": "ok" if cache_ok else "unavailable",
        },
    }
