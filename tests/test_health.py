"""Tests for the readiness checks."""

import pytest

from product_requirements.services.cache import InMemorySearchCache, RedisSearchCache
from product_requirements.services.health import check_database, readiness


class TestReadiness:
    def test_database_check(self, db_session):
        assert check_database(db_session) is True

    @pytest.mark.asyncio
    async def test_ready_when_both_checks_pass(self, db_session):
        result = await readiness(db_session, InMemorySearchCache())
        assert result == {"ready": True, "checks": {"database": "ok", "cache": "ok"}}

    @pytest.mark.asyncio
    async def test_not_ready_without_cache(self, db_session):
        cache = RedisSearchCache("redis://127.0.0.1:1/0", socket_timeout=0.2)

        result = await readiness(db_session, cache)

        assert result["ready"] is False
        assert result["checks"]["cache"] == "unavailable"
        assert result["checks"]["database"] == "ok"
