"""
Database integration tests for the key/value snapshot store.

Uses an in-memory SQLite database through aiosqlite.
"""

import pytest

from passingplates.application.sighting_store import SightingStore
from passingplates.infrastructure.db.repository import SqlKeyValueStore
from passingplates.infrastructure.db.session import (
    create_session_factory,
    create_test_engine,
    init_db,
)


@pytest.fixture
async def db_engine():
    """Create a test database engine with the schema in place."""
    engine = create_test_engine()
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_kv(db_engine) -> SqlKeyValueStore:
    return SqlKeyValueStore(create_session_factory(db_engine))


class TestSqlKeyValueStore:
    """Tests for SqlKeyValueStore."""

    @pytest.mark.asyncio
    async def test_missing_key(self, sql_kv):
        assert await sql_kv.get("absent") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, sql_kv):
        await sql_kv.set("passingplates.records.v1", "[]")

        assert await sql_kv.get("passingplates.records.v1") == "[]"

    @pytest.mark.asyncio
    async def test_overwrite(self, sql_kv):
        await sql_kv.set("key", "first")
        await sql_kv.set("key", "second")

        assert await sql_kv.get("key") == "second"

    @pytest.mark.asyncio
    async def test_delete(self, sql_kv):
        await sql_kv.set("key", "value")

        await sql_kv.delete("key")
        await sql_kv.delete("key")

        assert await sql_kv.get("key") is None

    @pytest.mark.asyncio
    async def test_large_value(self, sql_kv):
        value = "x" * 200_000

        await sql_kv.set("key", value)

        assert await sql_kv.get("key") == value


class TestSightingHistoryPersistence:
    """Sighting history surviving a store restart on SQL storage."""

    @pytest.mark.asyncio
    async def test_history_survives_restart(self, sql_kv, make_detection):
        store = SightingStore(sql_kv)
        await store.load()
        await store.add_detection(make_detection("AB12CDE", captured_at=1))
        await store.add_detection(make_detection("ABC123", captured_at=2))
        await store.add_detection(make_detection("AB12CDE", captured_at=3))

        restarted = SightingStore(sql_kv)
        records = await restarted.load()

        assert [(r.plate, r.count) for r in records] == [("AB12CDE", 2), ("ABC123", 1)]
        assert restarted.get_stats().total_sightings == 3

    @pytest.mark.asyncio
    async def test_reset_survives_restart(self, sql_kv, make_detection):
        store = SightingStore(sql_kv)
        await store.add_detection(make_detection())
        await store.reset()

        assert await SightingStore(sql_kv).load() == []
