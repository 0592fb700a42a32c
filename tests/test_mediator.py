"""Tests for the permission-checked query mediator.

Uses a mocked asyncpg pool: no database required.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.datagate.access.entities import EntityType
from src.datagate.access.mediator import QueryMediator
from src.datagate.api.exceptions import (
    BadRequestError,
    ConnectionPoolError,
    InternalStorageError,
    NotFoundError,
    PermissionDeniedError,
)


@pytest.fixture
def make_mediator(matrix, registry, config, pool_factory):
    def _make(rows=None, side_effect=None):
        pool, conn = pool_factory(rows=rows, side_effect=side_effect)
        return QueryMediator(pool, matrix, registry, config), pool, conn
    return _make


class TestPermissionChecks:
    """Permission is checked before any storage access."""

    @pytest.mark.asyncio
    async def test_delete_requires_admin_level(self, make_mediator):
        """operator holds WRITE on equipment but not ADMIN."""
        mediator, pool, conn = make_mediator(rows=[{"id": 1}])

        with pytest.raises(PermissionDeniedError) as exc_info:
            await mediator.delete("operator", EntityType.EQUIPMENT, 1)

        assert exc_info.value.status_code == 403
        assert str(exc_info.value.message) == "Permission denied for operator to delete equipment"
        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_allowed_where_delete_is_not(self, make_mediator):
        mediator, _, conn = make_mediator(rows=[{"id": 1, "status": "maintenance"}])

        row = await mediator.update("operator", EntityType.EQUIPMENT, 1, {"status": "maintenance"})

        assert row["status"] == "maintenance"
        conn.fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_query_denied_before_acquire(self, make_mediator):
        mediator, pool, _ = make_mediator()

        with pytest.raises(PermissionDeniedError):
            await mediator.query("guest", EntityType.POWER_DATA)

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_user_cannot_write_equipment(self, make_mediator):
        mediator, pool, _ = make_mediator()

        with pytest.raises(PermissionDeniedError):
            await mediator.create("user", EntityType.EQUIPMENT, {"name": "Pump"})

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_can_delete(self, make_mediator):
        mediator, pool, conn = make_mediator(rows=[{"id": 4}])

        assert await mediator.delete("admin", EntityType.EQUIPMENT, 4) is True
        pool.release.assert_awaited_once_with(conn)


class TestReads:
    """get_by_id and query."""

    @pytest.mark.asyncio
    async def test_get_by_id_not_found(self, make_mediator):
        mediator, _, _ = make_mediator(rows=[])

        with pytest.raises(NotFoundError) as exc_info:
            await mediator.get_by_id("user", EntityType.POWER_DATA, 42)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_query_passes_bind_parameters(self, make_mediator):
        mediator, _, conn = make_mediator(rows=[{"id": 2}, {"id": 1}])

        rows = await mediator.query("user", "equipment", {"status": "active"}, limit=10, offset=5)

        assert rows == [{"id": 2}, {"id": 1}]
        sql, *params = conn.fetch.await_args.args
        assert 'ORDER BY "id" DESC' in sql
        assert params == ["active", 10, 5]

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, make_mediator):
        mediator, _, conn = make_mediator()

        await mediator.query("user", EntityType.POWER_DATA, limit=100000)
        assert conn.fetch.await_args.args[-2:] == (500, 0)

        await mediator.query("user", EntityType.POWER_DATA, limit=0)
        assert conn.fetch.await_args.args[-2:] == (1, 0)

    @pytest.mark.asyncio
    async def test_default_limit(self, make_mediator):
        mediator, _, conn = make_mediator()

        await mediator.query("user", EntityType.POWER_DATA)

        assert conn.fetch.await_args.args[-2:] == (100, 0)

    @pytest.mark.asyncio
    async def test_negative_offset_rejected(self, make_mediator):
        mediator, pool, _ = make_mediator()

        with pytest.raises(BadRequestError):
            await mediator.query("user", EntityType.POWER_DATA, offset=-1)

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_unmapped_entity_is_bad_request(self, make_mediator):
        mediator, _, _ = make_mediator()

        with pytest.raises(BadRequestError):
            await mediator.query("admin", "spaceship")


class TestWrites:
    """create / update / delete."""

    @pytest.mark.asyncio
    async def test_create_then_get_round_trip(self, matrix, registry, config, pool_factory, in_memory_table):
        pool, conn = pool_factory()
        conn.fetch = AsyncMock(side_effect=in_memory_table.fetch)
        mediator = QueryMediator(pool, matrix, registry, config)

        data = {"name": "Walk-in freezer", "type": "refrigeration", "nominal_power": 3.2}
        created = await mediator.create("operator", EntityType.EQUIPMENT, data)
        fetched = await mediator.get_by_id("operator", EntityType.EQUIPMENT, created["id"])

        assert fetched["id"] == created["id"]
        for key, value in data.items():
            assert fetched[key] == value

    @pytest.mark.asyncio
    async def test_update_empty_data_touches_no_storage(self, make_mediator):
        mediator, pool, _ = make_mediator()

        with pytest.raises(BadRequestError):
            await mediator.update("admin", EntityType.EQUIPMENT, 1, {})

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_missing_record(self, make_mediator):
        mediator, _, _ = make_mediator(rows=[])

        with pytest.raises(NotFoundError):
            await mediator.update("operator", EntityType.EQUIPMENT, 99, {"status": "x"})

    @pytest.mark.asyncio
    async def test_delete_missing_record(self, make_mediator):
        mediator, _, _ = make_mediator(rows=[])

        with pytest.raises(NotFoundError):
            await mediator.delete("admin", EntityType.EQUIPMENT, 99)


class TestStorageFailures:
    """Driver and pool errors are wrapped."""

    @pytest.mark.asyncio
    async def test_driver_error_wrapped(self, make_mediator):
        mediator, pool, conn = make_mediator(
            side_effect=RuntimeError("connection to postgresql://u:secret@db/energy lost")
        )

        with pytest.raises(InternalStorageError) as exc_info:
            await mediator.query("user", EntityType.POWER_DATA)

        error = exc_info.value
        assert error.status_code == 500
        assert error.message == "Database operation failed"
        assert "secret" not in str(error)
        assert isinstance(error.cause, RuntimeError)
        pool.release.assert_awaited_once_with(conn)

    @pytest.mark.asyncio
    async def test_acquire_timeout(self, make_mediator):
        mediator, pool, _ = make_mediator()
        pool.acquire = AsyncMock(side_effect=asyncio.TimeoutError())

        with pytest.raises(ConnectionPoolError):
            await mediator.query("user", EntityType.POWER_DATA)

    @pytest.mark.asyncio
    async def test_missing_pool(self, matrix, registry, config):
        mediator = QueryMediator(None, matrix, registry, config)

        with pytest.raises(InternalStorageError):
            await mediator.get_by_id("user", EntityType.POWER_DATA, 1)
