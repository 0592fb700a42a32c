"""Tests for the database function registry and default catalog."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from src.datagate.access.entities import EntityType
from src.datagate.access.permissions import PermissionLevel
from src.datagate.api.exceptions import (
    BadRequestError,
    ConfigurationError,
    FunctionExecutionError,
    NotFoundError,
    PermissionDeniedError,
)
from src.datagate.service import create_data_gate
from src.datagate.tools.registry import (
    DatabaseFunction,
    FunctionParameter,
    FunctionRegistration,
    FunctionRegistry,
    ParameterType,
    format_functions_for_llm,
)


@pytest.fixture
def make_gate(config, pool_factory):
    def _make(rows=None, side_effect=None):
        pool, conn = pool_factory(rows=rows, side_effect=side_effect)
        return create_data_gate(pool, config), pool, conn
    return _make


def _registration(execute, name=DatabaseFunction.GET_SETTINGS, parameters=()):
    return FunctionRegistration(
        name=name,
        description="test function",
        required_entity_type=EntityType.SETTINGS,
        required_permission_level=PermissionLevel.READ,
        execute=execute,
        parameters=parameters,
    )


class TestDispatch:
    """execute_database_function."""

    @pytest.mark.asyncio
    async def test_unknown_function(self, make_gate):
        gate, pool, _ = make_gate()

        with pytest.raises(NotFoundError) as exc_info:
            await gate.execute_database_function("doesNotExist", {}, "admin")

        assert exc_info.value.status_code == 404
        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_declared_requirement_checked_first(self, make_gate):
        gate, pool, _ = make_gate()

        with pytest.raises(PermissionDeniedError) as exc_info:
            await gate.execute_database_function(
                "updateEquipment", {"id": 1, "data": {"status": "x"}}, "user"
            )

        assert exc_info.value.message == "Permission denied for user to execute updateEquipment"
        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_role_denied(self, make_gate):
        gate, _, _ = make_gate()

        with pytest.raises(PermissionDeniedError):
            await gate.execute_database_function("queryPowerData", {}, "guest")

    @pytest.mark.asyncio
    async def test_defaults_applied(self, make_gate):
        gate, _, conn = make_gate(rows=[{"id": 3}])

        rows = await gate.execute_database_function("queryPowerData", {}, "user")

        assert rows == [{"id": 3}]
        sql, *params = conn.fetch.await_args.args
        assert "WHERE" not in sql
        assert params == [100, 0]

    @pytest.mark.asyncio
    async def test_float_limit_accepted(self, make_gate):
        gate, _, conn = make_gate()

        await gate.execute_database_function(
            "queryEquipment", {"filters": {"status": "active"}, "limit": 10.0}, "user"
        )

        assert conn.fetch.await_args.args[1:] == ("active", 10, 0)

    @pytest.mark.asyncio
    async def test_non_integer_limit_rejected(self, make_gate):
        gate, pool, _ = make_gate()

        with pytest.raises(BadRequestError):
            await gate.execute_database_function("queryEquipment", {"limit": "ten"}, "user")

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, make_gate):
        gate, pool, _ = make_gate()

        with pytest.raises(BadRequestError) as exc_info:
            await gate.execute_database_function("getPowerDataById", {}, "user")

        assert exc_info.value.field == "id"
        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_params_must_be_an_object(self, make_gate):
        gate, _, _ = make_gate()

        with pytest.raises(BadRequestError):
            await gate.execute_database_function("queryPowerData", ["limit", 5], "user")

    @pytest.mark.asyncio
    async def test_unexpected_failure_wrapped(self, matrix):
        execute = AsyncMock(side_effect=RuntimeError("boom at postgresql://u:secret@db/energy"))
        registry = FunctionRegistry([_registration(execute)], matrix)

        with pytest.raises(FunctionExecutionError) as exc_info:
            await registry.execute_database_function("getSettings", {}, "user")

        error = exc_info.value
        assert error.code == "FUNCTION_EXECUTION_ERROR"
        assert error.status_code == 500
        assert "secret" not in error.message
        assert error.details["function"] == "getSettings"

    @pytest.mark.asyncio
    async def test_gate_errors_pass_through(self, make_gate):
        gate, _, _ = make_gate(rows=[])

        with pytest.raises(NotFoundError):
            await gate.execute_database_function(
                "updateSettings", {"data": {"data_source": "live"}}, "operator"
            )

    @pytest.mark.asyncio
    async def test_unknown_keys_dropped(self, matrix):
        execute = AsyncMock(return_value="ok")
        registration = _registration(
            execute,
            parameters=(FunctionParameter("limit", ParameterType.NUMBER, "Limit", default=5),),
        )
        registry = FunctionRegistry([registration], matrix)

        await registry.execute_database_function("getSettings", {"limit": 2, "extra": 1}, "user")

        execute.assert_awaited_once_with({"limit": 2}, "user")


class TestRegistry:
    """Construction, lookup and listing."""

    def test_duplicate_names_rejected(self, matrix):
        execute = AsyncMock()
        with pytest.raises(ConfigurationError):
            FunctionRegistry([_registration(execute), _registration(execute)], matrix)

    def test_lookup(self, make_gate):
        gate, _, _ = make_gate()

        assert gate.get_database_function("getSettings").name is DatabaseFunction.GET_SETTINGS
        assert gate.get_database_function("dropEverything") is None
        assert "queryPowerData" in gate.functions
        assert "dropEverything" not in gate.functions

    def test_catalog_is_complete(self, make_gate):
        gate, _, _ = make_gate()

        assert len(gate.functions) == len(DatabaseFunction) == 20
        for name in DatabaseFunction:
            assert gate.get_database_function(name.value) is not None

    def test_list_functions_filtered_by_role(self, make_gate):
        gate, _, _ = make_gate()

        user_names = {r.name.value for r in gate.list_database_functions("user")}
        assert "queryPowerData" in user_names
        assert "getSettings" in user_names
        assert "updateEquipment" not in user_names
        assert "createNotification" not in user_names
        assert len(user_names) == 14

        assert len(gate.list_database_functions("operator")) == 20
        assert len(gate.list_database_functions("admin")) == 20
        assert gate.list_database_functions("guest") == []

    def test_defaults_are_not_shared(self, make_gate):
        gate, _, _ = make_gate()
        registration = gate.get_database_function("queryPowerData")

        first = registration.bind_params({})
        first["filters"]["status"] = "mutated"

        assert registration.bind_params({})["filters"] == {}


class TestToolFormats:
    """Schemas handed to the model."""

    def test_openai_format(self, make_gate):
        gate, _, _ = make_gate()

        tool = gate.get_database_function("queryPowerData").to_openai_format()

        assert tool["type"] == "function"
        assert tool["function"]["name"] == "queryPowerData"
        parameters = tool["function"]["parameters"]
        assert parameters["type"] == "object"
        assert parameters["required"] == []
        assert parameters["properties"]["limit"] == {
            "type": "number",
            "description": "Maximum number of records to return",
            "default": 100,
        }

    def test_anthropic_format(self, make_gate):
        gate, _, _ = make_gate()

        tool = gate.get_database_function("getPowerDataById").to_anthropic_format()

        assert tool["name"] == "getPowerDataById"
        assert tool["input_schema"]["required"] == ["id"]

    def test_format_functions_for_llm(self, make_gate):
        gate, _, _ = make_gate()

        tools = format_functions_for_llm(gate.list_database_functions("user"))

        assert len(tools) == 14
        assert all(t["type"] == "function" for t in tools)


class TestCatalog:
    """Behaviour of individual catalog functions."""

    @pytest.mark.asyncio
    async def test_get_settings_empty(self, make_gate):
        gate, _, _ = make_gate(rows=[])
        assert await gate.execute_database_function("getSettings", {}, "user") is None

    @pytest.mark.asyncio
    async def test_get_settings_returns_first_row(self, make_gate):
        gate, _, conn = make_gate(rows=[{"id": 1, "data_source": "live"}])

        settings = await gate.execute_database_function("getSettings", {}, "user")

        assert settings == {"id": 1, "data_source": "live"}
        assert conn.fetch.await_args.args[1:] == (1, 0)

    @pytest.mark.asyncio
    async def test_update_settings_targets_current_row(self, make_gate):
        gate, _, conn = make_gate()
        conn.fetch = AsyncMock(side_effect=[
            [{"id": 1, "data_source": "live"}],
            [{"id": 1, "data_source": "simulated"}],
        ])

        row = await gate.execute_database_function(
            "updateSettings", {"data": {"data_source": "simulated"}}, "operator"
        )

        assert row["data_source"] == "simulated"
        sql, *params = conn.fetch.await_args.args
        assert sql.startswith('UPDATE "settings"')
        assert params == ["simulated", 1]

    @pytest.mark.asyncio
    async def test_create_notification(self, make_gate):
        gate, _, conn = make_gate(rows=[{"id": 9, "status": "pending"}])

        await gate.execute_database_function(
            "createNotification",
            {"recipient": "+15550100", "message": "Battery low"},
            "operator",
        )

        sql, *params = conn.fetch.await_args.args
        assert sql.startswith(
            'INSERT INTO "signal_notifications" ("recipient_number", "message", "type", "status")'
        )
        assert params == ["+15550100", "Battery low", "info", "pending"]

    @pytest.mark.asyncio
    async def test_update_task_status(self, make_gate):
        gate, _, conn = make_gate(rows=[{"id": 4, "status": "completed"}])

        await gate.execute_database_function(
            "updateTaskStatus", {"id": 4, "status": "completed", "result": {"ok": True}}, "operator"
        )

        sql, *params = conn.fetch.await_args.args
        assert 'SET "status" = $1, "updated_at" = $2, "result" = $3' in sql
        assert params[0] == "completed"
        assert isinstance(params[1], datetime)
        assert params[2] == '{"ok": true}'
        assert params[3] == 4

    @pytest.mark.asyncio
    async def test_time_series_points_serialized(self, make_gate):
        rows = [{"time": datetime(2024, 6, 1), "value": 2.5}]
        gate, _, _ = make_gate(rows=rows)

        points = await gate.execute_database_function(
            "getPowerDataTimeSeries",
            {
                "valueColumn": "solar_output",
                "interval": "day",
                "startTime": "2024-06-01T00:00:00Z",
                "endTime": "2024-06-02T00:00:00Z",
            },
            "user",
        )

        assert points == [{"time": "2024-06-01T00:00:00", "value": 2.5}]

    @pytest.mark.asyncio
    async def test_stats(self, make_gate):
        gate, _, _ = make_gate(rows=[{"value": 42}])

        count = await gate.execute_database_function(
            "getPowerDataStats",
            {"aggregationColumn": "*", "aggregationType": "count"},
            "user",
        )

        assert count == 42
