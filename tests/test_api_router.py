"""Tests for the data gate HTTP API.

The application is built around a DataGate whose pool is mocked; the role
is supplied by a small middleware standing in for the auth layer.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.datagate.api.app import create_app
from src.datagate.api.router import create_data_gate_dependencies
from src.datagate.service import create_data_gate


@pytest.fixture
def make_client(config, pool_factory):
    def _make(rows=None, side_effect=None):
        pool, conn = pool_factory(rows=rows, side_effect=side_effect)
        app = create_app(gate=create_data_gate(pool, config), config=config)

        @app.middleware("http")
        async def role_from_header(request, call_next):
            role = request.headers.get("X-Role")
            if role:
                request.state.role = role
            return await call_next(request)

        return TestClient(app), pool, conn

    yield _make
    create_data_gate_dependencies(None)


class TestFunctions:
    """Function listing and dispatch endpoints."""

    def test_list_without_role_is_empty(self, make_client):
        client, _, _ = make_client()

        response = client.get("/api/data/functions")

        assert response.status_code == 200
        assert response.json() == {"role": "anonymous", "functions": [], "total": 0}

    def test_list_for_operator(self, make_client):
        client, _, _ = make_client()

        response = client.get("/api/data/functions", headers={"X-Role": "operator"})

        body = response.json()
        assert body["total"] == 20
        assert body["functions"][0]["type"] == "function"

    def test_call_function(self, make_client):
        client, _, conn = make_client(rows=[{"id": 2, "solar_output": 3.5}])

        response = client.post(
            "/api/data/functions/queryPowerData",
            json={"params": {"limit": 5}},
            headers={"X-Role": "user"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "function": "queryPowerData",
            "result": [{"id": 2, "solar_output": 3.5}],
        }
        assert conn.fetch.await_args.args[1:] == (5, 0)

    def test_permission_denied_is_403(self, make_client):
        client, pool, _ = make_client()

        response = client.post(
            "/api/data/functions/updateEquipment",
            json={"params": {"id": 1, "data": {"status": "idle"}}},
            headers={"X-Role": "user"},
        )

        assert response.status_code == 403
        assert response.json() == {
            "detail": "Permission denied for user to execute updateEquipment",
            "code": "PERMISSION_DENIED",
        }
        pool.acquire.assert_not_called()

    def test_unknown_function_is_404(self, make_client):
        client, _, _ = make_client()

        response = client.post(
            "/api/data/functions/doesNotExist", json={}, headers={"X-Role": "admin"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_missing_parameter_is_400(self, make_client):
        client, _, _ = make_client()

        response = client.post(
            "/api/data/functions/getEquipmentById", json={"params": {}}, headers={"X-Role": "user"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "BAD_REQUEST"

    def test_storage_failure_is_500_without_driver_text(self, make_client):
        client, _, _ = make_client(
            side_effect=RuntimeError("could not connect to postgresql://u:secret@db/energy")
        )

        response = client.post(
            "/api/data/functions/queryEquipment", json={}, headers={"X-Role": "user"}
        )

        assert response.status_code == 500
        assert response.json() == {
            "detail": "Database operation failed",
            "code": "INTERNAL_STORAGE_ERROR",
        }


class TestSQL:
    """Raw SQL endpoint."""

    def test_policy_violation_is_400(self, make_client):
        client, pool, _ = make_client()

        response = client.post(
            "/api/data/sql", json={"query": "DROP TABLE equipment"}, headers={"X-Role": "user"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SQL_POLICY_VIOLATION"
        pool.acquire.assert_not_called()

    def test_accepted_statement(self, make_client):
        client, _, conn = make_client()
        statement = MagicMock()
        statement.fetch = AsyncMock(return_value=[{"n": 7}])
        statement.get_statusmsg = MagicMock(return_value="SELECT 1")
        conn.prepare = AsyncMock(return_value=statement)

        response = client.post(
            "/api/data/sql",
            json={"query": "SELECT COUNT(*) AS n FROM equipment WHERE status = $1", "params": ["active"]},
            headers={"X-Role": "user"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["rows"] == [{"n": 7}]
        assert body["rowCount"] == 1
        assert body["duration"] >= 0
        assert body["truncated"] is False
        assert "row_count" not in body
        assert body["columns"] == [{"name": "n", "type": "integer"}]
        statement.fetch.assert_awaited_once_with("active")

    def test_driver_failure_is_200_with_error(self, make_client):
        client, _, conn = make_client()
        conn.prepare = AsyncMock(side_effect=RuntimeError('relation "nope" does not exist'))

        response = client.post(
            "/api/data/sql", json={"query": "SELECT * FROM nope"}, headers={"X-Role": "user"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("SQL error: ")

    def test_empty_query_rejected_by_schema(self, make_client):
        client, _, _ = make_client()

        response = client.post("/api/data/sql", json={"query": ""}, headers={"X-Role": "admin"})

        assert response.status_code == 422


class TestSchema:
    """Schema discovery endpoint."""

    def test_tables_for_user(self, make_client):
        client, pool, _ = make_client()

        response = client.get("/api/data/schema", headers={"X-Role": "user"})

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "user"
        tables = {t["table"]: t for t in body["tables"]}
        assert "power_data" in tables
        user_columns = [c["name"] for c in tables["users"]["columns"]]
        assert "password" not in user_columns
        pool.acquire.assert_not_called()

    def test_anonymous_sees_no_tables(self, make_client):
        client, _, _ = make_client()

        response = client.get("/api/data/schema")

        assert response.json() == {"role": "anonymous", "tables": []}


class TestHealth:
    """Health endpoint."""

    def test_healthy_pool(self, make_client):
        client, _, _ = make_client()

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": {"healthy": True, "pool_size": 4, "pool_free": 3, "pool_used": 1},
        }

    def test_gate_not_initialized(self, make_client):
        client, _, _ = make_client()
        create_data_gate_dependencies(None)

        response = client.get("/api/data/functions")

        assert response.status_code == 503
