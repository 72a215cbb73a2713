#!/usr/bin/env python3
"""
HTTP tests for the /api/db and /api/settings endpoints.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi import FastAPI
from fastapi.testclient import TestClient
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mongo.executor import execute_query
from mongo.router import router


@pytest.fixture
def client(db):
    app = FastAPI()
    app.include_router(router)

    async def _execute(request):
        return await execute_query(request, db=db)

    with patch("mongo.router.execute_query", side_effect=_execute), \
            patch("mongo.router.get_database", AsyncMock(return_value=db)), \
            patch("cache.settings_cache._settings_collection", AsyncMock(side_effect=lambda _db=None: db["app_settings"])):
        yield TestClient(app)


class TestQueryEndpoint:
    def test_select(self, client, db):
        db.seed("areas", {"id": "a1", "name": "Design"})
        response = client.post("/api/db/query", json={"table": "areas", "operation": "select", "select": "id, name"})
        assert response.status_code == 200
        assert response.json() == {"data": [{"id": "a1", "name": "Design"}], "error": None}

    def test_missing_table_or_operation(self, client):
        assert client.post("/api/db/query", json={"operation": "select"}).status_code == 400
        assert client.post("/api/db/query", json={"table": "areas"}).status_code == 400

    def test_unknown_operation(self, client):
        response = client.post("/api/db/query", json={"table": "areas", "operation": "truncate"})
        assert response.status_code == 400

    def test_query_errors_come_back_in_body(self, client):
        response = client.post("/api/db/query", json={"table": "nope", "operation": "select"})
        assert response.status_code == 200
        body = response.json()
        assert body["data"] is None
        assert body["error"]["code"] == "PGRST204"


class TestRpcEndpoint:
    def test_get_areas_by_user(self, client, db):
        db.seed("areas", {"id": "a1", "name": "Design", "description": "UI"})
        db.seed("area_user_assignments", {"id": "x", "user_id": "u1", "area_id": "a1"})

        response = client.post("/api/db/rpc", json={"fn": "get_areas_by_user", "params": {"user_uuid": "u1"}})
        assert response.status_code == 200
        assert response.json()["data"] == [{"area_id": "a1", "area_name": "Design", "area_description": "UI"}]

    def test_get_users_by_area(self, client, db):
        db.seed("users", {"id": "u1", "name": "Ana", "email": "ana@example.com"})
        db.seed("area_user_assignments", {"id": "x", "user_id": "u1", "area_id": "a1"})

        response = client.post("/api/db/rpc", json={"fn": "get_users_by_area", "params": {"area_uuid": "a1"}})
        assert response.json()["data"] == [{"user_id": "u1", "user_name": "Ana", "user_email": "ana@example.com"}]

    def test_unknown_function(self, client):
        response = client.post("/api/db/rpc", json={"fn": "drop_everything", "params": {}})
        assert response.status_code == 400

    def test_bad_params(self, client):
        response = client.post("/api/db/rpc", json={"fn": "get_areas_by_user", "params": {"wrong": "u1"}})
        assert response.status_code == 400


class TestSettingsEndpoints:
    def test_missing_setting(self, client):
        assert client.get("/api/settings/theme").status_code == 404

    def test_write_then_read(self, client):
        assert client.put("/api/settings/theme", json={"value": "dark"}).status_code == 200
        response = client.get("/api/settings/theme")
        assert response.json() == {"key": "theme", "value": "dark"}

    def test_invalidate_cache(self, client, db):
        client.put("/api/settings/theme", json={"value": "dark"})
        assert client.get("/api/settings/theme").json()["value"] == "dark"

        # change the row behind the cache's back
        db["app_settings"].docs[0]["value"] = "light"
        assert client.get("/api/settings/theme").json()["value"] == "dark"

        assert client.post("/api/settings/invalidate-cache", json={"key": "theme"}).json() == {"success": True}
        assert client.get("/api/settings/theme").json()["value"] == "light"
