"""Tests for the FastAPI server."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from taskmesh.api.server import create_app
from taskmesh.config import CoordinatorConfig

WORKLOAD = {
    "agents": [{"name": "Analyst", "capabilities": ["analysis"], "priority_weight": 8}],
    "tasks": [
        {"id": "T1", "required_capabilities": ["analysis"]},
        {"id": "T2", "required_capabilities": ["render"]},
    ],
    "dependencies": {"T2": ["T1"]},
}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def app(tmp_path: Path) -> FastAPI:
    return create_app(CoordinatorConfig(data_dir=tmp_path))


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.anyio
async def test_health(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "uptime_seconds" in data


@pytest.mark.anyio
async def test_plan(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.post("/api/plan", json=WORKLOAD)
    assert response.status_code == 200
    assert response.json()["phases"] == [["T1"], ["T2"]]


@pytest.mark.anyio
async def test_plan_cycle_is_unprocessable(app: FastAPI) -> None:
    body = {"tasks": [{"id": "A"}, {"id": "B"}], "dependencies": {"A": ["B"], "B": ["A"]}}
    async with _client(app) as client:
        response = await client.post("/api/plan", json=body)
    assert response.status_code == 422
    assert response.json()["detail"]["task_ids"] == ["A", "B"]


@pytest.mark.anyio
async def test_plan_requires_tasks(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.post("/api/plan", json={"agents": []})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_run_and_history(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.post("/api/runs", json=WORKLOAD)
        assert response.status_code == 200
        summary = response.json()
        assert summary["status"] == "success"
        assert summary["exit_code"] == 0
        assert [o["status"] for o in summary["outcomes"]] == ["completed", "completed"]

        history = (await client.get("/api/history")).json()
        assert history["count"] == 1
        assert history["runs"][0]["run_id"] == summary["run_id"]

        stored = await client.get(f"/api/runs/{summary['run_id']}")
        assert stored.status_code == 200
        assert len(stored.json()["outcomes"]) == 2

        status = (await client.get("/api/status")).json()
        assert status["run_id"] == summary["run_id"]
        assert {a["name"] for a in status["agents"]} == {"Analyst", "Specialist-2"}

        metrics = (await client.get("/api/metrics")).json()
        assert metrics["runs"] == 1
        assert metrics["total_attempts"] == 2
        assert metrics["success_rate"] == 100.0


@pytest.mark.anyio
async def test_run_cycle_is_unprocessable(app: FastAPI) -> None:
    body = {"tasks": [{"id": "A", "dependencies": ["A"]}]}
    async with _client(app) as client:
        response = await client.post("/api/runs", json=body)
        assert response.status_code == 422
        assert (await client.get("/api/history")).json()["count"] == 0


@pytest.mark.anyio
async def test_empty_status(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.get("/api/status")
    assert response.json() == {"run_id": None, "agents": [], "count": 0}


@pytest.mark.anyio
async def test_unknown_run(app: FastAPI) -> None:
    async with _client(app) as client:
        response = await client.get("/api/runs/run-missing")
    assert response.status_code == 404
