"""FastAPI server for programmatic coordinator access."""

from __future__ import annotations

import time
from typing import Any

import click
from fastapi import FastAPI, HTTPException

from taskmesh import __version__
from taskmesh.config import CoordinatorConfig, load_config
from taskmesh.engine.coordinator import Coordinator
from taskmesh.engine.errors import CyclicOrUnresolvableDependency, WorkloadError
from taskmesh.engine.planner import build_plan
from taskmesh.storage.database import Database
from taskmesh.storage.ledger import RunLedger
from taskmesh.workload import Workload, parse_workload


def create_app(config: CoordinatorConfig | None = None) -> FastAPI:
    """Build the API bound to one data directory."""
    config = config or load_config()
    db = Database(config.data_dir)
    db.ensure_tables()
    start_time = time.monotonic()

    app = FastAPI(
        title="taskmesh API",
        version=__version__,
        description="Capability-routed multi-agent task coordination API",
    )

    def parse(request: dict[str, Any]) -> Workload:
        try:
            return parse_workload(request, config.default_max_concurrent_tasks)
        except WorkloadError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    def planning_error(e: CyclicOrUnresolvableDependency) -> HTTPException:
        return HTTPException(status_code=422, detail={"error": str(e), "task_ids": list(e.task_ids)})

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check."""
        uptime = time.monotonic() - start_time
        return {"status": "ok", "version": __version__, "uptime_seconds": round(uptime, 1)}

    @app.post("/api/plan")
    async def plan(request: dict[str, Any]) -> dict[str, Any]:
        """Resolve a workload into execution phases without running it."""
        work = parse(request)
        try:
            execution_plan = build_plan(work.tasks, work.dependencies, work.priority)
        except CyclicOrUnresolvableDependency as e:
            raise planning_error(e) from e
        return execution_plan.to_dict()

    @app.post("/api/runs")
    async def create_run(request: dict[str, Any]) -> dict[str, Any]:
        """Run a workload with the default executor and return its summary."""
        work = parse(request)
        async with RunLedger(config.data_dir) as ledger:
            coordinator = Coordinator(config, agents=work.agents, ledger=ledger)
            try:
                summary = await coordinator.run(work.tasks, work.dependencies, work.priority)
            except CyclicOrUnresolvableDependency as e:
                raise planning_error(e) from e
            finally:
                await coordinator.shutdown()
        return summary.to_dict()

    @app.get("/api/runs/{run_id}")
    async def get_run(run_id: str) -> dict[str, Any]:
        """Stored summary for one run."""
        rows = db.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,))
        if not rows:
            raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
        run = dict(rows[0])
        run["outcomes"] = db.run_outcomes(run_id)
        return run

    @app.get("/api/status")
    async def status() -> dict[str, Any]:
        """Agents recorded by the latest run."""
        runs = db.recent_runs(limit=1)
        if not runs:
            return {"run_id": None, "agents": [], "count": 0}
        run_id = runs[0]["run_id"]
        agents = [
            dict(row)
            for row in db.execute("SELECT * FROM agents WHERE run_id = ? ORDER BY id", (run_id,))
        ]
        return {"run_id": run_id, "agents": agents, "count": len(agents)}

    @app.get("/api/history")
    async def history(limit: int = 20, offset: int = 0) -> dict[str, Any]:
        """Recent runs, newest first."""
        runs = db.recent_runs(limit=limit, offset=offset)
        return {"runs": runs, "count": len(runs), "limit": limit, "offset": offset}

    @app.get("/api/metrics")
    async def metrics() -> dict[str, Any]:
        """Attempt totals across all recorded runs."""
        return {"runs": db.run_count(), **db.attempt_totals()}

    return app


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the taskmesh API server."""
    import uvicorn

    from taskmesh.log import configure_logging

    config = load_config()
    configure_logging(config.log_level, config.log_path)
    uvicorn.run(create_app(config), host=host, port=port)
