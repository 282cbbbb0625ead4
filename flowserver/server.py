"""Flow run server: FastAPI app for starting and observing flow runs.

Runs execute as background tasks on a shared WaveEngine. Clients poll the
state endpoint for the latest snapshot published by the executor.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from waveflow.config import Settings
from waveflow.engine import WaveEngine
from waveflow.exceptions import (
    FlowNotFoundError,
    FlowRunningError,
    FlowValidationError,
    RequestNotFoundError,
    UnresolvedVariablesError,
    WaveFlowError,
)
from waveflow.graph import validate_flow
from waveflow.logger import configure_logging, get_logger
from waveflow.models import RunOptions
from waveflow.sinks import InMemoryRunStateSink

log = get_logger(__name__)

# --- Engine and run tracking ---

_engine: WaveEngine | None = None
_run_tasks: dict[str, asyncio.Task[None]] = {}


def _get_engine() -> WaveEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not started")
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _engine
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    _engine = WaveEngine(
        settings.workspace_dir, settings=settings, sink=InMemoryRunStateSink()
    )
    await _engine.start()
    yield
    for task in _run_tasks.values():
        task.cancel()
    _run_tasks.clear()
    await _engine.stop()
    _engine = None


app = FastAPI(title="WaveFlow Runner", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request models ---


class RunRequest(BaseModel):
    environment_id: str | None = None
    default_auth_id: str | None = None
    parallel: bool = True
    variables: dict[str, str] = Field(default_factory=dict)

    def to_options(self) -> RunOptions:
        return RunOptions(
            environment_id=self.environment_id,
            default_auth_id=self.default_auth_id,
            parallel=self.parallel,
            variables=self.variables,
        )


# --- Background execution ---


async def _run_flow(engine: WaveEngine, flow_id: str, options: RunOptions) -> None:
    try:
        result = await engine.run(flow_id, options)
        log.info("run_finished", flow_id=flow_id, status=result.status.value)
    except WaveFlowError as exc:
        log.error("run_failed", flow_id=flow_id, error=str(exc))
    except Exception:
        log.exception("run_crashed", flow_id=flow_id)
    finally:
        _run_tasks.pop(flow_id, None)


def _is_busy(engine: WaveEngine, flow_id: str) -> bool:
    task = _run_tasks.get(flow_id)
    return engine.is_running(flow_id) or (task is not None and not task.done())


# --- Routes ---


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "engine": _engine is not None}


@app.get("/api/flows")
async def list_flows() -> list[dict[str, Any]]:
    engine = _get_engine()
    return [
        {
            "id": flow.id,
            "name": flow.name,
            "nodes": len(flow.nodes),
            "connectors": len(flow.connectors),
            "running": engine.is_running(flow.id),
        }
        for flow in engine.list_flows()
    ]


@app.get("/api/flows/{flow_id}")
async def get_flow(flow_id: str) -> dict[str, Any]:
    engine = _get_engine()
    try:
        flow = engine.get_flow(flow_id)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except FlowValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {
        "flow": flow.model_dump(mode="json", by_alias=True),
        "validation_errors": validate_flow(flow),
    }


@app.post("/api/flows/{flow_id}/run", status_code=202)
async def run_flow(flow_id: str, req: RunRequest | None = None) -> dict[str, Any]:
    engine = _get_engine()
    try:
        engine.get_flow(flow_id)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except FlowValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if _is_busy(engine, flow_id):
        raise HTTPException(status_code=409, detail=f"Flow is already running: {flow_id}")

    options = (req or RunRequest()).to_options()
    _run_tasks[flow_id] = asyncio.create_task(_run_flow(engine, flow_id, options))
    log.info("run_started", flow_id=flow_id, parallel=options.parallel)
    return {"flow_id": flow_id, "status": "started"}


@app.get("/api/flows/{flow_id}/state")
async def get_state(flow_id: str) -> dict[str, Any]:
    engine = _get_engine()
    sink = engine.sink
    state = sink.get(flow_id) if isinstance(sink, InMemoryRunStateSink) else None
    if state is None:
        raise HTTPException(status_code=404, detail=f"No run state for flow: {flow_id}")
    return state.model_dump(mode="json", by_alias=True)


@app.post("/api/flows/{flow_id}/cancel")
async def cancel_flow(flow_id: str) -> dict[str, Any]:
    engine = _get_engine()
    if not engine.cancel(flow_id):
        raise HTTPException(status_code=409, detail=f"Flow is not running: {flow_id}")
    return {"flow_id": flow_id, "status": "cancelling"}


@app.delete("/api/flows/{flow_id}/state")
async def reset_flow(flow_id: str) -> dict[str, Any]:
    engine = _get_engine()
    try:
        engine.reset(flow_id)
    except FlowRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"flow_id": flow_id, "status": "reset"}


@app.get("/api/flows/{flow_id}/nodes/{node_id}/request")
async def preview_request(
    flow_id: str, node_id: str, environment_id: str | None = None
) -> dict[str, Any]:
    """The node's request as it would be sent after the last run."""
    engine = _get_engine()
    try:
        config = engine.preview_request(
            flow_id, node_id, RunOptions(environment_id=environment_id)
        )
    except (FlowNotFoundError, RequestNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except UnresolvedVariablesError as exc:
        raise HTTPException(
            status_code=422, detail={"error": str(exc), "unresolved": exc.names}
        ) from exc
    except FlowValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return config.model_dump(mode="json", by_alias=True, exclude={"auth"})


def main() -> None:
    """Entry point for running the server."""
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    log.info("server_starting", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
