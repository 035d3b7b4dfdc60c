"""FastAPI application entrypoint for repodocs service mode."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from ..config import ConfigError
from ..errors import RepoDocsError
from ..logging import LogEvent, ProgressLog, get_logger
from ..orchestrator import Orchestrator

OrchestratorFactory = Callable[[Path], Orchestrator]


class GenerateRequest(BaseModel):
    path: str
    session_type: str = "full"
    prune_outdated: bool = True


class PipelineMetricsModel(BaseModel):
    discovery_ms: int = 0
    extraction_ms: int = 0
    planning_ms: int = 0
    generation_ms: int = 0
    total_ms: int = 0
    components_extracted: int = 0
    artifacts_discovered: int = 0
    documents_pruned: int = 0


class PipelineResultModel(BaseModel):
    success: bool
    documents_generated: int
    documents_planned: int
    links_created: int
    total_cost: float
    session_id: str
    metrics: PipelineMetricsModel
    error: Optional[str] = None
    failed_items: List[str] = []


class SessionResponse(BaseModel):
    id: str
    repository_id: str
    session_type: str
    status: str
    progress: Dict[str, Any]
    started_at: str
    updated_at: str
    completed_at: Optional[str] = None
    error: Optional[str] = None
    work_plan: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    status: str


def _default_orchestrator(path: Path) -> Orchestrator:
    return Orchestrator.for_repository(path)


def _sse(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def create_app(orchestrator_factory: OrchestratorFactory = _default_orchestrator) -> FastAPI:
    """Create the FastAPI application exposing repodocs operations."""

    app = FastAPI(title="repodocs service", version="0.1.0")
    logger = get_logger("service")

    def _orchestrator_for(path: str) -> Orchestrator:
        try:
            return orchestrator_factory(Path(path))
        except ConfigError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid configuration: {exc}") from exc
        except (RepoDocsError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/generate", response_model=PipelineResultModel)
    async def generate(payload: GenerateRequest) -> JSONResponse:
        orchestrator = _orchestrator_for(payload.path)
        result = await orchestrator.run_for_path(
            payload.path,
            session_type=payload.session_type,
            prune_outdated=payload.prune_outdated,
        )
        body = PipelineResultModel.model_validate(result.as_dict()).model_dump()
        return JSONResponse(status_code=200 if result.success else 500, content=body)

    @app.post("/generate/stream")
    async def generate_stream(payload: GenerateRequest) -> StreamingResponse:
        orchestrator = _orchestrator_for(payload.path)
        queue: asyncio.Queue[LogEvent | None] = asyncio.Queue()
        log = ProgressLog(queue.put_nowait)

        async def _events() -> AsyncIterator[str]:
            yield _sse("start", {"path": payload.path, "session_type": payload.session_type})
            task = asyncio.create_task(
                orchestrator.run_for_path(
                    payload.path,
                    session_type=payload.session_type,
                    prune_outdated=payload.prune_outdated,
                    log=log,
                )
            )
            task.add_done_callback(lambda _: queue.put_nowait(None))
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _sse("log", event.as_dict())
            try:
                result = task.result()
            except Exception as exc:
                logger.error("Streamed generation failed: %s", exc)
                yield _sse("error", {"error": str(exc)})
                return
            if result.success:
                yield _sse("complete", result.as_dict())
            else:
                yield _sse("error", result.as_dict())

        return StreamingResponse(_events(), media_type="text/event-stream")

    @app.get("/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str, path: str = ".") -> SessionResponse:
        orchestrator = _orchestrator_for(path)
        session = await orchestrator.get_session_status(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return SessionResponse.model_validate(session.as_dict())

    return app


def run_service(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - integration path
    app = create_app()
    uvicorn.run(app, host=host, port=port)
