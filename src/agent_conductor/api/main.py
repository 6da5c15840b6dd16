"""FastAPI app entrypoint for agent-conductor."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from agent_conductor.chat.session import new_request_id
from agent_conductor.config.settings import Settings, get_settings
from agent_conductor.protocol.events import HistoryMessage, is_terminal
from agent_conductor.runtime.bus import Subscription
from agent_conductor.runtime.service import AgentRuntime, RunAlreadyActiveError
from agent_conductor.storage.models import TaskRecord
from agent_conductor.tools.registry import ToolSpec, build_registry, list_tools


class RunRequest(BaseModel):
    request_id: str | None = Field(default=None, min_length=1)
    prompt: str = Field(min_length=1)
    history: list[HistoryMessage] = Field(default_factory=list)


class ConfirmationRequest(BaseModel):
    tool_call_id: str = Field(min_length=1)
    approved: bool


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    registry: dict[str, ToolSpec],
    runtime_override: AgentRuntime | None,
) -> None:
    if not hasattr(app.state, "runtime"):
        app.state.runtime = runtime_override or AgentRuntime.from_settings(settings, registry=registry)
    if not hasattr(app.state, "settings"):
        app.state.settings = settings
    if not hasattr(app.state, "registry"):
        app.state.registry = registry


async def stream_events(subscription: Subscription, *, until_terminal: bool) -> AsyncIterator[str]:
    """Serialize events as NDJSON lines; closes the subscription on exit."""
    try:
        async for event in subscription:
            yield event.model_dump_json() + "\n"
            if until_terminal and is_terminal(event):
                break
    finally:
        subscription.close()


def create_app(
    *,
    runtime: AgentRuntime | None = None,
    settings_override: Settings | None = None,
    registry: dict[str, ToolSpec] | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    tool_registry = registry if registry is not None else build_registry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app,
            settings=settings,
            registry=tool_registry,
            runtime_override=runtime,
        )
        yield
        await app.state.runtime.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if runtime is not None:
        _ensure_runtime_state(
            app,
            settings=settings,
            registry=tool_registry,
            runtime_override=runtime,
        )

    def _get_runtime(request: Request) -> AgentRuntime:
        if not hasattr(request.app.state, "runtime"):
            _ensure_runtime_state(
                request.app,
                settings=settings,
                registry=tool_registry,
                runtime_override=runtime,
            )
        return request.app.state.runtime

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tools")
    def tools() -> dict[str, list[str]]:
        return {"tools": list_tools(tool_registry)}

    @app.get("/agent/available")
    def available(request: Request) -> dict[str, bool]:
        return {"available": _get_runtime(request).is_available()}

    @app.post("/agent/runs", status_code=202)
    async def start_run(payload: RunRequest, request: Request) -> dict[str, str]:
        prompt = payload.prompt.strip()
        if not prompt:
            raise HTTPException(status_code=422, detail="Prompt must not be blank")
        request_id = payload.request_id or new_request_id()
        try:
            _get_runtime(request).start_run(request_id, prompt, payload.history)
        except RunAlreadyActiveError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"request_id": request_id}

    @app.post("/agent/runs/{request_id}/cancel")
    async def cancel_run(request_id: str, request: Request) -> dict[str, bool]:
        return {"cancelled": _get_runtime(request).cancel(request_id)}

    @app.post("/agent/confirmations")
    async def confirm(payload: ConfirmationRequest, request: Request) -> dict[str, bool]:
        return {"resolved": _get_runtime(request).confirm(payload.tool_call_id, payload.approved)}

    @app.get("/agent/events")
    async def events(request: Request, request_id: str | None = Query(default=None)) -> StreamingResponse:
        subscription = _get_runtime(request).subscribe(request_id)
        return StreamingResponse(
            stream_events(subscription, until_terminal=request_id is not None),
            media_type="application/x-ndjson",
        )

    @app.get("/agent/tasks", response_model=list[TaskRecord])
    def list_tasks(request: Request, limit: int = Query(default=50, ge=1, le=500)) -> list[TaskRecord]:
        return _get_runtime(request).store.list_tasks(limit=limit)

    @app.get("/agent/tasks/{request_id}", response_model=TaskRecord)
    def get_task(request_id: str, request: Request) -> TaskRecord:
        record = _get_runtime(request).store.get_task(request_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return record

    return app


app = create_app()
