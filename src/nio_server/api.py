"""
nio_server/api.py

FastAPI HTTP interface for the expert orchestrator.

Endpoints:
  GET    /health                      - liveness probe
  POST   /api/ai/chat                 - blocking orchestration, returns the full result
  POST   /api/ai/chat/stream          - Server-Sent Events of stage events + final result
  GET    /api/ai/experts              - expert list (no system prompts)
  GET    /api/ai/experts/{id}         - expert detail
  POST   /api/ai/experts/custom       - register a custom expert
  DELETE /api/ai/experts/custom/{id}  - remove a custom expert
  GET    /api/ai/config/summary       - display-safe model config summary
  GET    /api/ai/config               - model config with masked API key
  POST   /api/ai/config               - merge + validate + persist model config
  POST   /api/ai/config/test          - probe a candidate endpoint
  POST   /api/ai/config/reset         - restore default model config

Every response body is the envelope ``{"success": bool, "data"?: ..., "error"?: str}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import __version__
from .errors import ExpertNotFoundError, ExpertProtectedError, InvocationError, ValidationError
from .models import ExpertDefinition, OrchestrationResult
from .orchestrator import Orchestrator
from .settings import NioSettings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger("nio-server.api")

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(_CamelModel):
    # Null and blank input are rejected by the orchestrator, inside the envelope.
    user_input: str | None = Field("", description="The user's request.")
    conversation_history: list[dict[str, Any]] | None = Field(
        default_factory=list,
        description='Prior turns as [{"role": "user"|"assistant", "content": "..."}].',
    )


class ExpertCreateRequest(_CamelModel):
    id: str = ""
    name: str = ""
    role: str = ""
    system_prompt: str = ""
    expertise_areas: list[str] = Field(default_factory=list)
    trigger_keywords: list[str] = Field(default_factory=list)

    def to_definition(self) -> ExpertDefinition:
        return ExpertDefinition(
            id=self.id,
            display_name=self.name,
            role=self.role,
            system_prompt=self.system_prompt,
            expertise_areas=tuple(self.expertise_areas),
            trigger_keywords=tuple(self.trigger_keywords),
        )


class ConfigUpdateRequest(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    base_url: str | None = None
    api_key: str | None = None
    model_name: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    timeout: int | None = Field(None, description="Per-call timeout in milliseconds.")


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def _error(message: str, status_code: int = 200, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _chat_response(result: OrchestrationResult) -> dict[str, Any] | JSONResponse:
    if result.succeeded:
        return _ok(result.to_payload())
    status = 400 if result.error_kind == "validation" else 200
    return _error(result.error_message or "Conversation processing failed", status)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: NioSettings | None = None,
    *,
    orchestrator: Orchestrator | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Runtime settings.  Defaults to environment-derived settings.
        orchestrator: Pre-built orchestrator (tests inject one with a mock
            transport).
        transport: Optional ``httpx`` transport used when the orchestrator is
            built here.

    Returns:
        The configured application; ``app.state.orchestrator`` holds the
        shared pipeline.
    """
    settings = settings or NioSettings()
    orchestrator = orchestrator or Orchestrator.build(settings, transport=transport)

    app = FastAPI(
        title="nio server",
        version=__version__,
        description=(
            "Routes a request to expert personas, fans it out to an "
            "OpenAI-compatible model and synthesises one answer."
        ),
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
        return _error("Internal server error", 500)

    # -----------------------------------------------------------------------
    # Meta
    # -----------------------------------------------------------------------

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok", "server": "nio-server"}

    # -----------------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------------

    @app.post("/api/ai/chat", tags=["chat"])
    async def chat(body: ChatRequest) -> Any:
        """Run one orchestration and return the combined result.

        This is a **blocking** call - it waits for routing, every expert and
        the synthesis call to finish.
        """
        result = await orchestrator.run(body.user_input, body.conversation_history)
        return _chat_response(result)

    @app.post("/api/ai/chat/stream", tags=["chat"])
    async def chat_stream(body: ChatRequest) -> StreamingResponse:
        """Stream stage events as Server-Sent Events while the turn runs.

        Each SSE event carries a JSON payload:

        - ``{"stage": "routing"|"dispatching"|..., "content": "..."}`` - a
          stage transition
        - ``{"type": "result", "success": ..., "data"|"error": ...}`` - the
          final result, same body as ``POST /api/ai/chat``
        """
        events: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

        async def _run() -> None:
            try:
                result = await orchestrator.run(
                    body.user_input,
                    body.conversation_history,
                    on_event=events.put_nowait,
                )
                if result.succeeded:
                    final: dict[str, Any] = _ok(result.to_payload())
                else:
                    final = {"success": False, "error": result.error_message}
                events.put_nowait({"type": "result", **final})
            finally:
                # Sentinel: tells the generator to stop
                events.put_nowait(None)

        async def _event_generator() -> AsyncGenerator[str, None]:
            task = asyncio.create_task(_run())
            try:
                while True:
                    event = await events.get()
                    if event is None:
                        yield "event: done\ndata: {}\n\n"
                        break
                    yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
            finally:
                await task

        return StreamingResponse(
            _event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    # -----------------------------------------------------------------------
    # Experts
    # -----------------------------------------------------------------------

    @app.get("/api/ai/experts", tags=["experts"])
    async def list_experts() -> dict[str, Any]:
        return _ok([e.summary() for e in orchestrator.registry.list()])

    @app.get("/api/ai/experts/{expert_id}", tags=["experts"])
    async def get_expert(expert_id: str) -> Any:
        expert = orchestrator.registry.get(expert_id)
        if expert is None:
            return _error("Expert does not exist", 404)
        return _ok(expert.to_dict())

    @app.post("/api/ai/experts/custom", tags=["experts"])
    async def add_expert(body: ExpertCreateRequest) -> Any:
        try:
            expert = orchestrator.registry.add(body.to_definition())
        except ValidationError as exc:
            return _error(str(exc), 400, details=exc.details)
        return _ok(expert.to_dict())

    @app.delete("/api/ai/experts/custom/{expert_id}", tags=["experts"])
    async def delete_expert(expert_id: str) -> Any:
        try:
            orchestrator.registry.remove(expert_id)
        except ExpertNotFoundError as exc:
            return _error(str(exc), 404)
        except ExpertProtectedError as exc:
            return _error(str(exc), 403)
        return _ok({"id": expert_id})

    # -----------------------------------------------------------------------
    # Model configuration
    # -----------------------------------------------------------------------

    config_service = orchestrator.config_service

    @app.get("/api/ai/config/summary", tags=["config"])
    async def config_summary() -> dict[str, Any]:
        return _ok(config_service.summary())

    @app.get("/api/ai/config", tags=["config"])
    async def get_config() -> dict[str, Any]:
        return _ok(config_service.masked())

    @app.post("/api/ai/config", tags=["config"])
    async def update_config(body: ConfigUpdateRequest) -> Any:
        try:
            config_service.update(body.model_dump(exclude_none=True, by_alias=True))
        except ValidationError as exc:
            return _error(str(exc), 400, details=exc.details)
        return _ok(
            {"message": "Model configuration updated", "config": config_service.summary()}
        )

    @app.post("/api/ai/config/test", tags=["config"])
    async def test_config(body: ConfigUpdateRequest) -> Any:
        overrides = body.model_dump(exclude_none=True)
        if "timeout" in overrides:
            overrides["timeout_ms"] = overrides.pop("timeout")
        candidate = config_service.current().model_copy(update=overrides)
        try:
            reply = await orchestrator.client.test_connection(candidate)
        except InvocationError as exc:
            logger.warning("[config-test] failed: %s", exc)
            return _error(str(exc))
        return _ok(
            {
                "message": "Connection test succeeded",
                "response": reply.content,
                "usage": reply.usage,
            }
        )

    @app.post("/api/ai/config/reset", tags=["config"])
    async def reset_config() -> dict[str, Any]:
        config_service.reset()
        return _ok(
            {"message": "Restored default configuration", "config": config_service.summary()}
        )

    return app


# ---------------------------------------------------------------------------
# Entry point (console script ``nio-api``)
# ---------------------------------------------------------------------------


def run_api() -> None:
    """Start the FastAPI server via uvicorn."""
    settings = NioSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting nio-server API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        "nio_server.api:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_api()
