"""tests/conftest.py

Pytest configuration and shared fixtures for the nio-server test suite.

Model traffic never leaves the process: every component talks to a
:class:`ScriptedLLM`, an ``httpx.MockTransport`` that recognises which
pipeline step sent a request (routing, an expert, synthesis) and answers
with a scripted reply, an HTTP error or a simulated timeout.
"""

from __future__ import annotations

# Standard Library
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

# Third-Party Libraries
import httpx
import pytest

# Local Modules
from nio_server.config_store import ConfigService
from nio_server.experts import ExpertRegistry
from nio_server.models import ExpertDefinition
from nio_server.orchestrator import Orchestrator
from nio_server.settings import NioSettings

EXPERT_IDS = ["product-manager", "tech-architect", "ux-designer", "data-analyst", "qa-engineer"]

Responder = Callable[[], httpx.Response] | type[Exception]


class ScriptedLLM:
    """Fake chat-completions endpoint keyed on the request's system prompt.

    Attributes:
        calls: ``(kind, key, payload)`` for every request received, where
            kind is ``"routing"``, ``"expert"`` or ``"synthesis"`` and key is
            the expert id for expert calls.
        routing: Responder for the routing call.
        experts: Per-expert responders; unknown experts get a default reply.
        synthesis: Responder for the synthesis call.
    """

    TIMEOUT = httpx.ReadTimeout
    UNREACHABLE = httpx.ConnectError

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.requests: list[httpx.Request] = []
        self.routing: Responder = self.ok('{"experts": ["product-manager"], "reasoning": "test"}')
        self.experts: dict[str, Responder] = {}
        self.synthesis: Responder = self.ok("Final synthesised answer")

    @staticmethod
    def ok(content: str, usage: dict[str, Any] | None = None) -> Callable[[], httpx.Response]:
        body: dict[str, Any] = {
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "model": "test-model",
        }
        if usage is not None:
            body["usage"] = usage
        return lambda: httpx.Response(200, json=body)

    @staticmethod
    def fail(status: int, body: str = "upstream exploded") -> Callable[[], httpx.Response]:
        return lambda: httpx.Response(status, text=body)

    @staticmethod
    def raw(status: int, body: Any) -> Callable[[], httpx.Response]:
        return lambda: httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def calls_of(self, kind: str) -> list[tuple[str, str, dict[str, Any]]]:
        return [c for c in self.calls if c[0] == kind]

    def _classify(self, payload: dict[str, Any]) -> tuple[str, str]:
        system = payload["messages"][0]["content"] if payload.get("messages") else ""
        if system.startswith("EXPERT:"):
            return "expert", system.removeprefix("EXPERT:")
        if "Available experts:" in system:
            return "routing", ""
        if "Combine the experts' opinions" in system:
            return "synthesis", ""
        return "other", ""

    def _handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        kind, key = self._classify(payload)
        self.calls.append((kind, key, payload))
        self.requests.append(request)

        if kind == "routing":
            responder = self.routing
        elif kind == "synthesis":
            responder = self.synthesis
        else:
            responder = self.experts.get(key, self.ok(f"Opinion from {key or kind}"))

        if isinstance(responder, type) and issubclass(responder, Exception):
            raise responder("simulated failure", request=request)
        return responder()


@pytest.fixture
def settings(tmp_path: Path) -> NioSettings:
    """Settings pointing at a temporary data directory with a usable endpoint."""
    return NioSettings(
        data_dir=tmp_path,
        default_base_url="https://llm.example.test/v1",
        default_api_key="sk-test-key-123456",
        default_model_name="test-model",
        default_timeout_ms=2000,
    )


@pytest.fixture
def config_service(settings: NioSettings) -> ConfigService:
    return ConfigService.from_settings(settings)


@pytest.fixture
def registry() -> ExpertRegistry:
    """Built-in experts whose system prompts identify them to ScriptedLLM."""
    experts = [
        ExpertDefinition(
            id="nio",
            display_name="nio",
            role="Coordinator",
            system_prompt="You are the test coordinator.",
            is_built_in=True,
        )
    ]
    experts += [
        ExpertDefinition(
            id=expert_id,
            display_name=expert_id.replace("-", " ").title(),
            role=expert_id,
            system_prompt=f"EXPERT:{expert_id}",
            is_built_in=True,
        )
        for expert_id in EXPERT_IDS
    ]
    return ExpertRegistry(experts)


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def orchestrator(
    settings: NioSettings,
    config_service: ConfigService,
    registry: ExpertRegistry,
    llm: ScriptedLLM,
) -> Orchestrator:
    return Orchestrator.build(
        settings,
        config_service=config_service,
        registry=registry,
        transport=llm.transport,
    )


@pytest.fixture
def sample_history() -> list[dict[str, str]]:
    """Eight alternating turns, oldest first."""
    history: list[dict[str, str]] = []
    for i in range(4):
        history.append({"role": "user", "content": f"question {i + 1}"})
        history.append({"role": "assistant", "content": f"answer {i + 1}"})
    return history
