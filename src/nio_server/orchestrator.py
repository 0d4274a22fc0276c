"""
nio_server/orchestrator.py

Orchestration facade: one user turn through route → dispatch → synthesise.

Lifecycle::

    idle ──► routing ──► dispatching ──► synthesizing ──► done
      │                                        │
      └── (blank input / no config) ──► failed ◄── (synthesis error)

  - Routing always yields a decision (model or keyword), so it always
    advances to dispatching.
  - Dispatching always advances: expert failures are recorded per expert.
  - Synthesis is the only model call whose failure fails the turn; the
    expert results gathered so far are still returned.
  - Any unexpected exception is mapped to ``failed``; :meth:`Orchestrator.run`
    never raises.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import httpx

from .config_store import ConfigService
from .dispatcher import ExpertDispatcher
from .errors import ConfigIncompleteError, InvocationError
from .experts import ExpertRegistry
from .llm_client import ModelClient
from .models import (
    ChatMessage,
    ExpertResult,
    OrchestrationResult,
    RoutingDecision,
    Stage,
    coerce_history,
)
from .router import ExpertRouter
from .settings import NioSettings
from .synthesizer import Synthesizer

logger = logging.getLogger("nio-server.orchestrator")

EventCallback = Callable[[dict[str, Any]], None]

BLANK_INPUT_MESSAGE: str = "User input must not be empty"


def _emit(on_event: EventCallback | None, stage: Stage, content: str, **extra: Any) -> None:
    """Fire the on_event callback if one is registered.

    Args:
        on_event: The optional callback registered by the API layer.
        stage: Stage the pipeline has just entered.
        content: Human-readable description of the event.
        **extra: Additional JSON-serialisable fields.
    """
    if on_event is None:
        return
    try:
        on_event({"stage": str(stage), "content": content, **extra})
    except Exception as exc:
        logger.warning("on_event callback error: %s", exc, exc_info=True)


@dataclasses.dataclass(slots=True)
class Orchestrator:
    """Sequences the router, dispatcher and synthesizer for one request."""

    config_service: ConfigService
    registry: ExpertRegistry
    client: ModelClient
    router: ExpertRouter
    dispatcher: ExpertDispatcher
    synthesizer: Synthesizer

    @classmethod
    def build(
        cls,
        settings: NioSettings,
        *,
        config_service: ConfigService | None = None,
        registry: ExpertRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Orchestrator:
        """Wire all pipeline components from settings.

        Args:
            settings: Runtime settings.
            config_service: Pre-built config service (defaults to one derived
                from ``settings``).
            registry: Pre-built registry (defaults to the built-in experts).
            transport: Optional ``httpx`` transport for every model call.
        """
        config_service = config_service or ConfigService.from_settings(settings)
        registry = registry if registry is not None else ExpertRegistry.from_file(
            settings.experts_file
        )
        client = ModelClient(config_service, transport=transport)
        return cls(
            config_service=config_service,
            registry=registry,
            client=client,
            router=ExpertRouter(client, registry),
            dispatcher=ExpertDispatcher(
                client,
                registry,
                history_window=settings.history_window,
                max_concurrency=settings.max_concurrent_experts,
            ),
            synthesizer=Synthesizer(client, registry),
        )

    async def run(
        self,
        user_input: str | None,
        history: Iterable[Mapping[str, Any] | ChatMessage] | None = None,
        *,
        on_event: EventCallback | None = None,
    ) -> OrchestrationResult:
        """Process one user turn.

        Args:
            user_input: The raw user request; must not be blank.
            history: Prior turns as ``{"role", "content"}`` dicts or
                ChatMessages.  Non user/assistant entries are ignored.
            on_event: Optional callback fired on every stage transition.
                Receives a dict with ``stage`` and ``content`` keys.

        Returns:
            The orchestration result; ``succeeded`` is ``False`` with an
            ``error_message`` on rejection or failure.
        """
        if not isinstance(user_input, str) or not user_input.strip():
            logger.info("[orchestrator] rejected blank input")
            return self._fail(on_event, BLANK_INPUT_MESSAGE, "validation")

        routing: RoutingDecision | None = None
        expert_results: list[ExpertResult] = []
        try:
            if not self.config_service.current().is_complete:
                return self._fail(on_event, str(ConfigIncompleteError()), "config")

            turns = coerce_history(history)
            logger.info("=== New orchestration: %d history turns ===", len(turns))

            _emit(on_event, Stage.ROUTING, "Selecting experts...")
            routing = await self.router.route(user_input)
            _emit(
                on_event,
                Stage.DISPATCHING,
                f"[{routing.method}] {', '.join(routing.expert_ids) or '(none)'}: "
                f"{routing.reasoning}",
                experts=list(routing.expert_ids),
            )

            expert_results = await self.dispatcher.dispatch(
                routing.expert_ids, user_input, turns
            )
            _emit(
                on_event,
                Stage.SYNTHESIZING,
                f"{sum(r.succeeded for r in expert_results)}/{len(expert_results)} "
                "experts answered; synthesising...",
                expertResponses=[r.to_dict() for r in expert_results],
            )

            synthesis = await self.synthesizer.synthesize(user_input, expert_results)
        except InvocationError as exc:
            logger.error("[orchestrator] synthesis failed: %s", exc)
            return self._fail(
                on_event, str(exc), exc.kind, routing=routing, expert_results=expert_results
            )
        except Exception as exc:
            logger.error("[orchestrator] unexpected error: %s", exc, exc_info=True)
            return self._fail(
                on_event,
                str(exc) or type(exc).__name__,
                "internal",
                routing=routing,
                expert_results=expert_results,
            )

        _emit(on_event, Stage.DONE, "Orchestration complete")
        logger.info("=== Orchestration complete ===")
        return OrchestrationResult(
            succeeded=True,
            stage=Stage.DONE,
            routing=routing,
            expert_results=expert_results,
            final_response=synthesis.content,
            synthesis_usage=synthesis.usage,
        )

    @staticmethod
    def _fail(
        on_event: EventCallback | None,
        message: str,
        kind: str,
        *,
        routing: RoutingDecision | None = None,
        expert_results: list[ExpertResult] | None = None,
    ) -> OrchestrationResult:
        _emit(on_event, Stage.FAILED, message, errorKind=kind)
        return OrchestrationResult(
            succeeded=False,
            stage=Stage.FAILED,
            routing=routing,
            expert_results=expert_results or [],
            error_message=message,
            error_kind=kind,
        )
