"""
nio_server/dispatcher.py

Concurrent fan-out of one request to the selected experts.

Each expert call runs as its own task, bounded by a semaphore, and every
task settles into an :class:`ExpertResult`: a success or a recorded failure.
Nothing raised by one expert reaches its siblings or the caller, and the
returned list follows the order of the requested ids, not completion order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .errors import InvocationError
from .experts import ExpertRegistry
from .history import DEFAULT_WINDOW, recent_turns
from .llm_client import ModelClient
from .models import ChatMessage, ExpertResult

logger = logging.getLogger("nio-server.dispatch")

EXPERT_NOT_FOUND: str = "expert not found"


class ExpertDispatcher:
    """Invokes the model once per selected expert, concurrently.

    Args:
        client: Model invocation client shared by all expert calls.
        registry: Source of expert system prompts, consulted per call.
        history_window: Trailing history entries included in each transcript.
        max_concurrency: Upper bound on simultaneous calls.  ``0`` sizes the
            bound to the number of registered experts.
    """

    def __init__(
        self,
        client: ModelClient,
        registry: ExpertRegistry,
        *,
        history_window: int = DEFAULT_WINDOW,
        max_concurrency: int = 0,
    ) -> None:
        self.client = client
        self.registry = registry
        self.history_window = history_window
        self.max_concurrency = max_concurrency

    async def dispatch(
        self,
        expert_ids: Sequence[str],
        user_input: str,
        history: Sequence[ChatMessage] = (),
    ) -> list[ExpertResult]:
        """Ask every selected expert and wait for all of them to settle.

        Args:
            expert_ids: Ids chosen by the router (unknown ids are allowed).
            user_input: The current user request.
            history: Prior user/assistant turns, oldest first.

        Returns:
            One result per id, in the order of ``expert_ids``.
        """
        if not expert_ids:
            return []

        window = recent_turns(history, self.history_window)
        limit = self.max_concurrency or len(self.registry) or len(expert_ids)
        semaphore = asyncio.Semaphore(max(1, limit))

        async def run_with_limit(expert_id: str) -> ExpertResult:
            async with semaphore:
                return await self._call_expert(expert_id, user_input, window)

        logger.info("[dispatch] experts=%s concurrency=%d", list(expert_ids), limit)
        results = await asyncio.gather(*(run_with_limit(eid) for eid in expert_ids))

        failed = sum(1 for r in results if not r.succeeded)
        logger.info("[dispatch] settled: %d ok, %d failed", len(results) - failed, failed)
        return list(results)

    async def _call_expert(
        self,
        expert_id: str,
        user_input: str,
        window: list[ChatMessage],
    ) -> ExpertResult:
        expert = self.registry.get(expert_id)
        if expert is None:
            logger.warning("[dispatch] unknown expert %r", expert_id)
            return ExpertResult(
                expert_id=expert_id,
                display_name=expert_id,
                succeeded=False,
                error_message=EXPERT_NOT_FOUND,
            )

        messages = [
            ChatMessage.system(expert.system_prompt or f"You are a {expert.role}."),
            *window,
            ChatMessage.user(user_input),
        ]
        logger.info("[dispatch] %s (%s) started", expert.display_name, expert_id)
        try:
            reply = await self.client.invoke(messages)
        except InvocationError as exc:
            logger.warning("[dispatch] %s failed: %s", expert_id, exc)
            return ExpertResult(
                expert_id=expert_id,
                display_name=expert.display_name,
                succeeded=False,
                error_message=str(exc),
            )
        except Exception as exc:
            logger.error("[dispatch] %s unexpected error: %s", expert_id, exc, exc_info=True)
            return ExpertResult(
                expert_id=expert_id,
                display_name=expert.display_name,
                succeeded=False,
                error_message=str(exc) or type(exc).__name__,
            )

        return ExpertResult(
            expert_id=expert_id,
            display_name=expert.display_name,
            succeeded=True,
            content=reply.content,
            usage=reply.usage,
        )
