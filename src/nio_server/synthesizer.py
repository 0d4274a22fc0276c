"""
nio_server/synthesizer.py

Final synthesis step: fold the successful expert answers into one reply.

Only successful results are used as evidence.  With no evidence at all the
model is still asked (the prompt then carries an empty opinions section);
any invocation failure propagates, since without this call there is no
final answer.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from .experts import DEFAULT_COORDINATOR_PROMPT, ExpertRegistry
from .llm_client import ModelClient
from .models import ChatMessage, ExpertResult, InvocationResult

logger = logging.getLogger("nio-server.synthesis")

OPINION_DELIMITER: Final[str] = "\n\n---\n\n"

SYNTHESIS_INSTRUCTIONS: Final[str] = (
    "Combine the experts' opinions into structured, actionable advice:\n"
    "1) Confirm your understanding of the user's need.\n"
    "2) Distil 3-5 core recommendations, each with a priority.\n"
    "3) Propose concrete next actions.\n"
    "Stay concise and professional."
)


def format_opinions(expert_results: Sequence[ExpertResult]) -> str:
    """Render succeeded results as ``[name]\\ncontent`` blocks."""
    return OPINION_DELIMITER.join(
        f"[{r.display_name}]\n{r.content}" for r in expert_results if r.succeeded
    )


class Synthesizer:
    """Asks the coordinator persona for one consolidated answer."""

    def __init__(self, client: ModelClient, registry: ExpertRegistry) -> None:
        self.client = client
        self.registry = registry

    def build_messages(
        self, user_input: str, expert_results: Sequence[ExpertResult]
    ) -> list[ChatMessage]:
        persona = self.registry.coordinator_prompt(DEFAULT_COORDINATOR_PROMPT)
        return [
            ChatMessage.system(f"{persona}\n\n{SYNTHESIS_INSTRUCTIONS}"),
            ChatMessage.user(
                f"User request: {user_input}\n\n"
                f"Expert opinions:\n{format_opinions(expert_results)}\n\n"
                "Combine the opinions above into your final recommendation."
            ),
        ]

    async def synthesize(
        self, user_input: str, expert_results: Sequence[ExpertResult]
    ) -> InvocationResult:
        """Produce the consolidated answer.

        Args:
            user_input: The original user request.
            expert_results: All dispatch results; failures are skipped.

        Returns:
            The synthesis reply.

        Raises:
            InvocationError: If the synthesis call fails.
        """
        evidence = sum(1 for r in expert_results if r.succeeded)
        logger.info("[synthesis] combining %d expert opinions", evidence)
        return await self.client.invoke(self.build_messages(user_input, expert_results))
