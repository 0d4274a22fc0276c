"""
nio_server/models.py

Plain data types shared by the pipeline components.

These are internal value objects (dataclasses).  The HTTP layer converts
them to the camelCase JSON shapes the frontend expects via the ``to_dict`` /
``to_payload`` helpers defined here.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    """Transcript roles accepted by the chat-completions API."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class RoutingMethod(StrEnum):
    """How a routing decision was produced."""

    MODEL = "model"
    KEYWORD = "keyword"


class Stage(StrEnum):
    """Orchestration lifecycle.  ``DONE`` and ``FAILED`` are terminal."""

    IDLE = "idle"
    ROUTING = "routing"
    DISPATCHING = "dispatching"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"


@dataclasses.dataclass(slots=True, frozen=True)
class ChatMessage:
    """One transcript entry sent to the model."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": str(self.role), "content": self.content}

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(Role.USER, content)


@dataclasses.dataclass(slots=True, frozen=True)
class ExpertDefinition:
    """A named persona the router may delegate a request to.

    Attributes:
        id: Unique registry key, e.g. ``"tech-architect"``.
        display_name: Human-readable name shown next to the expert's answer.
        role: Short role label.
        system_prompt: System message sent as the first transcript entry.
        expertise_areas: Free-form topic labels, display only.
        trigger_keywords: Free-form keywords, display only.
        is_built_in: Built-ins come from the static experts document and are
            immutable; everything added at runtime is ``False``.
    """

    id: str
    display_name: str
    role: str
    system_prompt: str
    expertise_areas: tuple[str, ...] = ()
    trigger_keywords: tuple[str, ...] = ()
    is_built_in: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, built_in: bool = False) -> ExpertDefinition:
        """Build a definition from the camelCase document format."""
        return cls(
            id=str(data.get("id") or "").strip(),
            display_name=str(data.get("name") or "").strip(),
            role=str(data.get("role") or "").strip(),
            system_prompt=str(data.get("systemPrompt") or ""),
            expertise_areas=tuple(str(a) for a in data.get("expertiseAreas") or ()),
            trigger_keywords=tuple(str(k) for k in data.get("triggerKeywords") or ()),
            is_built_in=built_in,
        )

    def summary(self) -> dict[str, Any]:
        """List view: everything except the system prompt."""
        return {
            "id": self.id,
            "name": self.display_name,
            "role": self.role,
            "expertiseAreas": list(self.expertise_areas),
            "triggerKeywords": list(self.trigger_keywords),
            "custom": not self.is_built_in,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.summary(), "systemPrompt": self.system_prompt}


@dataclasses.dataclass(slots=True)
class InvocationResult:
    """Successful outcome of one chat-completions call."""

    content: str
    usage: dict[str, Any] = dataclasses.field(default_factory=dict)
    model: str = ""


@dataclasses.dataclass(slots=True)
class RoutingDecision:
    """Which experts should answer, and why."""

    expert_ids: list[str]
    reasoning: str
    method: RoutingMethod
    usage: dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(slots=True)
class ExpertResult:
    """Outcome of one expert call.  Exactly one of content / error_message is set."""

    expert_id: str
    display_name: str
    succeeded: bool
    content: str = ""
    error_message: str = ""
    usage: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "expertId": self.expert_id,
            "expertName": self.display_name,
            "content": self.content,
            "success": self.succeeded,
            "error": self.error_message,
        }


@dataclasses.dataclass(slots=True)
class OrchestrationResult:
    """The unit of work returned for one user turn.

    ``routing`` is ``None`` only when the request was rejected before routing
    started (blank input, incomplete model configuration).
    """

    succeeded: bool
    stage: Stage
    routing: RoutingDecision | None = None
    expert_results: list[ExpertResult] = dataclasses.field(default_factory=list)
    final_response: str = ""
    error_message: str = ""
    error_kind: str = ""
    synthesis_usage: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def usage(self) -> dict[str, Any]:
        return {
            "routing": self.routing.usage if self.routing else {},
            "experts": [r.usage for r in self.expert_results],
            "synthesis": self.synthesis_usage,
        }

    def to_payload(self) -> dict[str, Any]:
        """Shape the ``data`` section of the chat endpoint response."""
        return {
            "response": self.final_response,
            "experts": list(self.routing.expert_ids) if self.routing else [],
            "expertResponses": [r.to_dict() for r in self.expert_results],
            "orchestrationMethod": str(self.routing.method) if self.routing else "",
            "orchestrationReasoning": self.routing.reasoning if self.routing else "",
            "usage": self.usage,
        }


def coerce_history(turns: Iterable[Mapping[str, Any] | ChatMessage] | None) -> list[ChatMessage]:
    """Normalise caller-supplied history into user/assistant ChatMessages.

    Entries with another role or with empty content are dropped, so a
    malformed history can shorten the transcript but never break the call.

    Args:
        turns: ``[{"role": ..., "content": ...}]`` dicts or ChatMessages.

    Returns:
        The surviving turns, oldest first.
    """
    messages: list[ChatMessage] = []
    for turn in turns or ():
        if isinstance(turn, ChatMessage):
            role, content = str(turn.role), turn.content
        else:
            role = str(turn.get("role", ""))
            content = turn.get("content")
        if role not in (Role.USER, Role.ASSISTANT) or not isinstance(content, str) or not content:
            continue
        messages.append(ChatMessage(Role(role), content))
    return messages
