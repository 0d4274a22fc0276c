"""
nio_server/router.py

Expert routing: decide which experts should answer a request.

Two strategies:

  - Model routing (primary): the coordinator persona is asked, at low
    temperature, to pick experts from a closed list and answer with
    ``{"experts": [...], "reasoning": "..."}``.  The first ``{...}`` span in
    the reply is decoded; anything undecodable counts as unparseable.
  - Keyword routing (fallback): five fixed keyword groups are matched
    against the raw input.  Used whenever the model call fails or its reply
    is unparseable.

:meth:`ExpertRouter.route` never raises: routing must not block the
pipeline.  Model-chosen ids are trusted verbatim, including unknown ones;
the dispatcher turns those into not-found results.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any, Final

from .errors import InvocationError
from .experts import DEFAULT_COORDINATOR_PROMPT, ExpertRegistry
from .llm_client import ModelClient
from .models import ChatMessage, RoutingDecision, RoutingMethod

logger = logging.getLogger("nio-server.router")

ROUTING_TEMPERATURE: Final[float] = 0.3

# Closed set offered to the routing model, in display order.
ROUTABLE_EXPERTS: Final[dict[str, str]] = {
    "product-manager": "product manager",
    "tech-architect": "technical architect",
    "ux-designer": "UX designer",
    "data-analyst": "data analyst",
    "qa-engineer": "QA engineer",
}

FALLBACK_EXPERT_ID: Final[str] = "product-manager"
FALLBACK_REASONING: Final[str] = "General product consultation"
DEFAULT_MODEL_REASONING: Final[str] = "Model routing decision"

# Greedy on purpose: spans from the first "{" to the last "}" so nested
# objects and surrounding prose / code fences are tolerated.
_JSON_OBJECT_PATTERN: Final[re.Pattern[str]] = re.compile(r"\{[\s\S]*\}")


@dataclasses.dataclass(slots=True, frozen=True)
class KeywordGroup:
    """One fallback rule: any term present selects ``expert_id``."""

    expert_id: str
    reason: str
    terms: tuple[str, ...]

    @property
    def pattern(self) -> re.Pattern[str]:
        # ASCII terms must not touch other ASCII letters or digits ("ui" must
        # not match "build"). CJK characters count as \w, so \b would miss
        # "bug" in "修复bug"; CJK terms are plain substrings.
        parts = [
            rf"(?<![A-Za-z0-9]){re.escape(t)}(?![A-Za-z0-9])" if t.isascii() else re.escape(t)
            for t in self.terms
        ]
        return re.compile("|".join(parts), re.IGNORECASE)


KEYWORD_GROUPS: Final[tuple[KeywordGroup, ...]] = (
    KeywordGroup(
        "product-manager",
        "Involves product requirements analysis",
        (
            "产品", "需求", "功能", "用户", "场景", "痛点", "价值",
            "product", "requirement", "requirements", "feature", "features",
            "user", "users", "scenario", "pain point", "value",
        ),
    ),
    KeywordGroup(
        "tech-architect",
        "Involves technical architecture design",
        (
            "技术", "架构", "开发", "实现", "代码", "系统", "后端", "前端", "数据库", "性能", "扩展",
            "technical", "technology", "architecture", "develop", "development",
            "implement", "implementation", "code", "system", "backend", "frontend",
            "database", "performance", "scalability", "scale",
        ),
    ),
    KeywordGroup(
        "ux-designer",
        "Involves user experience design",
        (
            "设计", "界面", "体验", "UI", "UX", "交互", "视觉", "原型",
            "design", "interface", "experience", "interaction", "visual", "prototype",
        ),
    ),
    KeywordGroup(
        "data-analyst",
        "Involves data analysis",
        (
            "数据", "分析", "指标", "统计", "增长", "转化", "留存", "埋点",
            "data", "analysis", "analytics", "metric", "metrics", "statistics",
            "growth", "conversion", "retention", "tracking",
        ),
    ),
    KeywordGroup(
        "qa-engineer",
        "Involves quality assurance",
        (
            "测试", "质量", "bug", "问题", "自动化", "性能", "安全",
            "test", "testing", "quality", "bugs", "issue", "automation",
            "performance", "security",
        ),
    ),
)


def build_routing_prompt(coordinator_prompt: str) -> str:
    """Build the routing system prompt on top of the coordinator persona."""
    options = ", ".join(f"{eid} ({label})" for eid, label in ROUTABLE_EXPERTS.items())
    return (
        f"{coordinator_prompt}\n\n"
        "Analyse the user's request and decide which experts to involve. "
        f"Available experts: {options}.\n\n"
        "Reply with a JSON object only, in this format: "
        '{"experts": ["expert-id-1", "expert-id-2"], "reasoning": "why these experts"}'
    )


def parse_routing_reply(text: str) -> RoutingDecision | None:
    """Decode the model's routing reply.

    Args:
        text: Raw reply content.

    Returns:
        A model-method :class:`RoutingDecision`, or ``None`` if the reply
        holds no decodable JSON object.  An object without (or with an empty)
        ``experts`` list still parses: the empty decision is honoured.
    """
    match = _JSON_OBJECT_PATTERN.search(text or "")
    if not match:
        return None
    try:
        decoded: Any = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("[router] JSON parse failure: %s", exc)
        return None
    if not isinstance(decoded, dict):
        return None

    experts: Any = decoded.get("experts") or []
    if isinstance(experts, str):
        experts = [experts]
    if not isinstance(experts, list):
        logger.warning("[router] 'experts' is not a list: %r", experts)
        return None

    expert_ids: list[str] = []
    for item in experts:
        expert_id = str(item).strip()
        if expert_id and expert_id not in expert_ids:
            expert_ids.append(expert_id)

    reasoning = decoded.get("reasoning")
    return RoutingDecision(
        expert_ids=expert_ids,
        reasoning=str(reasoning) if reasoning else DEFAULT_MODEL_REASONING,
        method=RoutingMethod.MODEL,
    )


def keyword_route(user_input: str) -> RoutingDecision:
    """Deterministic fallback: match the input against the keyword groups.

    Args:
        user_input: Raw user request.

    Returns:
        A keyword-method decision; never empty.
    """
    expert_ids: list[str] = []
    reasons: list[str] = []
    for group in KEYWORD_GROUPS:
        if group.pattern.search(user_input):
            expert_ids.append(group.expert_id)
            reasons.append(group.reason)

    if not expert_ids:
        return RoutingDecision(
            expert_ids=[FALLBACK_EXPERT_ID],
            reasoning=FALLBACK_REASONING,
            method=RoutingMethod.KEYWORD,
        )
    return RoutingDecision(
        expert_ids=expert_ids,
        reasoning="; ".join(reasons),
        method=RoutingMethod.KEYWORD,
    )


class ExpertRouter:
    """Chooses experts with the model, falling back to keyword matching."""

    def __init__(self, client: ModelClient, registry: ExpertRegistry) -> None:
        self.client = client
        self.registry = registry

    async def route(self, user_input: str) -> RoutingDecision:
        """Produce a routing decision.  Never raises.

        Args:
            user_input: The current user request.

        Returns:
            The model's decision when it is available and parseable,
            otherwise the keyword decision.
        """
        messages = [
            ChatMessage.system(
                build_routing_prompt(
                    self.registry.coordinator_prompt(DEFAULT_COORDINATOR_PROMPT)
                )
            ),
            ChatMessage.user(
                f"User request: {user_input}\n\n"
                "Decide which experts to involve and explain why."
            ),
        ]

        try:
            result = await self.client.invoke(messages, temperature=ROUTING_TEMPERATURE)
        except InvocationError as exc:
            logger.warning("[router] model routing failed (%s); using keywords", exc)
            return keyword_route(user_input)
        except Exception as exc:
            logger.error("[router] unexpected error: %s", exc, exc_info=True)
            return keyword_route(user_input)

        decision = parse_routing_reply(result.content)
        if decision is None:
            logger.warning(
                "[router] unparseable routing reply %r; using keywords", result.content[:200]
            )
            return keyword_route(user_input)

        decision.usage = result.usage
        logger.info(
            "[router] model selected %s (%s)", decision.expert_ids, decision.reasoning
        )
        return decision
