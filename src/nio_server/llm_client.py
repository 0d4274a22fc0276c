"""
nio_server/llm_client.py

Single-shot client for an OpenAI-compatible ``/chat/completions`` endpoint.

Every call takes one snapshot of the shared :class:`ModelConfig`, refuses to
touch the network when the endpoint or API key is missing, and maps every
failure onto the :class:`~nio_server.errors.InvocationError` family.  There is
no retry loop here: a failed attempt is reported to the caller, which decides
whether the failure is fatal (synthesis) or contained (routing, experts).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from .config_store import ConfigService, ModelConfig
from .errors import (
    ConfigIncompleteError,
    InvocationTimeoutError,
    UpstreamError,
    UpstreamUnavailableError,
)
from .models import ChatMessage, InvocationResult

logger = logging.getLogger("nio-server.llm")

DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_MAX_TOKENS: int = 2000

_PROBE_PROMPT: str = 'Hello, please reply with "connection test succeeded".'


def _first_choice_content(data: Any) -> str:
    """Extract ``choices[0].message.content``; ``""`` if any level is missing."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""


class ModelClient:
    """Issues chat-completion requests using the current global configuration.

    Args:
        config_service: Source of the :class:`ModelConfig` snapshot.
        transport: Optional ``httpx`` transport, e.g. ``httpx.MockTransport``
            in tests.  ``None`` uses the default network transport.
    """

    def __init__(
        self,
        config_service: ConfigService,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config_service = config_service
        self._transport = transport

    async def invoke(
        self,
        messages: Sequence[ChatMessage],
        *,
        model_name: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> InvocationResult:
        """Send one chat completion and return the first choice.

        Args:
            messages: Full transcript, system message first.
            model_name: Override the configured model for this call.
            temperature: Override the configured temperature.
            max_tokens: Override the configured output token limit.

        Returns:
            The reply content, upstream usage metrics and reported model name.

        Raises:
            ConfigIncompleteError: Base URL or API key missing (no I/O done).
            InvocationTimeoutError: The configured timeout elapsed.
            UpstreamError: Non-2xx status or a non-JSON success body.
            UpstreamUnavailableError: The endpoint could not be reached.
        """
        config = self.config_service.current()
        return await self._complete(
            config,
            messages,
            model_name=model_name,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def test_connection(self, config: ModelConfig | None = None) -> InvocationResult:
        """Probe an endpoint with a tiny completion.

        Args:
            config: Candidate configuration to test.  Defaults to the current
                global configuration.

        Returns:
            The probe reply; raises like :meth:`invoke` on failure.
        """
        return await self._complete(
            config or self.config_service.current(),
            [ChatMessage.user(_PROBE_PROMPT)],
            temperature=0.0,
            max_tokens=10,
        )

    async def _complete(
        self,
        config: ModelConfig,
        messages: Sequence[ChatMessage],
        *,
        model_name: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> InvocationResult:
        if not config.is_complete:
            raise ConfigIncompleteError()

        model: str = model_name or config.model_name
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "temperature": _first_set(temperature, config.temperature, DEFAULT_TEMPERATURE),
            "max_tokens": _first_set(max_tokens, config.max_tokens, DEFAULT_MAX_TOKENS),
            "stream": False,
        }
        url: str = config.base_url.rstrip("/") + "/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }
        timeout_s: float = config.timeout_ms / 1000

        logger.info("[llm] model=%r url=%s messages=%d", model, url, len(payload["messages"]))
        try:
            async with asyncio.timeout(timeout_s):
                async with httpx.AsyncClient(
                    transport=self._transport, timeout=httpx.Timeout(timeout_s)
                ) as http:
                    response = await http.post(url, json=payload, headers=headers)
        except (TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("[llm] timeout after %d ms", config.timeout_ms)
            raise InvocationTimeoutError(config.timeout_ms) from exc
        except httpx.RequestError as exc:
            logger.error("[llm] transport error: %s", exc)
            raise UpstreamUnavailableError(f"Model endpoint unreachable: {exc}") from exc

        if not response.is_success:
            logger.error("[llm] HTTP %d: %s", response.status_code, response.text[:300])
            raise UpstreamError(response.status_code, response.text)

        try:
            data: Any = response.json()
        except json.JSONDecodeError as exc:
            raise UpstreamError(response.status_code, response.text) from exc

        content = _first_choice_content(data)
        usage = data.get("usage") if isinstance(data, dict) else None
        reported_model = data.get("model") if isinstance(data, dict) else None
        logger.info("[llm] success, %d chars", len(content))
        return InvocationResult(
            content=content,
            usage=usage if isinstance(usage, dict) else {},
            model=reported_model if isinstance(reported_model, str) else model,
        )


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None
