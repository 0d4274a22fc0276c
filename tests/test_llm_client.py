"""tests/test_llm_client.py

Unit tests for the model invocation client (nio_server/llm_client.py).
All traffic goes through the ScriptedLLM mock transport.
"""

from __future__ import annotations

# Standard Library
import asyncio
from pathlib import Path

# Third-Party Libraries
import httpx
import pytest

# Local Modules
from nio_server.config_store import ConfigService, ModelConfig
from nio_server.errors import (
    ConfigIncompleteError,
    InvocationTimeoutError,
    UpstreamError,
    UpstreamUnavailableError,
)
from nio_server.llm_client import ModelClient
from nio_server.models import ChatMessage

from conftest import ScriptedLLM

MESSAGES = [ChatMessage.system("EXPERT:tech-architect"), ChatMessage.user("hello")]


class TestInvoke:
    """Test suite for ModelClient.invoke."""

    def test_request_shape(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        """Test URL, headers and the request body."""
        llm.experts["tech-architect"] = llm.ok("hi", usage={"total_tokens": 7})
        client = ModelClient(config_service, transport=llm.transport)

        result = asyncio.run(client.invoke(MESSAGES))

        assert result.content == "hi"
        assert result.usage == {"total_tokens": 7}
        assert result.model == "test-model"

        request = llm.requests[0]
        assert str(request.url) == "https://llm.example.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-key-123456"
        payload = llm.calls[0][2]
        assert payload == {
            "model": "test-model",
            "messages": [
                {"role": "system", "content": "EXPERT:tech-architect"},
                {"role": "user", "content": "hello"},
            ],
            "temperature": 0.7,
            "max_tokens": 2000,
            "stream": False,
        }

    def test_trailing_slash_is_trimmed(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        config_service.update({"baseUrl": "https://llm.example.test/v1/"})
        client = ModelClient(config_service, transport=llm.transport)

        asyncio.run(client.invoke(MESSAGES))

        assert str(llm.requests[0].url) == "https://llm.example.test/v1/chat/completions"

    def test_overrides(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        """Test per-call model, temperature and max_tokens overrides."""
        client = ModelClient(config_service, transport=llm.transport)

        asyncio.run(client.invoke(MESSAGES, model_name="other", temperature=0.0, max_tokens=5))

        payload = llm.calls[0][2]
        assert payload["model"] == "other"
        assert payload["temperature"] == 0.0
        assert payload["max_tokens"] == 5

    def test_unset_sampling_values_use_defaults(self, tmp_path: Path, llm: ScriptedLLM) -> None:
        defaults = ModelConfig(
            base_url="https://llm.example.test/v1",
            api_key="sk-test",
            temperature=None,
            max_tokens=None,
        )
        client = ModelClient(
            ConfigService(tmp_path / "config.json", defaults), transport=llm.transport
        )

        asyncio.run(client.invoke(MESSAGES))

        payload = llm.calls[0][2]
        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 2000

    @pytest.mark.parametrize(
        "partial",
        [{"apiKey": ""}, {"baseUrl": ""}],
    )
    def test_incomplete_config_makes_no_request(
        self, config_service: ConfigService, llm: ScriptedLLM, partial: dict[str, str]
    ) -> None:
        """Test that a missing endpoint or key fails before any I/O."""
        config_service.update(partial, validate=False)
        client = ModelClient(config_service, transport=llm.transport)

        with pytest.raises(ConfigIncompleteError) as excinfo:
            asyncio.run(client.invoke(MESSAGES))

        assert excinfo.value.kind == "config"
        assert llm.calls == []

    def test_http_error_status(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        """Test that a non-2xx status carries the code and body text."""
        llm.experts["tech-architect"] = llm.fail(500, "boom")
        client = ModelClient(config_service, transport=llm.transport)

        with pytest.raises(UpstreamError) as excinfo:
            asyncio.run(client.invoke(MESSAGES))

        assert excinfo.value.status == 500
        assert excinfo.value.body == "boom"
        assert "500" in str(excinfo.value)
        assert "boom" in str(excinfo.value)

    def test_transport_timeout(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        llm.experts["tech-architect"] = llm.TIMEOUT
        client = ModelClient(config_service, transport=llm.transport)

        with pytest.raises(InvocationTimeoutError) as excinfo:
            asyncio.run(client.invoke(MESSAGES))

        assert excinfo.value.kind == "timeout"
        assert excinfo.value.timeout_ms == 2000

    def test_hard_timeout(self, config_service: ConfigService) -> None:
        """Test that a slow endpoint is abandoned after timeout_ms."""
        config_service.update({"timeout": 50})

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        client = ModelClient(config_service, transport=httpx.MockTransport(slow))

        with pytest.raises(InvocationTimeoutError):
            asyncio.run(client.invoke(MESSAGES))

    def test_unreachable_endpoint(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        llm.experts["tech-architect"] = llm.UNREACHABLE
        client = ModelClient(config_service, transport=llm.transport)

        with pytest.raises(UpstreamUnavailableError) as excinfo:
            asyncio.run(client.invoke(MESSAGES))

        assert excinfo.value.kind == "upstream"

    @pytest.mark.parametrize(
        "body",
        [{}, {"choices": []}, {"choices": [{"message": {}}]}, {"choices": [{"message": {"content": None}}]}],
    )
    def test_missing_content_is_empty(
        self, config_service: ConfigService, llm: ScriptedLLM, body: dict
    ) -> None:
        """Test that absent reply content becomes an empty string."""
        llm.experts["tech-architect"] = llm.raw(200, body)
        client = ModelClient(config_service, transport=llm.transport)

        result = asyncio.run(client.invoke(MESSAGES))

        assert result.content == ""
        assert result.usage == {}

    def test_non_json_success_body(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        llm.experts["tech-architect"] = lambda: httpx.Response(200, text="<html>")
        client = ModelClient(config_service, transport=llm.transport)

        with pytest.raises(UpstreamError):
            asyncio.run(client.invoke(MESSAGES))


class TestConnectionProbe:
    """Tests for ModelClient.test_connection."""

    def test_probe_uses_tiny_completion(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        client = ModelClient(config_service, transport=llm.transport)

        result = asyncio.run(client.test_connection())

        assert result.content
        payload = llm.calls[0][2]
        assert payload["max_tokens"] == 10
        assert payload["temperature"] == 0.0
        assert payload["messages"][0]["role"] == "user"

    def test_probe_candidate_config(self, config_service: ConfigService, llm: ScriptedLLM) -> None:
        """Test probing a configuration that has not been saved."""
        client = ModelClient(config_service, transport=llm.transport)
        candidate = config_service.current().model_copy(
            update={"base_url": "https://candidate.test", "api_key": "sk-candidate"}
        )

        asyncio.run(client.test_connection(candidate))

        request = llm.requests[0]
        assert str(request.url) == "https://candidate.test/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-candidate"
        assert config_service.current().base_url == "https://llm.example.test/v1"
