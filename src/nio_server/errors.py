"""Exception hierarchy for nio-server."""

from __future__ import annotations


class NioError(Exception):
    """Base exception for nio-server failures."""


class ValidationError(ValueError, NioError):
    """Malformed input: blank chat input, incomplete expert or config data."""

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details: list[str] = details or []


class ExpertNotFoundError(LookupError, NioError):
    """No expert is registered under the requested id."""


class ExpertProtectedError(NioError):
    """Built-in experts cannot be removed."""


# ---------------------------------------------------------------------------
# Model invocation failures
# ---------------------------------------------------------------------------


class InvocationError(NioError):
    """A single model call failed.  Never retried by the client."""

    kind: str = "upstream"


class ConfigIncompleteError(InvocationError):
    """Base URL or API key missing; raised before any network I/O."""

    kind = "config"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Model configuration is incomplete: configure the API key and endpoint first."
        )


class InvocationTimeoutError(InvocationError):
    """The call exceeded the configured timeout."""

    kind = "timeout"

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Model call timed out after {timeout_ms} ms")
        self.timeout_ms = timeout_ms


class UpstreamError(InvocationError):
    """The model endpoint answered with a non-success status or an unreadable body."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Model API call failed [{status}]: {body}")
        self.status = status
        self.body = body


class UpstreamUnavailableError(InvocationError):
    """The model endpoint could not be reached (DNS, refused connection, ...)."""
