"""nio_server/history.py

Rolling conversation history.

Experts only ever see a short trailing window of the conversation; this
module provides that window for request-scoped history (``recent_turns``)
and a rolling store for the interactive console (``RollingHistory``).
"""

from __future__ import annotations

# Standard Library
from collections.abc import Sequence

# Local Modules
from .models import ChatMessage, Role

DEFAULT_WINDOW = 6


def recent_turns(history: Sequence[ChatMessage], limit: int = DEFAULT_WINDOW) -> list[ChatMessage]:
    """Return the last ``limit`` entries of ``history``, oldest first.

    Args:
        history: Prior user/assistant turns.
        limit: Maximum number of entries to keep (``0`` keeps none).

    Returns:
        A new list holding at most ``limit`` messages.
    """
    if limit <= 0:
        return []
    return list(history[-limit:])


class RollingHistory:
    """Rolling window that stores the last N conversation turns.

    Only user and assistant turns are stored; expert system prompts are
    supplied per call by the dispatcher.
    """

    def __init__(self, max_messages: int = 20) -> None:
        """Initialize the rolling window.

        Args:
            max_messages: Maximum number of messages to retain (default 20).
        """
        self.max_messages = max_messages
        self._messages: list[ChatMessage] = []

    def add_message(self, role: Role | str, content: str) -> None:
        """Append a turn, dropping the oldest entries past ``max_messages``.

        Args:
            role: ``user`` or ``assistant``.
            content: The message text.
        """
        self._messages.append(ChatMessage(Role(role), content))
        if len(self._messages) > self.max_messages:
            del self._messages[: len(self._messages) - self.max_messages]

    def record_exchange(self, user_input: str, reply: str) -> None:
        """Store one user turn and the assistant's reply."""
        self.add_message(Role.USER, user_input)
        self.add_message(Role.ASSISTANT, reply)

    def get_context(self) -> list[ChatMessage]:
        """Retrieve stored turns, oldest first."""
        return list(self._messages)

    def clear(self) -> None:
        """Clear all messages from the rolling window."""
        self._messages.clear()

    def message_count(self) -> int:
        return len(self._messages)
