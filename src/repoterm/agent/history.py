"""Bounded conversation history."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from repoterm.agent.models import Message

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


class ConversationHistory:
    """Ordered message log that evicts the oldest user/assistant pair when full.

    The system prompt is never stored here; it is rebuilt for every request so the
    model always sees the latest environment snapshot.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 2:
            msg = f"history limit must be at least 2, got {limit}"
            raise ValueError(msg)
        self.limit = limit
        self._messages: list[Message] = []

    def append(self, message: Message) -> None:
        if message.role == "system":
            msg = "system messages are rebuilt per request and cannot be stored"
            raise ValueError(msg)
        self._messages.append(message)
        while len(self._messages) > self.limit:
            del self._messages[:2]
            LOGGER.debug(
                "history_trimmed",
                extra={"limit": self.limit, "remaining": len(self._messages)},
            )

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())
