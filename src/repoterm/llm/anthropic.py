"""Anthropic Messages API adapter."""

from __future__ import annotations

from collections.abc import Sequence

from repoterm.agent.models import Message

from .client import HTTPChatBackend

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-5"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class AnthropicBackend(HTTPChatBackend):
    provider = "anthropic"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _build_payload(self, system_prompt: str, history: Sequence[Message]) -> dict[str, object]:
        messages = self._messages(history)
        # the conversation has to open with a user message
        while messages and messages[0]["role"] != "user":
            messages.pop(0)
        payload: dict[str, object] = {
            "model": self.model,
            "system": system_prompt,
            "messages": messages,
            "max_tokens": self.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload

    def _extract_text(self, payload: dict[str, object]) -> str | None:
        content = payload.get("content")
        if not isinstance(content, list):
            return None
        parts = [
            block["text"]
            for block in content
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        if not parts:
            return None
        return "".join(parts)
