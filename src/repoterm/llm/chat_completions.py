"""OpenAI-compatible ``/chat/completions`` adapter (NVIDIA, OpenAI, Ollama, ...)."""

from __future__ import annotations

from collections.abc import Sequence

from repoterm.agent.models import Message

from .client import HTTPChatBackend

DEFAULT_API_URL = "https://integrate.api.nvidia.com/v1/chat/completions"
DEFAULT_MODEL = "moonshotai/kimi-k2.5"


class ChatCompletionsBackend(HTTPChatBackend):
    provider = "chat_completions"

    def _build_payload(self, system_prompt: str, history: Sequence[Message]) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self.model,
            "messages": [
                Message(role="system", content=system_prompt).to_dict(),
                *self._messages(history),
            ],
            "stream": False,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload

    def _extract_text(self, payload: dict[str, object]) -> str | None:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        first = choices[0]
        if not isinstance(first, dict):
            return None
        message = first.get("message")
        if not isinstance(message, dict):
            return None
        content = message.get("content")
        return content if isinstance(content, str) else None
