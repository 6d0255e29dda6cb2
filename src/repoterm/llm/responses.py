"""OpenAI Responses API adapter."""

from __future__ import annotations

from collections.abc import Sequence

from repoterm.agent.models import Message

from .client import HTTPChatBackend

DEFAULT_API_URL = "https://api.openai.com/v1/responses"
DEFAULT_MODEL = "gpt-5.2"


class ResponsesBackend(HTTPChatBackend):
    provider = "responses"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 60.0,
        temperature: float | None = None,
        max_tokens: int | None = None,
        reasoning_effort: str | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            model=model,
            api_url=api_url,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        self.reasoning_effort = reasoning_effort

    def _build_payload(self, system_prompt: str, history: Sequence[Message]) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self.model,
            "instructions": system_prompt,
            "input": self._messages(history),
        }
        if self.max_tokens is not None:
            payload["max_output_tokens"] = self.max_tokens
        if self.reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort}
        elif self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload

    def _extract_text(self, payload: dict[str, object]) -> str | None:
        output_items = payload.get("output")
        if not isinstance(output_items, list):
            return None

        parts: list[str] = []
        for item in output_items:
            if not isinstance(item, dict):
                continue
            content_items = item.get("content")
            if not isinstance(content_items, list):
                continue
            for content in content_items:
                if not isinstance(content, dict):
                    continue
                text = content.get("text")
                if content.get("type") == "output_text" and isinstance(text, str):
                    parts.append(text)
        if not parts:
            return None
        return "".join(parts)
