"""Backend capability shared by every model provider adapter."""

from __future__ import annotations

import abc
import http.client
import json
import logging
from collections.abc import Sequence
from urllib import request
from urllib.error import HTTPError, URLError

from repoterm.agent.models import Message

LOGGER = logging.getLogger(__name__)


class BackendError(Exception):
    """Model request failed; the message carries the provider's error text."""


class ChatBackend(abc.ABC):
    """Anything that can turn a system prompt plus history into a reply."""

    model: str

    @abc.abstractmethod
    def send(self, system_prompt: str, history: Sequence[Message]) -> str:
        """Return the assistant reply text or raise ``BackendError``."""


class HTTPChatBackend(ChatBackend):
    """Small JSON-over-HTTP client; subclasses own the provider request shape."""

    provider = "http"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        api_url: str,
        timeout: float = 60.0,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abc.abstractmethod
    def _build_payload(self, system_prompt: str, history: Sequence[Message]) -> dict[str, object]:
        """Translate the conversation into the provider request body."""

    @abc.abstractmethod
    def _extract_text(self, payload: dict[str, object]) -> str | None:
        """Pull the assistant text out of a provider response body."""

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def send(self, system_prompt: str, history: Sequence[Message]) -> str:
        payload = self._build_payload(system_prompt, history)
        body = json.dumps(payload).encode("utf-8")

        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "provider": self.provider,
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "history_messages": len(history),
            },
        )

        req = request.Request(self.api_url, data=body, headers=self._headers(), method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "provider": self.provider,
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Model request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise BackendError(details) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"provider": self.provider, "api_url": self.api_url, "reason": str(exc.reason)},
            )
            raise BackendError(f"Model request transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={"provider": self.provider, "timeout_seconds": self.timeout},
            )
            raise BackendError(f"Model request timed out after {self.timeout:.1f}s") from exc
        except (http.client.HTTPException, OSError) as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"provider": self.provider, "api_url": self.api_url, "reason": str(exc)},
            )
            raise BackendError(f"Model request transport error: {exc}") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error("llm_response_parse_error", extra={"error": str(exc)})
            raise BackendError(f"Model response parsing error: {exc}") from exc

        if not isinstance(raw_response, dict):
            raise BackendError("Model response parsing error: expected top-level object")

        text = self._extract_text({str(key): value for key, value in raw_response.items()})
        if text is None:
            raise BackendError("Model response contained no text output")
        return text

    @staticmethod
    def _messages(history: Sequence[Message]) -> list[dict[str, str]]:
        return [message.to_dict() for message in history]

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
