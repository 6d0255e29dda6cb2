"""Model provider adapters behind a single ``send`` capability."""

from .anthropic import AnthropicBackend
from .chat_completions import ChatCompletionsBackend
from .client import BackendError, ChatBackend, HTTPChatBackend
from .responses import ResponsesBackend

PROVIDERS = ("chat_completions", "responses", "anthropic")


def create_backend(
    provider: str,
    *,
    api_key: str | None,
    model: str,
    api_url: str,
    timeout: float = 60.0,
    temperature: float | None = None,
    max_tokens: int | None = None,
    reasoning_effort: str | None = None,
) -> ChatBackend:
    normalized = provider.strip().lower()
    if normalized == "responses":
        return ResponsesBackend(
            api_key=api_key,
            model=model,
            api_url=api_url,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
            reasoning_effort=reasoning_effort,
        )
    if normalized == "chat_completions":
        backend_type: type[HTTPChatBackend] = ChatCompletionsBackend
    elif normalized == "anthropic":
        backend_type = AnthropicBackend
    else:
        msg = f"Unsupported model provider: {provider}"
        raise ValueError(msg)
    return backend_type(
        api_key=api_key,
        model=model,
        api_url=api_url,
        timeout=timeout,
        temperature=temperature,
        max_tokens=max_tokens,
    )


__all__ = [
    "PROVIDERS",
    "AnthropicBackend",
    "BackendError",
    "ChatBackend",
    "ChatCompletionsBackend",
    "HTTPChatBackend",
    "ResponsesBackend",
    "create_backend",
]
