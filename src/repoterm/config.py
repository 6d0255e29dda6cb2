"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from repoterm.llm import anthropic, chat_completions, responses

DEFAULT_SYSTEM_PROMPT = "\n".join(
    [
        "You are an expert assistant that operates a local git repository through the shell.",
        "The user describes what they want in plain language; you reach it by running commands.",
        "",
        "Response protocol (follow it exactly):",
        "- To run commands, reply with one or more lines, each of the form",
        "  EXECUTE: <command>",
        "  One command per line, nothing else on the line, no commentary or markdown.",
        "- The output of every command is sent back to you in the next message.",
        "- When the request is satisfied, reply with a single",
        "  FINAL: <short message for the user>",
        "- Never put EXECUTE and FINAL in the same reply.",
        "",
        "Prefer read-only inspection before changing anything.",
        "Never run destructive commands such as 'git reset --hard' or 'rm -rf'.",
        "The current repository status and machine context follow.",
    ]
)

DEFAULT_PROVIDER = "chat_completions"
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_COMMAND_TIMEOUT = 300.0

_PROVIDER_DEFAULTS: dict[str, tuple[str, str, str]] = {
    # provider -> (api url, model, api key env var)
    "chat_completions": (
        chat_completions.DEFAULT_API_URL,
        chat_completions.DEFAULT_MODEL,
        "NVIDIA_API_KEY",
    ),
    "responses": (responses.DEFAULT_API_URL, responses.DEFAULT_MODEL, "OPENAI_API_KEY"),
    "anthropic": (anthropic.DEFAULT_API_URL, anthropic.DEFAULT_MODEL, "ANTHROPIC_API_KEY"),
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    provider: str
    api_key: str | None
    api_url: str
    model: str
    temperature: float | None
    max_tokens: int | None
    reasoning_effort: str | None
    timeout: float
    history_limit: int
    max_attempts: int
    shell: str
    working_directory: str | None
    log_dir: str
    log_level: str
    system_prompt: str
    assistant_name: str
    blocked_patterns: list[str] = field(default_factory=list)
    session_log_enabled: bool = True
    # None disables the per-command limit
    command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT

    @property
    def requires_api_key(self) -> bool:
        # local OpenAI-compatible servers (Ollama, LM Studio) run without a key
        return not _is_local_url(self.api_url)

    @classmethod
    def from_env(cls, *, provider: str | None = None) -> AppConfig:
        file_config = _load_preferred_file_config()
        provider = _resolve_provider(
            provider
            or os.getenv("REPOTERM_PROVIDER")
            or _to_optional_string(file_config.get("provider"))
        )
        default_url, default_model, key_env = _PROVIDER_DEFAULTS[provider]

        return cls(
            provider=provider,
            api_key=(
                os.getenv("REPOTERM_API_KEY")
                or os.getenv(key_env)
                or _to_optional_string(file_config.get("api_key"))
            ),
            api_url=(
                os.getenv("REPOTERM_API_URL")
                or _to_optional_string(file_config.get("api_url"))
                or default_url
            ),
            model=(
                os.getenv("REPOTERM_MODEL")
                or _to_optional_string(file_config.get("model"))
                or default_model
            ),
            temperature=_to_optional_float(
                os.getenv("REPOTERM_TEMPERATURE") or file_config.get("temperature"),
                default=0.3,
            ),
            max_tokens=_to_positive_int(
                os.getenv("REPOTERM_MAX_TOKENS") or file_config.get("max_tokens"),
                default=4096,
            ),
            reasoning_effort=(
                os.getenv("REPOTERM_REASONING_EFFORT")
                or _to_optional_string(file_config.get("reasoning_effort"))
            ),
            timeout=_to_optional_float(
                os.getenv("REPOTERM_TIMEOUT") or file_config.get("timeout"),
                default=60.0,
            )
            or 60.0,
            history_limit=max(
                2,
                _to_positive_int(
                    os.getenv("REPOTERM_HISTORY_LIMIT") or file_config.get("history_limit"),
                    default=DEFAULT_HISTORY_LIMIT,
                ),
            ),
            max_attempts=_to_positive_int(
                os.getenv("REPOTERM_MAX_ATTEMPTS") or file_config.get("max_attempts"),
                default=DEFAULT_MAX_ATTEMPTS,
            ),
            shell=_resolve_shell(
                os.getenv("REPOTERM_SHELL") or _to_optional_string(file_config.get("shell"))
            ),
            working_directory=(
                os.getenv("REPOTERM_CWD") or _to_optional_string(file_config.get("cwd"))
            ),
            log_dir=(
                os.getenv("REPOTERM_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or str(Path.home() / ".repoterm" / "logs")
            ),
            log_level=_resolve_log_level(
                os.getenv("REPOTERM_LOG_LEVEL")
                or _to_optional_string(file_config.get("log_level"))
            ),
            system_prompt=(
                os.getenv("REPOTERM_SYSTEM_PROMPT")
                or _to_optional_string(file_config.get("system_prompt"))
                or DEFAULT_SYSTEM_PROMPT
            ),
            assistant_name=(
                os.getenv("REPOTERM_ASSISTANT_NAME")
                or _to_optional_string(file_config.get("assistant_name"))
                or "repoterm"
            ),
            blocked_patterns=_to_string_list(file_config.get("blocked_patterns")),
            session_log_enabled=_to_bool(
                os.getenv("REPOTERM_SESSION_LOG"),
                default=_to_file_bool(file_config.get("session_log"), default=True),
            ),
            command_timeout=_to_optional_float(
                os.getenv("REPOTERM_COMMAND_TIMEOUT") or file_config.get("command_timeout"),
                default=DEFAULT_COMMAND_TIMEOUT,
            )
            or None,
        )


def _to_file_bool(value: object, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _to_bool(value, default=default)
    return default


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value).expanduser()
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("REPOTERM_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("repoterm.config.json")
    local_override = _load_file_config("repoterm.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _resolve_provider(value: str | None) -> str:
    if value is None:
        return DEFAULT_PROVIDER
    normalized = value.strip().lower().replace("-", "_")
    aliases = {
        "openai_compatible": "chat_completions",
        "nvidia": "chat_completions",
        "ollama": "chat_completions",
        "openai": "responses",
        "claude": "anthropic",
    }
    normalized = aliases.get(normalized, normalized)
    return normalized if normalized in _PROVIDER_DEFAULTS else DEFAULT_PROVIDER


def _resolve_log_level(value: str | None) -> str:
    if value is None:
        return "WARNING"
    normalized = value.strip().upper()
    return normalized if normalized in _LOG_LEVELS else "WARNING"


def _is_local_url(url: str) -> bool:
    lowered = url.lower()
    return "://localhost" in lowered or "://127.0.0.1" in lowered or "://[::1]" in lowered


def _shell_value(value: str) -> str:
    normalized = value.strip().lower()
    aliases = {
        "cmd": "cmd",
        "powershell": "powershell",
        "pwsh": "powershell",
        "bash": "bash",
        "sh": "sh",
        "shell": "bash",
    }
    return aliases.get(normalized, _default_shell_for_platform())


def _default_shell_for_platform(os_name: str | None = None) -> str:
    platform_name = os.name if os_name is None else os_name
    return "powershell" if platform_name == "nt" else "bash"


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return _default_shell_for_platform()
    return _shell_value(value)


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_optional_float(value: object, *, default: float | None) -> float | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed >= 0 else default
    return default
