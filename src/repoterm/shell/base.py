"""Base shell adapter: runs one command line and captures its output."""

from __future__ import annotations

import abc
import locale
import logging
import re
import subprocess
import time
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

RETURNCODE_TIMEOUT = 124
RETURNCODE_NOT_FOUND = 127

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


@dataclass(slots=True)
class CommandResult:
    """Result of a command execution. Failure is reported here, never raised."""

    command: str
    shell: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_seconds: float = 0.0
    executed: bool = True

    @property
    def succeeded(self) -> bool:
        return self.executed and not self.timed_out and self.returncode == 0


class ShellAdapter(abc.ABC):
    """Abstract adapter for shell-specific command execution."""

    executable: str

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly shell adapter name."""

    @abc.abstractmethod
    def build_argv(self, command: str) -> list[str]:
        """Return the process arguments that run ``command`` in this shell."""

    def run(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        self.log_request(command, timeout=timeout)
        started = self.monotonic_now()
        try:
            process = subprocess.run(
                self.build_argv(command),
                capture_output=True,
                cwd=cwd,
                timeout=timeout,
                check=False,
                text=False,
            )
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=process.returncode,
                stdout=normalize_output(process.stdout),
                stderr=normalize_output(process.stderr),
                duration_seconds=self.monotonic_now() - started,
            )
        except subprocess.TimeoutExpired as exc:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=RETURNCODE_TIMEOUT,
                stdout=normalize_output(exc.stdout),
                stderr=normalize_output(exc.stderr) or f"command timed out after {timeout}s",
                timed_out=True,
                duration_seconds=self.monotonic_now() - started,
            )
        except FileNotFoundError:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=RETURNCODE_NOT_FOUND,
                stdout="",
                stderr=f"{self.name} executable not found: {self.executable}",
                executed=False,
                duration_seconds=self.monotonic_now() - started,
            )
        except OSError as exc:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=RETURNCODE_NOT_FOUND,
                stdout="",
                stderr=f"{self.name} could not start: {exc}",
                executed=False,
                duration_seconds=self.monotonic_now() - started,
            )

        self.log_result(result)
        return result

    def log_request(self, command: str, *, timeout: float | None) -> None:
        LOGGER.info(
            "command_request",
            extra={
                "shell": self.name,
                "command": self._sanitize_command(command),
                "timeout": timeout,
            },
        )

    def log_result(self, result: CommandResult) -> None:
        LOGGER.info(
            "command_result",
            extra={
                "shell": result.shell,
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "duration_seconds": round(result.duration_seconds, 4),
                "executed": result.executed,
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    def _sanitize_command(self, command: str) -> str:
        sanitized = command
        for pattern in _SECRET_PATTERNS:
            sanitized = pattern.sub(r"\1***", sanitized)
        return sanitized


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False), "cp1252"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
