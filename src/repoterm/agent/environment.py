"""Environment context handed to the model at the start of every turn."""

from __future__ import annotations

import logging
import os
import platform
import subprocess
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def git_status(working_directory: str | None = None, *, timeout: float = 15.0) -> str:
    """Return ``git status`` output, or a description of why it is unavailable."""
    try:
        process = subprocess.run(
            ["git", "status"],
            capture_output=True,
            cwd=working_directory,
            timeout=timeout,
            check=False,
            text=True,
            errors="replace",
        )
    except FileNotFoundError:
        return "Unknown status: git executable not found."
    except subprocess.TimeoutExpired:
        return f"Unknown status: git status timed out after {timeout:.1f}s."
    except OSError as exc:
        LOGGER.warning("git_status_failed", extra={"error": str(exc)})
        return f"Unknown status: could not execute git ({exc})."

    if process.returncode == 0:
        return process.stdout
    detail = (process.stderr or "").strip()
    return detail or "Git command failed, no error message."


def build_runtime_context(shell_name: str, working_directory: str | None) -> str:
    """Describe the machine so the model picks commands that fit it."""
    effective_cwd = working_directory or str(Path.cwd())
    return "\n".join(
        [
            "Runtime environment context:",
            f"- operating_system: {platform.system()} {platform.release()}",
            f"- architecture: {platform.machine()}",
            f"- os_name: {os.name}",
            f"- shell: {shell_name}",
            f"- working_directory: {effective_cwd}",
        ]
    )


class EnvironmentSnapshot:
    """Captures the repository state once per turn."""

    def __init__(self, *, shell_name: str, working_directory: str | None = None) -> None:
        self.shell_name = shell_name
        self.working_directory = working_directory

    def snapshot(self) -> str:
        return "\n\n".join(
            [
                build_runtime_context(self.shell_name, self.working_directory),
                f"GIT STATUS:\n{git_status(self.working_directory)}",
            ]
        )
