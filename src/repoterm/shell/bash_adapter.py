"""Bash shell adapter implementation."""

from __future__ import annotations

import os
import shutil

from .base import ShellAdapter


class BashAdapter(ShellAdapter):
    """Adapter for command execution via ``bash``/``sh``."""

    def __init__(self, executable: str | None = None, *, fallback_to_sh: bool = True) -> None:
        self.executable = executable or _default_executable(fallback_to_sh=fallback_to_sh)

    @property
    def name(self) -> str:
        return "bash"

    def build_argv(self, command: str) -> list[str]:
        flag = "-c" if os.path.basename(self.executable) == "sh" else "-lc"
        return [self.executable, flag, command]


def _default_executable(*, fallback_to_sh: bool) -> str:
    if shutil.which("bash"):
        return "bash"
    if fallback_to_sh and shutil.which("sh"):
        return "sh"
    return "bash"
