"""Pattern-based refusal of destructive commands."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_BLOCKED_PATTERNS = ("reset --hard", "rm -rf")


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    command: str
    allowed: bool
    reason: str | None = None


class SafetyGuard:
    """Refuses any command whose text contains a blocked substring.

    This is a coarse text match, not shell parsing: ``echo 'rm -rf'`` is refused too.
    """

    def __init__(self, extra_patterns: Iterable[str] = ()) -> None:
        patterns = list(DEFAULT_BLOCKED_PATTERNS)
        for pattern in extra_patterns:
            candidate = pattern.strip()
            if candidate and candidate not in patterns:
                patterns.append(candidate)
        self.patterns = tuple(patterns)

    def check(self, command: str) -> SafetyVerdict:
        for pattern in self.patterns:
            if pattern in command:
                LOGGER.info("command_refused", extra={"pattern": pattern})
                return SafetyVerdict(
                    command=command,
                    allowed=False,
                    reason=f"destructive pattern '{pattern}' is not allowed",
                )
        return SafetyVerdict(command=command, allowed=True)
