"""Corrective feedback sent back to the model after a protocol or safety violation."""

from __future__ import annotations

import logging
from collections.abc import Callable

from repoterm.agent.history import ConversationHistory
from repoterm.agent.models import MalformedDirective, Message
from repoterm.agent.safety import SafetyVerdict

LOGGER = logging.getLogger(__name__)

Notify = Callable[[str], None]

EXPECTED_FORMAT = (
    "Reply with one or more lines of the form `EXECUTE: <command>` (one command per "
    "line, no commentary), or a single `FINAL: <message>` when the task is done. "
    "Never combine EXECUTE and FINAL in the same reply."
)
SAFETY_GUIDANCE = "Do NOT try to execute any destructive commands; choose a safer alternative."

Violation = MalformedDirective | SafetyVerdict


class CorrectionEmitter:
    """Turns violations into ``user`` messages appended to the conversation."""

    def __init__(self, history: ConversationHistory, notify: Notify = print) -> None:
        self.history = history
        self.notify = notify

    def emit(self, violation: Violation, context: str = "") -> Message:
        if isinstance(violation, SafetyVerdict):
            offending = violation.command
            reason = violation.reason or "command refused"
            guidance = SAFETY_GUIDANCE
            self.notify(f"refused for safety: {offending} ({reason})")
        else:
            offending = violation.raw
            reason = violation.reason
            guidance = EXPECTED_FORMAT
            self.notify(f"malformed reply: {reason}")

        lines = [f"ERROR: {offending} is invalid. {reason}.", guidance]
        if context:
            lines.append(context)
        lines.append("Ensure future replies don't make this mistake again.")
        message = Message(role="user", content="\n".join(lines))
        self.history.append(message)
        LOGGER.info(
            "correction_emitted",
            extra={"reason": reason, "safety": isinstance(violation, SafetyVerdict)},
        )
        return message
