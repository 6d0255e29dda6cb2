"""Decode model replies written in the EXECUTE/FINAL response protocol.

The model is told to answer with either one or more lines of the form
``EXECUTE: <command>`` or a single ``FINAL: <message>``. Matching is done on the
literal, case-sensitive markers rather than by parsing shell or markdown, because
that is exactly the contract the system prompt sets up.
"""

from __future__ import annotations

from repoterm.agent.models import (
    Directive,
    ExecuteDirective,
    FinalDirective,
    MalformedDirective,
)

EXECUTE_MARKER = "EXECUTE:"
FINAL_MARKER = "FINAL:"

REASON_MIXED = "mixed FINAL and EXECUTE"
REASON_EMPTY_FINAL = "FINAL message is empty"
REASON_NO_MARKER = "response contained neither EXECUTE nor FINAL"
REASON_LINE_PREFIX = "line must start with EXECUTE"
REASON_EMPTY_COMMAND = "EXECUTE line has no command"
REASON_SAME_LINE = "each EXECUTE command must be on its own line"


def clean_reply(text: str) -> str:
    """Drop backticks the model uses to format commands and trim the reply."""
    return text.replace("`", "").strip()


def parse_reply(text: str) -> list[Directive]:
    reply = clean_reply(text)
    has_execute = EXECUTE_MARKER in reply
    has_final = FINAL_MARKER in reply

    if has_execute and has_final:
        return [MalformedDirective(raw=reply, reason=REASON_MIXED)]

    if has_final:
        _, message = reply.split(FINAL_MARKER, 1)
        message = message.strip()
        if not message:
            return [MalformedDirective(raw=reply, reason=REASON_EMPTY_FINAL)]
        return [FinalDirective(message=message)]

    if not has_execute:
        return [MalformedDirective(raw=reply, reason=REASON_NO_MARKER)]

    directives: list[Directive] = []
    for line in reply.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if EXECUTE_MARKER not in stripped:
            directives.append(MalformedDirective(raw=stripped, reason=REASON_LINE_PREFIX))
            continue
        _, command = stripped.split(EXECUTE_MARKER, 1)
        command = command.strip()
        if not command:
            directives.append(MalformedDirective(raw=stripped, reason=REASON_EMPTY_COMMAND))
        elif EXECUTE_MARKER in command:
            directives.append(MalformedDirective(raw=stripped, reason=REASON_SAME_LINE))
        else:
            directives.append(ExecuteDirective(command=command))
    return directives
