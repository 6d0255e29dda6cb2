"""Data models shared by the orchestration loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Role = Literal["system", "user", "assistant"]
TurnStatus = Literal["finalized", "aborted", "failed"]


@dataclass(frozen=True, slots=True)
class Message:
    """A single conversation entry exchanged with the model."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class ExecuteDirective:
    """Model asked for a shell command to be run."""

    command: str


@dataclass(frozen=True, slots=True)
class FinalDirective:
    """Model declared the task finished."""

    message: str


@dataclass(frozen=True, slots=True)
class MalformedDirective:
    """Reply text that does not follow the response protocol."""

    raw: str
    reason: str


Directive = ExecuteDirective | FinalDirective | MalformedDirective


@dataclass(slots=True)
class TurnOutcome:
    """Summary of one user turn handed back to the CLI."""

    status: TurnStatus
    attempts: int
    final_message: str | None = None
    commands_run: list[str] = field(default_factory=list)
    error: str | None = None
