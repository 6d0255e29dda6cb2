"""Turn loop: ask the model, decode its reply, run what is allowed, feed results back."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from repoterm.agent.corrections import CorrectionEmitter, Notify
from repoterm.agent.history import ConversationHistory
from repoterm.agent.models import (
    Directive,
    ExecuteDirective,
    FinalDirective,
    MalformedDirective,
    Message,
    TurnOutcome,
)
from repoterm.agent.protocol import clean_reply, parse_reply
from repoterm.agent.safety import SafetyGuard
from repoterm.llm.client import BackendError, ChatBackend
from repoterm.shell import CommandResult

LOGGER = logging.getLogger(__name__)

EnvironmentProbe = Callable[[], str]


class CommandRunner(Protocol):
    name: str

    def run(
        self, command: str, *, cwd: str | None = None, timeout: float | None = None
    ) -> CommandResult: ...


class AgentLoop:
    """Runs one user turn at a time against a chat backend.

    A turn ends when the model sends a ``FINAL:`` reply, when the attempt budget is
    spent, or when the backend call itself fails. Protocol and safety violations are
    never fatal; they become correction messages the model sees on its next attempt.
    """

    def __init__(
        self,
        *,
        backend: ChatBackend,
        shell: CommandRunner,
        system_prompt: str,
        environment: EnvironmentProbe,
        history: ConversationHistory | None = None,
        guard: SafetyGuard | None = None,
        max_attempts: int = 10,
        working_directory: str | None = None,
        command_timeout: float | None = None,
        log_dir: str | Path | None = None,
        assistant_name: str = "repoterm",
        notify: Notify = print,
    ) -> None:
        if max_attempts < 1:
            msg = f"max_attempts must be positive, got {max_attempts}"
            raise ValueError(msg)
        self.backend = backend
        self.shell = shell
        self.system_prompt = system_prompt
        self.environment = environment
        self.history = history if history is not None else ConversationHistory()
        self.guard = guard or SafetyGuard()
        self.max_attempts = max_attempts
        self.working_directory = working_directory
        self.command_timeout = command_timeout
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.assistant_name = assistant_name
        self.notify = notify
        self.corrections = CorrectionEmitter(self.history, notify=notify)

    def run_turn(self, user_input: str) -> TurnOutcome:
        snapshot = self.environment()
        system_prompt = self._build_system_prompt(snapshot)
        self.history.append(Message(role="user", content=user_input))
        commands_run: list[str] = []
        attempts = 0

        while True:
            if attempts >= self.max_attempts:
                self.notify(f"too many attempts: aborting after {attempts} model replies")
                LOGGER.warning("turn_aborted", extra={"attempts": attempts})
                self._append_log(attempt=attempts, outcome="aborted")
                return TurnOutcome(status="aborted", attempts=attempts, commands_run=commands_run)

            self.notify("Processing...")
            try:
                raw_reply = self.backend.send(system_prompt, self.history.snapshot())
            except BackendError as exc:
                self.notify(f"model request failed: {exc}")
                self._append_log(attempt=attempts + 1, outcome="failed", error=str(exc))
                return TurnOutcome(
                    status="failed",
                    attempts=attempts,
                    commands_run=commands_run,
                    error=str(exc),
                )
            attempts += 1

            reply = clean_reply(raw_reply)
            self.history.append(Message(role="assistant", content=reply))
            directives = parse_reply(reply)

            final = next((d for d in directives if isinstance(d, FinalDirective)), None)
            if final is not None:
                self.notify(f"{self.assistant_name}: {final.message}")
                self._append_log(
                    attempt=attempts,
                    outcome="finalized",
                    reply=reply,
                    directives=directives,
                )
                return TurnOutcome(
                    status="finalized",
                    attempts=attempts,
                    final_message=final.message,
                    commands_run=commands_run,
                )

            results = self._process_directives(directives)
            commands_run.extend(result.command for result in results)
            self._append_log(
                attempt=attempts,
                outcome="continue",
                reply=reply,
                directives=directives,
                results=results,
            )

    def _process_directives(self, directives: list[Directive]) -> list[CommandResult]:
        results: list[CommandResult] = []
        for directive in directives:
            if isinstance(directive, MalformedDirective):
                self.corrections.emit(directive)
                continue
            if not isinstance(directive, ExecuteDirective):
                continue

            verdict = self.guard.check(directive.command)
            if not verdict.allowed:
                self.corrections.emit(verdict)
                continue

            self.notify(f"Executing command: {directive.command}")
            result = self.shell.run(
                directive.command,
                cwd=self.working_directory,
                timeout=self.command_timeout,
            )
            if result.succeeded:
                self.notify("Success")
            else:
                detail = result.stderr.strip() or f"exit status {result.returncode}"
                self.notify(f"command failed: {directive.command}\n{detail}")
            results.append(result)

        if results:
            self.history.append(
                Message(role="user", content=self._format_feedback(results))
            )
        return results

    def _build_system_prompt(self, snapshot: str) -> str:
        return f"{self.system_prompt}\n\n{snapshot}"

    @staticmethod
    def _format_feedback(results: list[CommandResult]) -> str:
        blocks = []
        for result in results:
            blocks.append(
                f"Output of {result.command}:\n"
                f"succeeded={str(result.succeeded).lower()} returncode={result.returncode}\n"
                f"stdout:\n{result.stdout}\n"
                f"stderr:\n{result.stderr}"
            )
        return "\n\n".join(blocks)

    def _append_log(
        self,
        *,
        attempt: int,
        outcome: str,
        reply: str | None = None,
        directives: list[Directive] | None = None,
        results: list[CommandResult] | None = None,
        error: str | None = None,
    ) -> None:
        if self.log_dir is None:
            return
        day_file = self.log_dir / f"session-{datetime.now(timezone.utc).date().isoformat()}.log"
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": getattr(self.backend, "model", None),
            "shell": getattr(self.shell, "name", self.shell.__class__.__name__),
            "working_directory": self.working_directory,
            "attempt": attempt,
            "outcome": outcome,
            "reply": reply,
            "directives": [type(d).__name__ for d in directives or []],
            "commands": [
                {"command": r.command, "returncode": r.returncode, "succeeded": r.succeeded}
                for r in results or []
            ],
            "history_length": len(self.history),
            "error": error,
        }
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with day_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        except OSError as exc:
            LOGGER.warning(
                "session_log_write_failed",
                extra={"log_file": str(day_file), "error": str(exc)},
            )
