from __future__ import annotations

import http.client
import json
import logging
from collections.abc import Sequence

import pytest

from repoterm.agent.history import ConversationHistory
from repoterm.agent.loop import AgentLoop
from repoterm.agent.models import Message
from repoterm.agent.safety import SafetyGuard
from repoterm.llm import ChatCompletionsBackend
from repoterm.llm.client import BackendError
from repoterm.shell import CommandResult


class FakeShell:
    name = "fake"

    def __init__(self, failing: set[str] | None = None) -> None:
        self.commands: list[str] = []
        self.working_directories: list[str | None] = []
        self.timeouts: list[float | None] = []
        self.failing = failing or set()

    def run(
        self, command: str, *, cwd: str | None = None, timeout: float | None = None
    ) -> CommandResult:
        self.commands.append(command)
        self.working_directories.append(cwd)
        self.timeouts.append(timeout)
        if command in self.failing:
            return CommandResult(
                command=command, shell=self.name, returncode=1, stdout="", stderr="boom"
            )
        return CommandResult(
            command=command,
            shell=self.name,
            returncode=0,
            stdout=f"out:{command}",
            stderr="",
        )


class ScriptedBackend:
    model = "fake-model"

    def __init__(self, replies: list[str | Exception]) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, tuple[Message, ...]]] = []

    def send(self, system_prompt: str, history: Sequence[Message]) -> str:
        self.calls.append((system_prompt, tuple(history)))
        reply = self.replies.pop(0) if self.replies else "still thinking"
        if isinstance(reply, Exception):
            raise reply
        return reply


def _make_loop(
    backend: ScriptedBackend,
    shell: FakeShell | None = None,
    *,
    max_attempts: int = 5,
    history: ConversationHistory | None = None,
    log_dir=None,
) -> tuple[AgentLoop, list[str]]:
    printed: list[str] = []
    loop = AgentLoop(
        backend=backend,
        shell=shell or FakeShell(),
        system_prompt="PROTOCOL",
        environment=lambda: "GIT STATUS:\nclean",
        history=history,
        guard=SafetyGuard(),
        max_attempts=max_attempts,
        working_directory="/tmp/repo",
        log_dir=log_dir,
        assistant_name="bot",
        notify=printed.append,
    )
    return loop, printed


def test_final_reply_ends_turn_without_running_commands() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["FINAL: done"])
    loop, printed = _make_loop(backend, shell)

    outcome = loop.run_turn("what changed?")

    assert outcome.status == "finalized"
    assert outcome.final_message == "done"
    assert outcome.attempts == 1
    assert shell.commands == []
    assert "bot: done" in printed
    assert len(backend.calls) == 1


def test_system_prompt_carries_environment_and_history_excludes_it() -> None:
    backend = ScriptedBackend(["FINAL: ok"])
    loop, _ = _make_loop(backend)

    loop.run_turn("status please")

    system_prompt, history = backend.calls[0]
    assert system_prompt.startswith("PROTOCOL")
    assert "GIT STATUS:\nclean" in system_prompt
    assert [m.role for m in history] == ["user"]
    assert history[0].content == "status please"
    assert all(message.role != "system" for message in loop.history.snapshot())


def test_environment_is_captured_once_per_turn() -> None:
    calls: list[int] = []

    def environment() -> str:
        calls.append(1)
        return "snapshot"

    backend = ScriptedBackend(["EXECUTE: git status", "FINAL: clean"])
    loop = AgentLoop(
        backend=backend,
        shell=FakeShell(),
        system_prompt="PROTOCOL",
        environment=environment,
        notify=lambda _line: None,
    )

    loop.run_turn("check")

    assert len(calls) == 1
    assert backend.calls[0][0] == backend.calls[1][0]


def test_batched_commands_run_in_order_with_single_feedback_message() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["EXECUTE: echo hi\nEXECUTE: echo bye", "FINAL: said both"])
    loop, _ = _make_loop(backend, shell)

    outcome = loop.run_turn("greet")

    assert shell.commands == ["echo hi", "echo bye"]
    assert shell.working_directories == ["/tmp/repo", "/tmp/repo"]
    assert outcome.commands_run == ["echo hi", "echo bye"]
    history = loop.history.snapshot()
    assert [m.role for m in history] == ["user", "assistant", "user", "assistant"]
    feedback = history[2].content
    assert feedback.index("out:echo hi") < feedback.index("out:echo bye")


def test_backticks_are_stripped_before_storing_and_running() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["EXECUTE: `git log -1`", "FINAL: ok"])
    loop, _ = _make_loop(backend, shell)

    loop.run_turn("last commit")

    assert shell.commands == ["git log -1"]
    assert loop.history.snapshot()[1].content == "EXECUTE: git log -1"


def test_mixed_final_and_execute_never_terminates_and_corrects_once() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["EXECUTE: ls\nFINAL: done", "FINAL: done for real"])
    loop, printed = _make_loop(backend, shell)

    outcome = loop.run_turn("list")

    assert shell.commands == []
    assert outcome.status == "finalized"
    assert outcome.attempts == 2
    _, second_history = backend.calls[1]
    assert [m.role for m in second_history] == ["user", "assistant", "user"]
    assert "mixed FINAL and EXECUTE" in second_history[2].content
    assert sum(line.startswith("malformed reply") for line in printed) == 1


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf build",
        "git reset --hard HEAD~1",
        "cd src && rm -rf .",
        "echo safe; git reset --hard",
    ],
)
def test_destructive_commands_never_reach_the_shell(command: str) -> None:
    shell = FakeShell()
    backend = ScriptedBackend([f"EXECUTE: {command}", "FINAL: gave up"])
    loop, printed = _make_loop(backend, shell)

    loop.run_turn("clean up")

    assert shell.commands == []
    correction = loop.history.snapshot()[2]
    assert correction.role == "user"
    assert "destructive" in correction.content
    assert any(line.startswith("refused for safety") for line in printed)


def test_refused_command_does_not_block_later_commands_in_same_reply() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["EXECUTE: rm -rf dist\nEXECUTE: git status", "FINAL: ok"])
    loop, _ = _make_loop(backend, shell)

    loop.run_turn("tidy")

    assert shell.commands == ["git status"]
    roles_and_heads = [(m.role, m.content.split("\n", 1)[0]) for m in loop.history.snapshot()]
    assert roles_and_heads[2][1].startswith("ERROR: rm -rf dist")
    assert roles_and_heads[3][1] == "Output of git status:"


def test_reply_without_markers_is_corrected_not_ignored() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["Sure, I can help with that!", "FINAL: fine"])
    loop, printed = _make_loop(backend, shell)

    outcome = loop.run_turn("help")

    assert outcome.attempts == 2
    correction = backend.calls[1][1][-1]
    assert correction.role == "user"
    assert "neither EXECUTE nor FINAL" in correction.content
    assert "malformed reply: response contained neither EXECUTE nor FINAL" in printed


def test_narration_lines_are_corrected_and_commands_still_run() -> None:
    shell = FakeShell()
    backend = ScriptedBackend(["Let me look.\nEXECUTE: git branch", "FINAL: on main"])
    loop, _ = _make_loop(backend, shell)

    loop.run_turn("which branch")

    assert shell.commands == ["git branch"]
    history = loop.history.snapshot()
    assert "line must start with EXECUTE" in history[2].content
    assert history[3].content.startswith("Output of git branch:")


def test_failed_command_is_feedback_and_reported() -> None:
    shell = FakeShell(failing={"git pull"})
    backend = ScriptedBackend(["EXECUTE: git pull", "FINAL: pull failed"])
    loop, printed = _make_loop(backend, shell)

    outcome = loop.run_turn("update")

    assert outcome.status == "finalized"
    feedback = loop.history.snapshot()[2].content
    assert "succeeded=false returncode=1" in feedback
    assert "boom" in feedback
    assert any(line.startswith("command failed: git pull") for line in printed)


def test_attempt_budget_aborts_turn_once_without_extra_calls() -> None:
    backend = ScriptedBackend(["no markers here"] * 10)
    loop, printed = _make_loop(backend, max_attempts=3)

    outcome = loop.run_turn("loop forever")

    assert outcome.status == "aborted"
    assert outcome.attempts == 3
    assert len(backend.calls) == 3
    assert sum(line.startswith("too many attempts") for line in printed) == 1


def test_attempt_counter_resets_each_turn() -> None:
    backend = ScriptedBackend(["nope", "nope", "FINAL: first", "nope", "FINAL: second"])
    loop, _ = _make_loop(backend, max_attempts=3)

    first = loop.run_turn("one")
    second = loop.run_turn("two")

    assert (first.status, first.attempts) == ("finalized", 3)
    assert (second.status, second.attempts) == ("finalized", 2)


def test_backend_failure_ends_turn_and_is_not_fed_back() -> None:
    backend = ScriptedBackend([BackendError("HTTP 503"), "FINAL: back"])
    loop, printed = _make_loop(backend)

    outcome = loop.run_turn("anything")

    assert outcome.status == "failed"
    assert outcome.error == "HTTP 503"
    assert [m.role for m in loop.history.snapshot()] == ["user"]
    assert "model request failed: HTTP 503" in printed

    follow_up = loop.run_turn("again")
    assert follow_up.status == "finalized"


def test_history_stays_bounded_across_turns() -> None:
    history = ConversationHistory(limit=4)
    backend = ScriptedBackend(["FINAL: a", "FINAL: b", "FINAL: c"])
    loop, _ = _make_loop(backend, history=history)

    for request in ("one", "two", "three"):
        loop.run_turn(request)

    assert [m.content for m in history.snapshot()] == ["two", "b", "three", "c"]


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _make_loop(ScriptedBackend([]), max_attempts=0)


def test_session_log_records_each_attempt(tmp_path) -> None:
    backend = ScriptedBackend(["EXECUTE: git status", "FINAL: clean"])
    loop, _ = _make_loop(backend, log_dir=tmp_path)

    loop.run_turn("status")

    log_files = list(tmp_path.glob("session-*.log"))
    assert len(log_files) == 1
    entries = [json.loads(line) for line in log_files[0].read_text(encoding="utf-8").splitlines()]
    assert [entry["outcome"] for entry in entries] == ["continue", "finalized"]
    assert entries[0]["model"] == "fake-model"
    assert entries[0]["shell"] == "fake"
    assert entries[0]["directives"] == ["ExecuteDirective"]
    assert entries[0]["commands"] == [
        {"command": "git status", "returncode": 0, "succeeded": True}
    ]
    assert entries[1]["attempt"] == 2


def test_unwritable_session_log_does_not_break_the_turn(tmp_path, caplog) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory", encoding="utf-8")
    backend = ScriptedBackend(["EXECUTE: git status", "FINAL: ok"])
    loop, printed = _make_loop(backend, log_dir=blocker / "logs")

    with caplog.at_level(logging.WARNING, logger="repoterm.agent.loop"):
        outcome = loop.run_turn("status")

    assert outcome.status == "finalized"
    assert outcome.commands_run == ["git status"]
    assert printed[-1] == "bot: ok"
    assert "session_log_write_failed" in [record.getMessage() for record in caplog.records]


def test_dropped_model_connection_fails_only_the_turn(monkeypatch) -> None:
    def fake_urlopen(*_args, **_kwargs):
        raise http.client.RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr("repoterm.llm.client.request.urlopen", fake_urlopen)
    backend = ChatCompletionsBackend(
        api_key="secret", model="m", api_url="https://example.com/v1/chat/completions"
    )
    printed: list[str] = []
    loop = AgentLoop(
        backend=backend,
        shell=FakeShell(),
        system_prompt="PROTOCOL",
        environment=lambda: "GIT STATUS:\nclean",
        notify=printed.append,
    )

    outcome = loop.run_turn("hi")

    assert outcome.status == "failed"
    assert "transport error" in (outcome.error or "")
    assert printed[-1].startswith("model request failed:")
    assert [message.role for message in loop.history] == ["user"]


def test_command_timeout_is_passed_to_the_shell() -> None:
    shell = FakeShell()
    loop = AgentLoop(
        backend=ScriptedBackend(["EXECUTE: git commit", "FINAL: done"]),
        shell=shell,
        system_prompt="PROTOCOL",
        environment=lambda: "GIT STATUS:\nclean",
        command_timeout=30.0,
        notify=lambda _text: None,
    )

    loop.run_turn("commit")

    assert shell.timeouts == [30.0]
