"""Command-line interface for repoterm."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import cast

from .agent.environment import EnvironmentSnapshot
from .agent.history import ConversationHistory
from .agent.loop import AgentLoop
from .agent.safety import SafetyGuard
from .config import AppConfig
from .llm import PROVIDERS, create_backend
from .shell import create_shell_adapter

LOGGER = logging.getLogger(__name__)

EXIT_WORDS = {"quit", "exit"}


class CLIArgs(argparse.Namespace):
    request: str | None
    working_directory: str | None
    provider: str | None
    model: str | None
    max_attempts: int | None
    log_level: str | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repoterm",
        description="Natural-language assistant for your git repository",
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Override the working directory for command execution. "
            "Takes precedence over config/env cwd values."
        ),
    )
    parser.add_argument("--provider", choices=PROVIDERS, help="Model provider adapter")
    parser.add_argument("--model", help="Model name sent to the provider")
    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Maximum model round trips per request before giving up",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostic log level written to stderr",
    )
    parser.add_argument("request", nargs="?", help="First request to run before prompting")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    config = AppConfig.from_env(provider=args.provider)
    if args.model:
        config.model = args.model
    if args.max_attempts is not None:
        if args.max_attempts < 1:
            print("--max-attempts must be a positive integer.")
            return 1
        config.max_attempts = args.max_attempts

    logging.basicConfig(
        level=getattr(logging, args.log_level or config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    configured_working_directory = (
        args.working_directory if args.working_directory is not None else config.working_directory
    )
    working_directory: str | None = None
    if configured_working_directory is not None:
        resolved_working_directory = Path(configured_working_directory).expanduser().resolve()
        if not resolved_working_directory.exists() or not resolved_working_directory.is_dir():
            print(f"Invalid configured cwd directory: {configured_working_directory}")
            return 1
        working_directory = str(resolved_working_directory)

    if config.requires_api_key and not config.api_key:
        print(
            f"No API key configured for provider '{config.provider}'. "
            "Set REPOTERM_API_KEY or add api_key to repoterm.config.json."
        )
        return 1

    adapter = create_shell_adapter(config.shell)
    LOGGER.debug("shell_adapter_selected", extra={"shell": adapter.name})
    loop = AgentLoop(
        backend=create_backend(
            config.provider,
            api_key=config.api_key,
            model=config.model,
            api_url=config.api_url,
            timeout=config.timeout,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            reasoning_effort=config.reasoning_effort,
        ),
        shell=adapter,
        system_prompt=config.system_prompt,
        environment=EnvironmentSnapshot(
            shell_name=adapter.name,
            working_directory=working_directory,
        ).snapshot,
        history=ConversationHistory(config.history_limit),
        guard=SafetyGuard(config.blocked_patterns),
        max_attempts=config.max_attempts,
        working_directory=working_directory,
        command_timeout=config.command_timeout,
        log_dir=config.log_dir if config.session_log_enabled else None,
        assistant_name=config.assistant_name,
    )

    pending = args.request.strip() if args.request else ""
    while True:
        if not pending:
            try:
                pending = input("> ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\nExiting...")
                return 0
        if not pending:
            continue
        if pending in EXIT_WORDS:
            return 0

        try:
            loop.run_turn(pending)
        except KeyboardInterrupt:
            print("\nExiting...")
            return 0
        pending = ""


if __name__ == "__main__":
    raise SystemExit(main())
