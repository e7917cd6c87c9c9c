"""
Lifecycle commands run around the lead process.

Before-commands prepare the workspace and run in order; the first failure
aborts the launch. After-commands all run, and failures are only reported.
Command output goes to ``session.log``.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

import structlog

from swarmrun.errors import LifecycleCommandError

logger = structlog.get_logger(__name__)


@dataclass
class CommandOutcome:
    command: str
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _run_one(
    phase: str,
    index: int,
    total: int,
    command: str,
    cwd: Optional[Path],
    env: Optional[Mapping[str, str]],
    human_log: Optional[logging.Logger],
) -> CommandOutcome:
    if human_log is not None:
        human_log.info("Executing %s command %d/%d: %s", phase, index, total, command)
    try:
        completed = subprocess.run(
            command,
            shell=True,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        outcome = CommandOutcome(command, completed.returncode, completed.stdout or "")
    except OSError as e:
        outcome = CommandOutcome(command, -1, f"Error: {e}")

    if human_log is not None:
        human_log.info(
            "Command output:\n%s\nExit status: %d\n%s", outcome.output, outcome.returncode, "-" * 80
        )
    logger.info(
        "lifecycle.command_finished",
        phase=phase,
        index=index,
        returncode=outcome.returncode,
    )
    return outcome


def run_before_commands(
    commands: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    human_log: Optional[logging.Logger] = None,
) -> list[CommandOutcome]:
    """Run sequentially; raise LifecycleCommandError at the first failure."""
    outcomes: list[CommandOutcome] = []
    for index, command in enumerate(commands, start=1):
        outcome = _run_one("before", index, len(commands), command, cwd, env, human_log)
        outcomes.append(outcome)
        if not outcome.ok:
            raise LifecycleCommandError(
                f"Before command {index} failed (exit {outcome.returncode}): {command}",
                outcomes=outcomes,
            )
    return outcomes


def run_after_commands(
    commands: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    human_log: Optional[logging.Logger] = None,
) -> list[CommandOutcome]:
    """Run every command regardless of earlier failures."""
    outcomes = [
        _run_one("after", index, len(commands), command, cwd, env, human_log)
        for index, command in enumerate(commands, start=1)
    ]
    failed = [o for o in outcomes if not o.ok]
    if failed:
        logger.warning("lifecycle.after_commands_failed", failed=len(failed), total=len(outcomes))
    return outcomes
