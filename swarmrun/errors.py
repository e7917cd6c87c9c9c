"""Exception hierarchy shared across the swarmrun package."""

from __future__ import annotations

from typing import Optional


class SwarmrunError(Exception):
    """Base class for every error raised by swarmrun."""


class ConfigurationError(SwarmrunError):
    """Required configuration is missing or malformed; raised before any spawn."""


class SessionNotFoundError(SwarmrunError):
    """A session directory that should exist does not."""


class ExecutionError(SwarmrunError):
    """One executor invocation failed."""


class ExecutorBusyError(ExecutionError):
    """An executor was asked to run while an invocation is already in flight."""


class MissingResultError(ExecutionError):
    """The agent process closed its output without emitting a result event."""


class AgentProcessError(ExecutionError):
    """The agent process exited non-zero (or was killed by a signal)."""

    def __init__(self, returncode: int, stderr: str = "", command: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.command = command
        detail = stderr.strip()[:500] if stderr else "no stderr output"
        super().__init__(f"Agent process exited with status {returncode}: {detail}")


class LifecycleCommandError(SwarmrunError):
    """A before-command failed, so the swarm was not launched."""

    def __init__(self, message: str, outcomes: Optional[list] = None) -> None:
        super().__init__(message)
        self.outcomes = list(outcomes or [])
