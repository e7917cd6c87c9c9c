"""
Process Tracker: every child the swarm spawned, so none outlives it.

Each tracked PID is a file ``<session>/pids/<pid>`` whose content is a label.
Keeping the registry on disk lets processes started by sub-agents (RPC
servers, nested executors) register themselves in the same session, and
lets the orchestrator clean all of them up from one place.
"""

from __future__ import annotations

import os
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from swarmrun.session import paths

logger = structlog.get_logger(__name__)

_POLL_SECONDS = 0.05


@dataclass
class CleanupFailure:
    pid: int
    label: str
    error: str


@dataclass
class CleanupReport:
    """Outcome of one cleanup pass."""
    terminated: list[int] = field(default_factory=list)
    killed: list[int] = field(default_factory=list)
    already_gone: list[int] = field(default_factory=list)
    failures: list[CleanupFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _is_alive(pid: int) -> bool:
    # Reap our own children first so a zombie does not read as alive.
    try:
        reaped, _ = os.waitpid(pid, os.WNOHANG)
        if reaped == pid:
            return False
    except OSError:
        # ChildProcessError: not our child, fall through to the signal probe.
        pass
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ProcessTracker:
    """File-backed registry of PIDs belonging to one session."""

    def __init__(self, session_path: Path) -> None:
        self.pids_dir = Path(session_path) / paths.PIDS_DIR
        self.pids_dir.mkdir(parents=True, exist_ok=True)

    def track(self, pid: int, label: str = "") -> None:
        (self.pids_dir / str(pid)).write_text(label, encoding="utf-8")
        logger.debug("process_tracker.tracked", pid=pid, label=label)

    def untrack(self, pid: int) -> None:
        try:
            (self.pids_dir / str(pid)).unlink()
        except FileNotFoundError:
            pass

    def tracked(self) -> dict[int, str]:
        """Currently tracked PIDs mapped to their labels."""
        result: dict[int, str] = {}
        if not self.pids_dir.is_dir():
            return result
        for pid_file in self.pids_dir.iterdir():
            if not pid_file.name.isdigit():
                continue
            try:
                label = pid_file.read_text(encoding="utf-8").strip()
            except OSError:
                label = ""
            result[int(pid_file.name)] = label
        return result

    def cleanup_all(self, grace_seconds: float = 0.5) -> CleanupReport:
        """Terminate every tracked process, escalating to SIGKILL after the grace window.

        The calling process is never signalled. A PID that is already gone
        counts as success; per-PID errors are collected and never stop the
        rest of the pass.
        """
        report = CleanupReport()
        own_pid = os.getpid()
        pending: dict[int, str] = {}

        for pid, label in self.tracked().items():
            if pid == own_pid:
                self.untrack(pid)
                continue
            try:
                os.kill(pid, signal.SIGTERM)
                pending[pid] = label
            except ProcessLookupError:
                report.already_gone.append(pid)
                self.untrack(pid)
            except OSError as e:
                report.failures.append(CleanupFailure(pid, label, str(e)))
                logger.warning("process_tracker.terminate_failed", pid=pid, label=label, error=str(e))

        deadline = time.monotonic() + max(0.0, grace_seconds)
        while pending:
            for pid in [p for p in pending if not _is_alive(p)]:
                report.terminated.append(pid)
                pending.pop(pid)
                self.untrack(pid)
            if not pending or time.monotonic() >= deadline:
                break
            time.sleep(_POLL_SECONDS)

        for pid, label in pending.items():
            try:
                os.kill(pid, signal.SIGKILL)
                _is_alive(pid)
                report.killed.append(pid)
            except ProcessLookupError:
                report.terminated.append(pid)
            except OSError as e:
                report.failures.append(CleanupFailure(pid, label, str(e)))
                logger.warning("process_tracker.kill_failed", pid=pid, label=label, error=str(e))
                continue
            self.untrack(pid)

        logger.info(
            "process_tracker.cleanup_done",
            terminated=len(report.terminated),
            killed=len(report.killed),
            already_gone=len(report.already_gone),
            failures=len(report.failures),
        )
        return report
