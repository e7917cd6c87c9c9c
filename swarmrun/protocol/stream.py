"""
Streaming Protocol Reader: one agent process, one stream of events.

The agent writes newline-delimited JSON objects to stdout:

  system    subtype "init" carries the resumable ``session_id``
  assistant / user   conversation turns
  result    terminal event: ``result``, ``total_cost_usd``, ``duration_ms``,
            ``session_id``, ``is_error``

Anything else passes through untouched. Lines that are not JSON objects are
logged and skipped. stderr is drained on its own thread so a chatty child
can never block on a full pipe.
"""

from __future__ import annotations

import json
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

import structlog

from swarmrun.errors import AgentProcessError, MissingResultError

logger = structlog.get_logger(__name__)

KNOWN_EVENT_TYPES = frozenset({"system", "assistant", "user", "result"})


def decode_line(line: str) -> Optional[dict[str, Any]]:
    """Decode one protocol line. Blank, malformed and non-object lines give None."""
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning("stream.unparseable_line", error=str(e), line=line[:200])
        return None
    if not isinstance(data, dict):
        logger.warning("stream.non_object_line", line=line[:200])
        return None
    return data


@dataclass
class StreamOutcome:
    """What one agent run produced."""
    returncode: int = 0
    result: Optional[dict[str, Any]] = None
    resumable_session_id: Optional[str] = None
    events: int = 0
    stderr: str = ""
    pid: Optional[int] = None
    skipped_lines: int = 0

    @property
    def result_text(self) -> str:
        if not self.result:
            return ""
        text = self.result.get("result")
        return text if isinstance(text, str) else ""


class StreamReader:
    """Spawn an agent process and feed its decoded events to a callback."""

    def __init__(self, tracker: Any = None, label: str = "agent") -> None:
        self._tracker = tracker
        self._label = label

    def run(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        on_event: Optional[Callable[[dict[str, Any]], None]] = None,
        on_spawn: Optional[Callable[[int], None]] = None,
    ) -> StreamOutcome:
        """Run ``command`` to completion.

        ``on_event`` is called synchronously, in stream order, before the
        next line is read. Raises AgentProcessError on a non-zero exit and
        MissingResultError when the process exits cleanly without a result.
        """
        outcome = StreamOutcome()
        try:
            proc = subprocess.Popen(
                list(command),
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise AgentProcessError(127, stderr=str(e), command=command[0]) from e

        outcome.pid = proc.pid
        if self._tracker is not None:
            self._tracker.track(proc.pid, self._label)
        logger.debug("stream.spawned", pid=proc.pid, label=self._label, command=command[0])

        stderr_chunks: list[str] = []

        def _drain_stderr() -> None:
            assert proc.stderr is not None
            try:
                for chunk in proc.stderr:
                    stderr_chunks.append(chunk)
            except (OSError, ValueError) as e:
                logger.warning("stream.stderr_drain_failed", pid=proc.pid, error=str(e))
                # Keep the pipe empty so the child never blocks on it.
                try:
                    while proc.stderr.buffer.read(65536):
                        pass
                except (OSError, ValueError):
                    pass

        drain = threading.Thread(target=_drain_stderr, name=f"stderr-{proc.pid}", daemon=True)
        drain.start()

        try:
            if on_spawn is not None:
                on_spawn(proc.pid)
            assert proc.stdout is not None
            for raw_line in proc.stdout:
                event = decode_line(raw_line)
                if event is None:
                    if raw_line.strip():
                        outcome.skipped_lines += 1
                    continue
                outcome.events += 1
                self._observe(event, outcome)
                if on_event is not None:
                    on_event(event)
        except BaseException:
            proc.kill()
            proc.wait()
            drain.join(timeout=1.0)
            self._untrack(proc.pid)
            raise

        outcome.returncode = proc.wait()
        drain.join(timeout=5.0)
        outcome.stderr = "".join(stderr_chunks)
        self._untrack(proc.pid)

        logger.debug(
            "stream.exited",
            pid=proc.pid,
            returncode=outcome.returncode,
            events=outcome.events,
            skipped=outcome.skipped_lines,
        )
        if outcome.returncode != 0:
            raise AgentProcessError(outcome.returncode, stderr=outcome.stderr, command=command[0])
        if outcome.result is None:
            raise MissingResultError("no result produced by agent process")
        return outcome

    @staticmethod
    def _observe(event: dict[str, Any], outcome: StreamOutcome) -> None:
        event_type = event.get("type")
        if event_type == "system" and event.get("subtype") == "init":
            session_id = event.get("session_id")
            if session_id:
                outcome.resumable_session_id = str(session_id)
        elif event_type == "result":
            outcome.result = event
            if event.get("session_id") and not outcome.resumable_session_id:
                outcome.resumable_session_id = str(event["session_id"])
        elif event_type not in KNOWN_EVENT_TYPES:
            logger.debug("stream.unknown_event", type=event_type)

    def _untrack(self, pid: int) -> None:
        if self._tracker is not None:
            self._tracker.untrack(pid)
