"""
Background loops that follow session files while the lead runs.

LogTailer mirrors ``session.log`` to the console for non-interactive runs
with ``--stream-logs``. TranscriptTailer follows the lead's own transcript in
interactive runs and copies its turns into the event log, so the lead's token
usage shows up in cost reports.

Both loops are advisory. They share one ``threading.Event`` with the
orchestrator, wait on it between polls, and an internal error ends only the
loop that hit it.
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Any, Callable, Optional, TextIO

import structlog

from swarmrun.costs import MAIN_INSTANCE_ID
from swarmrun.protocol.stream import decode_line
from swarmrun.session.models import InstanceState
from swarmrun.session.store import SessionStore

logger = structlog.get_logger(__name__)

TRANSCRIPT_EVENT_TYPES = ("user", "assistant")


def _stdout_sink(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class _FileFollower(threading.Thread):
    """Shared wait-then-follow loop."""

    def __init__(self, name: str, stop_event: threading.Event, poll_interval: float) -> None:
        super().__init__(name=name, daemon=True)
        self.stop_event = stop_event
        self.poll_interval = poll_interval

    def _wait_for(self, path_fn: Callable[[], Optional[Path]]) -> Optional[Path]:
        while not self.stop_event.is_set():
            path = path_fn()
            if path is not None and path.exists():
                return path
            self.stop_event.wait(self.poll_interval)
        return None

    def _follow(self, f: TextIO) -> None:
        while not self.stop_event.is_set():
            if not self._pump(f):
                self.stop_event.wait(self.poll_interval)
        self._pump(f)

    def _pump(self, f: TextIO) -> bool:
        raise NotImplementedError


class LogTailer(_FileFollower):
    """Print everything appended to ``session.log`` after the loop starts."""

    def __init__(
        self,
        path: Path,
        stop_event: threading.Event,
        poll_interval: float = 0.1,
        sink: Callable[[str], None] = _stdout_sink,
    ) -> None:
        super().__init__("log-tailer", stop_event, poll_interval)
        self.path = Path(path)
        self.sink = sink

    def run(self) -> None:
        try:
            path = self._wait_for(lambda: self.path)
            if path is None:
                return
            with open(path, encoding="utf-8", errors="replace") as f:
                f.seek(0, 2)
                self._follow(f)
        except Exception as e:
            logger.warning("telemetry.log_tailer_stopped", path=str(self.path), error=str(e))

    def _pump(self, f: TextIO) -> bool:
        chunk = f.read()
        if chunk:
            self.sink(chunk)
            return True
        return False


class TranscriptTailer(_FileFollower):
    """Copy the lead's transcript turns into the session event log.

    The transcript path is published by the lead's start hook in
    ``main_instance_transcript.path``. Entries are recorded with instance id
    ``main``; the transcript's ``sessionId`` is persisted as the lead's
    resumable id so a later restore can resume it.
    """

    def __init__(
        self,
        store: SessionStore,
        stop_event: threading.Event,
        instance_name: str,
        state_instance_id: Optional[str] = None,
        poll_interval: float = 0.1,
        from_start: bool = True,
    ) -> None:
        super().__init__("transcript-tailer", stop_event, poll_interval)
        self.store = store
        self.instance_name = instance_name
        self.state_instance_id = state_instance_id
        self.from_start = from_start
        self.recorded = 0
        self._partial = ""
        self._last_session_id: Optional[str] = None

    def _transcript_path(self) -> Optional[Path]:
        marker = self.store.path_for("transcript_marker")
        if not marker.exists():
            return None
        raw = marker.read_text(encoding="utf-8").strip()
        return Path(raw) if raw else None

    def run(self) -> None:
        try:
            transcript = self._wait_for(self._transcript_path)
            if transcript is None:
                return
            logger.debug("telemetry.transcript_found", path=str(transcript))
            with open(transcript, encoding="utf-8", errors="replace") as f:
                if not self.from_start:
                    f.seek(0, 2)
                self._follow(f)
        except Exception as e:
            logger.warning("telemetry.transcript_tailer_stopped", error=str(e))

    def _pump(self, f: TextIO) -> bool:
        chunk = f.read()
        if not chunk:
            return False
        data = self._partial + chunk
        lines = data.split("\n")
        self._partial = lines.pop()
        for line in lines:
            entry = decode_line(line)
            if entry is not None:
                self._record(entry)
        return True

    def _record(self, entry: dict[str, Any]) -> None:
        entry_type = entry.get("type")
        if entry_type not in TRANSCRIPT_EVENT_TYPES:
            return
        session_id = entry.get("sessionId") or entry.get("session_id")
        event: dict[str, Any] = {"type": entry_type, "message": entry.get("message")}
        if session_id:
            event["session_id"] = session_id
        self.store.record(event, instance=self.instance_name, instance_id=MAIN_INSTANCE_ID)
        self.recorded += 1
        if session_id and session_id != self._last_session_id:
            self._last_session_id = str(session_id)
            self._persist_session_id()

    def _persist_session_id(self) -> None:
        if not self.state_instance_id:
            return
        self.store.write_state(
            self.state_instance_id,
            InstanceState(
                instance_name=self.instance_name,
                instance_id=self.state_instance_id,
                resumable_session_id=self._last_session_id,
            ),
        )
