"""
Session Store: the on-disk home of one swarm run.

A session is a directory. The event log (``session.log.json``) is append-only
JSONL shared by every process in the swarm, so appends take an exclusive
``flock`` for the duration of a single write. Per-instance state files are
overwritten whole via tempfile + rename; a missing or unreadable state file
only means "start fresh".

Only uses: pathlib, json, fcntl, logging, structlog and the session models.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog

from swarmrun.errors import SessionNotFoundError
from swarmrun.session import paths
from swarmrun.session.models import EventLogEntry, InstanceState, SessionMetadata

logger = structlog.get_logger(__name__)

HUMAN_LOG_FORMAT = "[%(asctime)s.%(msecs)03d] [%(levelname)s] %(message)s"
HUMAN_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _default_home() -> Path:
    from swarmrun.config import SwarmrunSettings

    return SwarmrunSettings().home


def atomic_write_text(path: Path, text: str) -> None:
    """Atomic write with tempfile + rename in the target directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=f".{path.name}_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class SessionStore:
    """
    Persistent store for one swarm session.

    Construct through ``SessionStore.create`` (new run) or
    ``SessionStore.open`` (restore). Both are safe to call repeatedly.
    """

    def __init__(self, path: Path, run_dir: Optional[Path] = None) -> None:
        self.path = Path(path)
        self.session_id = self.path.name
        self.run_dir = Path(run_dir) if run_dir is not None else None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        root_dir: Path | str,
        session_id: Optional[str] = None,
        home: Optional[Path] = None,
        run_dir: Optional[Path] = None,
    ) -> "SessionStore":
        """Create (or re-create) the directory tree for a session."""
        home = Path(home) if home is not None else _default_home()
        session_id = session_id or paths.generate_session_id()
        session_path = paths.session_dir_for(home, root_dir, session_id)

        session_path.mkdir(parents=True, exist_ok=True)
        (session_path / paths.STATE_DIR).mkdir(exist_ok=True)
        (session_path / paths.PIDS_DIR).mkdir(exist_ok=True)
        gitignore = home / paths.GITIGNORE
        if not gitignore.exists():
            gitignore.write_text("*\n", encoding="utf-8")

        logger.debug("session_store.created", session_id=session_id, path=str(session_path))
        return cls(session_path, run_dir=run_dir if run_dir is not None else home / "run")

    @classmethod
    def open(cls, path: Path | str, run_dir: Optional[Path] = None) -> "SessionStore":
        """Reopen an existing session directory for restore."""
        session_path = Path(path).expanduser().resolve()
        if not session_path.is_dir():
            raise SessionNotFoundError(f"Session not found: {session_path}")
        (session_path / paths.STATE_DIR).mkdir(exist_ok=True)
        (session_path / paths.PIDS_DIR).mkdir(exist_ok=True)
        if run_dir is None:
            run_dir = _default_home() / "run"
        return cls(session_path, run_dir=run_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def path_for(self, name: str) -> Path:
        """Resolve a well-known session file by name.

        Plain names: event_log, human_log, metadata, main_pid, config,
        transcript_marker, state_dir, pids_dir, symlink. Parameterised names:
        ``settings:<instance>`` and ``descriptor:<instance>``.
        """
        fixed = {
            "event_log": paths.EVENT_LOG,
            "human_log": paths.HUMAN_LOG,
            "metadata": paths.METADATA,
            "main_pid": paths.MAIN_PID,
            "config": paths.CONFIG_COPY,
            "transcript_marker": paths.TRANSCRIPT_MARKER,
            "state_dir": paths.STATE_DIR,
            "pids_dir": paths.PIDS_DIR,
        }
        if name in fixed:
            return self.path / fixed[name]
        if name == "symlink":
            if self.run_dir is None:
                raise KeyError("symlink: store has no run directory")
            return self.run_dir / self.session_id
        kind, _, instance = name.partition(":")
        if instance and kind == "settings":
            return self.path / f"{instance}_settings.json"
        if instance and kind == "descriptor":
            return self.path / f"{instance}.mcp.json"
        raise KeyError(f"unknown session path: {name}")

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def append_event(self, entry: EventLogEntry) -> None:
        """Append one entry as a single JSON line under an exclusive lock."""
        line = json.dumps(entry.model_dump(), ensure_ascii=False, default=str) + "\n"
        log_path = self.path_for("event_log")
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    f.write(line)
                    f.flush()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.error("session_store.append_failed", path=str(log_path), error=str(e))
            raise

    def record(
        self,
        event: dict[str, Any],
        instance: Optional[str] = None,
        instance_id: Optional[str] = None,
        calling_instance: Optional[str] = None,
        calling_instance_id: Optional[str] = None,
    ) -> EventLogEntry:
        """Wrap a raw protocol event in an entry and append it."""
        entry = EventLogEntry(
            instance=instance,
            instance_id=instance_id,
            calling_instance=calling_instance,
            calling_instance_id=calling_instance_id,
            event=event,
        )
        self.append_event(entry)
        return entry

    def iter_events(self) -> Iterator[EventLogEntry]:
        """Yield the parseable entries of the event log in append order."""
        log_path = self.path_for("event_log")
        if not log_path.exists():
            return
        with open(log_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield EventLogEntry.model_validate_json(line)
                except ValueError:
                    logger.warning("session_store.bad_event_line", path=str(log_path))

    # ------------------------------------------------------------------
    # Instance state
    # ------------------------------------------------------------------

    def write_state(self, instance_id: str, state: InstanceState) -> None:
        target = self.path_for("state_dir") / f"{instance_id}.json"
        atomic_write_text(target, state.model_dump_json(indent=2))
        logger.debug(
            "session_store.state_written",
            instance_id=instance_id,
            resumable_session_id=state.resumable_session_id,
        )

    def read_state(self, instance_id: str) -> Optional[InstanceState]:
        target = self.path_for("state_dir") / f"{instance_id}.json"
        if not target.exists():
            return None
        return self._load_state(target)

    def read_states(self) -> dict[str, InstanceState]:
        """All readable instance states keyed by instance id."""
        state_dir = self.path_for("state_dir")
        if not state_dir.is_dir():
            return {}
        states: dict[str, InstanceState] = {}
        for state_file in sorted(state_dir.glob("*.json")):
            state = self._load_state(state_file)
            if state is not None:
                states[state.instance_id] = state
        return states

    @staticmethod
    def _load_state(path: Path) -> Optional[InstanceState]:
        try:
            return InstanceState.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("session_store.state_unreadable", path=str(path), error=str(e))
            return None

    # ------------------------------------------------------------------
    # Metadata and companion files
    # ------------------------------------------------------------------

    def write_metadata(self, metadata: SessionMetadata) -> None:
        atomic_write_text(self.path_for("metadata"), metadata.model_dump_json(indent=2))

    def read_metadata(self) -> Optional[SessionMetadata]:
        target = self.path_for("metadata")
        if not target.exists():
            return None
        try:
            return SessionMetadata.model_validate_json(target.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("session_store.metadata_unreadable", path=str(target), error=str(e))
            return None

    def update_metadata(self, **fields: Any) -> Optional[SessionMetadata]:
        """Merge fields into the stored metadata. No-op when none is stored."""
        current = self.read_metadata()
        if current is None:
            return None
        updated = current.model_copy(update=fields)
        self.write_metadata(updated)
        return updated

    def write_main_pid(self, pid: int) -> None:
        atomic_write_text(self.path_for("main_pid"), f"{pid}\n")

    def read_main_pid(self) -> Optional[int]:
        try:
            return int(self.path_for("main_pid").read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def copy_config(self, source: Path) -> Path:
        target = self.path_for("config")
        shutil.copyfile(source, target)
        return target

    def human_logger(self, instance: Optional[str] = None) -> logging.Logger:
        """A stdlib logger writing readable lines to ``session.log``.

        All instances of one session share a single file handler attached to
        the session-level logger; per-instance loggers propagate to it.
        """
        base_name = f"swarmrun.session.{self.session_id}"
        base = logging.getLogger(base_name)
        log_path = str(self.path_for("human_log"))
        if not any(
            isinstance(h, logging.FileHandler) and h.baseFilename == log_path
            for h in base.handlers
        ):
            handler = logging.FileHandler(log_path, encoding="utf-8")
            handler.setFormatter(logging.Formatter(HUMAN_LOG_FORMAT, HUMAN_LOG_DATEFMT))
            base.addHandler(handler)
            base.setLevel(logging.INFO)
            base.propagate = False
        if not instance:
            return base
        return logging.getLogger(f"{base_name}.{instance}")

    def close_human_log(self) -> None:
        base = logging.getLogger(f"swarmrun.session.{self.session_id}")
        for handler in list(base.handlers):
            base.removeHandler(handler)
            handler.close()

    # ------------------------------------------------------------------
    # Convenience link in the run directory
    # ------------------------------------------------------------------

    def create_symlink(self) -> Optional[Path]:
        """Point ``<run_dir>/<session_id>`` at this session. Advisory."""
        try:
            link = self.path_for("symlink")
            link.parent.mkdir(parents=True, exist_ok=True)
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(self.path)
            return link
        except (OSError, KeyError) as e:
            logger.warning("session_store.symlink_failed", session_id=self.session_id, error=str(e))
            return None

    def remove_symlink(self) -> None:
        try:
            link = self.path_for("symlink")
            if link.is_symlink():
                link.unlink()
        except (OSError, KeyError) as e:
            logger.warning(
                "session_store.symlink_remove_failed", session_id=self.session_id, error=str(e)
            )
