"""
Session paths: how a working directory and a session id map onto disk.

Every session lives at ``<home>/sessions/<project>/<session_id>`` where
``<project>`` is the root directory flattened into one folder name.
"""

from __future__ import annotations

import re
import secrets
import string
from datetime import datetime
from pathlib import Path
from typing import Optional

SESSION_ID_PATTERN = re.compile(r"^\d{8}-\d{6}-[a-z0-9]{4}$")

EVENT_LOG = "session.log.json"
HUMAN_LOG = "session.log"
METADATA = "session_metadata.json"
MAIN_PID = "main_pid"
CONFIG_COPY = "config.yml"
TRANSCRIPT_MARKER = "main_instance_transcript.path"
STATE_DIR = "state"
PIDS_DIR = "pids"
GITIGNORE = ".gitignore"

_DRIVE = re.compile(r"^([A-Za-z]):")
_SEPARATORS = re.compile(r"[/\\]")


def project_folder_name(root_dir: Path | str) -> str:
    """Flatten a directory path into a single folder name.

    ``/home/me/proj`` becomes ``home+me+proj``; ``C:\\work\\proj`` becomes
    ``C+work+proj``.
    """
    raw = str(root_dir)
    if not (raw.startswith("/") or _DRIVE.match(raw)):
        raw = str(Path(raw).expanduser().resolve())
    raw = _DRIVE.sub(r"\1", raw)
    raw = re.sub(r"^[/\\]", "", raw)
    return _SEPARATORS.sub("+", raw)


def generate_session_id(now: Optional[datetime] = None) -> str:
    """Build a session id of the form YYYYMMDD-HHMMSS-xxxx."""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"{stamp}-{suffix}"


def session_dir_for(home: Path, root_dir: Path | str, session_id: str) -> Path:
    return home / "sessions" / project_folder_name(root_dir) / session_id
