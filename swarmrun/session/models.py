"""
Session Data Models: what a session persists.

EventLogEntry is one line of ``session.log.json``. InstanceState is the
per-instance resume record under ``state/``. SessionMetadata is the snapshot in
``session_metadata.json`` that restore and ``swarmrun ps`` read back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


def now_iso() -> str:
    """Local time with its UTC offset."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


class EventLogEntry(BaseModel):
    """One append-only event, tagged with the instance that produced it."""

    instance: Optional[str] = None
    instance_id: Optional[str] = None
    calling_instance: Optional[str] = None
    calling_instance_id: Optional[str] = None
    timestamp: str = Field(default_factory=now_iso)
    event: dict[str, Any] = Field(default_factory=dict)

    @property
    def event_type(self) -> str:
        return str(self.event.get("type", ""))


class InstanceState(BaseModel):
    """Latest resumable conversation id for one instance. Last writer wins."""

    instance_name: str
    instance_id: str
    resumable_session_id: Optional[str] = None
    status: str = "active"
    updated_at: str = Field(default_factory=now_iso)


class WorktreeInfo(BaseModel):
    enabled: bool = False
    shared_name: Optional[str] = None
    created_paths: dict[str, str] = Field(default_factory=dict)


class SessionMetadata(BaseModel):
    """Session-level attributes written at start and completed at exit."""

    root_directory: str
    timestamp: str = Field(default_factory=now_iso)
    start_time: str = Field(default_factory=now_iso)
    end_time: Optional[str] = None
    duration_seconds: Optional[float] = None
    swarm_name: str = ""
    version: str = ""
    worktree: Optional[WorktreeInfo] = None
