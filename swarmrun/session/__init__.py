"""Session storage: directory layout, persisted models and the store itself."""

from swarmrun.session.models import (
    EventLogEntry,
    InstanceState,
    SessionMetadata,
    WorktreeInfo,
)
from swarmrun.session.paths import generate_session_id, project_folder_name
from swarmrun.session.store import SessionStore

__all__ = [
    "EventLogEntry",
    "InstanceState",
    "SessionMetadata",
    "SessionStore",
    "WorktreeInfo",
    "generate_session_id",
    "project_folder_name",
]
