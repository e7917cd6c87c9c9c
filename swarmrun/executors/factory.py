"""Build the right executor for an instance's configured backend."""

from __future__ import annotations

from typing import Any, Optional

import structlog

from swarmrun.config import ApiConfig, InstanceConfig, SwarmrunSettings
from swarmrun.errors import ConfigurationError
from swarmrun.executors.api import ApiExecutor
from swarmrun.executors.base import BaseExecutor
from swarmrun.executors.process import ProcessExecutor
from swarmrun.process_tracker import ProcessTracker
from swarmrun.session.store import SessionStore

logger = structlog.get_logger(__name__)


def create_executor(
    instance: InstanceConfig,
    store: SessionStore,
    instance_id: Optional[str] = None,
    calling_instance: Optional[str] = None,
    calling_instance_id: Optional[str] = None,
    resumable_session_id: Optional[str] = None,
    settings: Optional[SwarmrunSettings] = None,
    api_config: Optional[ApiConfig] = None,
    tracker: Optional[ProcessTracker] = None,
    client: Any = None,
) -> BaseExecutor:
    """Select ``ProcessExecutor`` for ``cli`` instances and ``ApiExecutor`` for ``api``.

    When no resumable id is given, the one persisted for ``instance_id`` is
    used; a missing state file simply means a fresh conversation.
    """
    if resumable_session_id is None and instance_id:
        state = store.read_state(instance_id)
        if state is not None:
            resumable_session_id = state.resumable_session_id

    common = dict(
        instance_id=instance_id,
        calling_instance=calling_instance,
        calling_instance_id=calling_instance_id,
        working_directory=instance.directory,
        resumable_session_id=resumable_session_id,
        model=instance.model,
    )
    logger.debug(
        "executor.create",
        instance=instance.name,
        backend=instance.backend,
        resuming=resumable_session_id is not None,
    )

    if instance.backend == "cli":
        settings = settings or SwarmrunSettings()
        return ProcessExecutor(
            store,
            instance.name,
            vibe=instance.vibe,
            additional_directories=instance.additional_directories,
            mcp_config=store.path_for(f"descriptor:{instance.name}"),
            agent_command=settings.agent_command,
            tracker=tracker,
            **common,
        )
    if instance.backend == "api":
        return ApiExecutor(store, instance.name, api_config=api_config, client=client, **common)
    raise ConfigurationError(f"Unknown backend '{instance.backend}' for instance '{instance.name}'")


def task_options(instance: InstanceConfig) -> dict[str, Any]:
    """Per-invocation options an instance's configuration implies."""
    return {
        "system_prompt": instance.prompt,
        "allowed_tools": list(instance.allowed_tools),
        "disallowed_tools": list(instance.disallowed_tools),
        "connections": list(instance.connections),
    }
