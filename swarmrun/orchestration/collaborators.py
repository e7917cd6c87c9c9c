"""
Seams for the collaborators the orchestrator drives but does not own.

A DescriptorGenerator writes the per-instance RPC descriptor files the lead
agent uses to reach its connections. A WorktreeProvisioner moves instances
into isolated git worktrees. swarmrun ships a JSON descriptor generator and
no worktree provisioner; the orchestrator runs fine without one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

from swarmrun.config import InstanceConfig


@runtime_checkable
class DescriptorGenerator(Protocol):
    def generate_all(
        self, instances: Mapping[str, InstanceConfig], restore: bool = False
    ) -> None:
        """Write one descriptor per instance, reusing persisted ids on restore."""

    def descriptor_path(self, name: str) -> Path:
        ...

    def instance_id(self, name: str) -> Optional[str]:
        ...


@runtime_checkable
class WorktreeProvisioner(Protocol):
    def setup(self, instances: Mapping[str, InstanceConfig]) -> dict[str, InstanceConfig]:
        """Create (or re-attach) worktrees and return instances pointing into them."""

    def cleanup(self) -> None:
        ...

    def session_metadata(self) -> dict[str, Any]:
        """Shape of WorktreeInfo: ``enabled``, ``shared_name``, ``created_paths``."""


# (shared_name, session_id) -> provisioner
WorktreeProvisionerFactory = Callable[[Optional[str], str], WorktreeProvisioner]
