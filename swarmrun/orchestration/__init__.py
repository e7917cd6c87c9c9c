"""Orchestration: launching the lead agent and supervising a whole swarm run."""

from swarmrun.orchestration.collaborators import DescriptorGenerator, WorktreeProvisioner
from swarmrun.orchestration.command import build_main_command
from swarmrun.orchestration.descriptors import JsonDescriptorGenerator, generate_settings
from swarmrun.orchestration.orchestrator import Orchestrator, OrchestratorState, RunSummary

__all__ = [
    "DescriptorGenerator",
    "JsonDescriptorGenerator",
    "Orchestrator",
    "OrchestratorState",
    "RunSummary",
    "WorktreeProvisioner",
    "build_main_command",
    "generate_settings",
]
