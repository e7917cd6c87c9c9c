"""Command line for the lead agent process."""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Optional, Sequence

from swarmrun.config import InstanceConfig

STREAM_FLAGS = ("--output-format", "stream-json", "--verbose")


def build_main_command(
    instance: InstanceConfig,
    descriptor_path: Path,
    agent_command: str = "claude",
    resume_id: Optional[str] = None,
    vibe: bool = False,
    debug: bool = False,
    prompt: Optional[str] = None,
    interactive_prompt: Optional[str] = None,
    settings_path: Optional[Path] = None,
) -> list[str]:
    """Assemble the lead's command.

    ``prompt`` selects a non-interactive run (``-p``, streamed as JSON);
    ``interactive_prompt`` seeds an interactive session; with neither the
    agent simply starts interactively.
    """
    parts = [agent_command]

    if not os.environ.get("ANTHROPIC_MODEL"):
        parts += ["--model", instance.model]

    if resume_id:
        parts += ["--resume", resume_id]

    if vibe or instance.vibe:
        parts.append("--dangerously-skip-permissions")
    else:
        allowed = list(instance.allowed_tools) + [f"mcp__{c}" for c in instance.connections]
        if allowed:
            parts += ["--allowedTools", ",".join(allowed)]
        if instance.disallowed_tools:
            parts += ["--disallowedTools", ",".join(instance.disallowed_tools)]

    if instance.prompt:
        parts += ["--append-system-prompt", instance.prompt]

    if debug:
        parts.append("--debug")

    for directory in instance.additional_directories:
        parts += ["--add-dir", str(directory)]

    parts += ["--mcp-config", str(descriptor_path)]

    if settings_path is not None and settings_path.exists():
        parts += ["--settings", str(settings_path)]

    if prompt is not None:
        parts += list(STREAM_FLAGS)
        parts += ["-p", prompt]
    elif interactive_prompt:
        parts.append(interactive_prompt)
    return parts


def format_command_for_display(command: Sequence[str]) -> str:
    return shlex.join(command)
