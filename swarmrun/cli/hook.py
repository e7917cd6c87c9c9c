"""Agent hooks invoked by the lead agent itself."""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path

import click


@click.group("hook")
def hook_group() -> None:
    """Hooks the lead agent calls back into."""


@click.command("session-start")
@click.argument("session_path", type=click.Path(file_okay=False, path_type=Path))
def session_start_cmd(session_path: Path) -> None:
    """Record the lead's transcript path from the hook payload on stdin."""
    from swarmrun.session import paths
    from swarmrun.session.store import atomic_write_text

    try:
        payload = json_mod.loads(sys.stdin.read() or "{}")
    except json_mod.JSONDecodeError as e:
        click.echo(json_mod.dumps({"success": False, "error": f"Failed to parse input: {e}"}))
        sys.exit(1)

    transcript = payload.get("transcript_path") if isinstance(payload, dict) else None
    if not transcript:
        click.echo(json_mod.dumps({"success": False, "error": "Missing transcript path"}))
        sys.exit(1)

    atomic_write_text(session_path / paths.TRANSCRIPT_MARKER, str(transcript))
    click.echo(json_mod.dumps({"success": True}))


hook_group.add_command(session_start_cmd)
