"""The start command: launch (or restore) a swarm."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from swarmrun.cli.formatters import get_console


def exit_status(returncode: int) -> int:
    """Map a child's return code onto a shell exit status."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


@click.command("start")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-p", "--prompt", default=None, help="Run non-interactively with this prompt")
@click.option(
    "-i", "--interactive", "interactive_prompt", default=None,
    help="Start interactively with this initial prompt",
)
@click.option("--stream-logs", is_flag=True, help="Mirror session.log to the console (-p only)")
@click.option("--debug", is_flag=True, help="Run the lead agent with --debug")
@click.option("--vibe", is_flag=True, help="Skip all permission checks for every instance")
@click.option("--session-id", default=None, help="Use this session id instead of a generated one")
@click.option(
    "--restore", "restore_path", default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Resume the session stored at this path",
)
@click.pass_context
def start_cmd(
    ctx: click.Context,
    config_file: Path,
    prompt: Optional[str],
    interactive_prompt: Optional[str],
    stream_logs: bool,
    debug: bool,
    vibe: bool,
    session_id: Optional[str],
    restore_path: Optional[Path],
) -> None:
    """Launch the swarm described by CONFIG_FILE."""
    from swarmrun.config import SwarmrunSettings, load_swarm_config
    from swarmrun.errors import ConfigurationError, LifecycleCommandError, SessionNotFoundError
    from swarmrun.orchestration.orchestrator import Orchestrator
    from swarmrun.session.store import SessionStore

    if prompt is not None and interactive_prompt is not None:
        raise click.UsageError("-p and -i are mutually exclusive")
    if stream_logs and prompt is None:
        raise click.UsageError("--stream-logs can only be used with -p")
    if restore_path is not None and session_id is not None:
        raise click.UsageError("--session-id cannot be combined with --restore")

    obj = ctx.obj or {}
    console = get_console(no_color=obj.get("no_color", False))
    try:
        settings = SwarmrunSettings()
        base_dir = settings.resolved_root_dir()
        if restore_path is not None:
            metadata = SessionStore.open(restore_path, run_dir=settings.run_dir).read_metadata()
            if metadata is not None:
                base_dir = Path(metadata.root_directory)
        config = load_swarm_config(config_file, base_dir=base_dir)
    except (ConfigurationError, SessionNotFoundError) as e:
        raise click.ClickException(str(e)) from e
    except ValueError as e:
        raise click.ClickException(f"Invalid settings: {e}") from e

    orchestrator = Orchestrator(
        config,
        settings,
        prompt=prompt,
        interactive_prompt=interactive_prompt,
        stream_logs=stream_logs,
        debug=debug,
        vibe=vibe,
        session_id=session_id,
        restore_path=restore_path,
        console=console,
    )
    try:
        returncode = orchestrator.run()
    except LifecycleCommandError:
        ctx.exit(1)
    except (ConfigurationError, SessionNotFoundError) as e:
        raise click.ClickException(str(e)) from e
    ctx.exit(exit_status(returncode))
