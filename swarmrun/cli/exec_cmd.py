"""The exec command: one delegated task against one instance.

This is what an RPC server runs when another instance calls a connection. The
session comes from ``SWARMRUN_SESSION_PATH``; the answer, or an ``Error: ...``
line, is printed to stdout.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click


@click.command("exec")
@click.argument("instance_name")
@click.argument("prompt")
@click.option(
    "--config", "config_file", required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Swarm configuration file",
)
@click.option("--new-session", is_flag=True, help="Drop the resumable conversation first")
@click.option("--instance-id", default=None)
@click.option("--calling-instance", default=None)
@click.option("--calling-instance-id", default=None)
@click.option("--resume", "resume_id", default=None, help="Resume this conversation id")
def exec_cmd(
    instance_name: str,
    prompt: str,
    config_file: Path,
    new_session: bool,
    instance_id: Optional[str],
    calling_instance: Optional[str],
    calling_instance_id: Optional[str],
    resume_id: Optional[str],
) -> None:
    """Run PROMPT on INSTANCE_NAME and print the answer."""
    from swarmrun.config import SwarmrunSettings, load_swarm_config, session_path_from_env
    from swarmrun.errors import ConfigurationError, SessionNotFoundError
    from swarmrun.executors.factory import create_executor, task_options
    from swarmrun.executors.task import run_task
    from swarmrun.process_tracker import ProcessTracker
    from swarmrun.session.store import SessionStore

    try:
        settings = SwarmrunSettings()
        store = SessionStore.open(session_path_from_env(), run_dir=settings.run_dir)
        metadata = store.read_metadata()
        base_dir = Path(metadata.root_directory) if metadata else settings.resolved_root_dir()
        config = load_swarm_config(config_file, base_dir=base_dir)
        instance = config.instances.get(instance_name)
        if instance is None:
            raise ConfigurationError(f"Unknown instance '{instance_name}'")
        executor = create_executor(
            instance,
            store,
            instance_id=instance_id,
            calling_instance=calling_instance,
            calling_instance_id=calling_instance_id,
            resumable_session_id=resume_id,
            settings=settings,
            tracker=ProcessTracker(store.path),
        )
    except (ConfigurationError, SessionNotFoundError) as e:
        raise click.ClickException(str(e)) from e

    options = task_options(instance)
    system_prompt = options.pop("system_prompt", None)
    answer = run_task(executor, prompt, new_session=new_session, system_prompt=system_prompt, **options)
    click.echo(answer)
    if answer.startswith("Error: "):
        raise SystemExit(1)
