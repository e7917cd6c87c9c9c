"""CLI application: Click-based command hierarchy for swarmrun.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import click

from swarmrun import __version__


@click.group()
@click.option("--debug", is_flag=True, help="Verbose structured logging on stderr")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.version_option(__version__, prog_name="swarmrun")
@click.pass_context
def cli(ctx: click.Context, debug: bool, no_color: bool) -> None:
    """swarmrun - launch, supervise and account for agent swarms."""
    from swarmrun.main import configure_logging

    configure_logging(debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["no_color"] = no_color


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommands."""
    from swarmrun.cli.cost import cost_cmd
    from swarmrun.cli.exec_cmd import exec_cmd
    from swarmrun.cli.hook import hook_group
    from swarmrun.cli.ps import ps_cmd
    from swarmrun.cli.start import start_cmd

    cli.add_command(start_cmd)
    cli.add_command(ps_cmd)
    cli.add_command(cost_cmd)
    cli.add_command(exec_cmd)
    cli.add_command(hook_group)


_register_subcommands()
