"""The cost command: replay a session log into a cost report."""

from __future__ import annotations

import json as json_mod
from pathlib import Path

import click

from swarmrun.cli.formatters import build_table, format_usd, get_console


@click.command("cost")
@click.argument("session_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--tree", is_flag=True, help="Show per-instance costs and call relationships")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def cost_cmd(ctx: click.Context, session_path: Path, tree: bool, json_output: bool) -> None:
    """Show what the session at SESSION_PATH cost."""
    from swarmrun.costs import calculate_total_cost, parse_instance_hierarchy
    from swarmrun.session import paths

    log_path = session_path / paths.EVENT_LOG
    summary = calculate_total_cost(log_path)
    nodes = parse_instance_hierarchy(log_path) if tree else {}

    if json_output:
        payload = {
            "total_cost": summary.total_cost,
            "instances_with_cost": sorted(summary.instances_with_cost),
        }
        if tree:
            payload["instances"] = {
                name: {
                    "id": node.id,
                    "cost": node.cost,
                    "calls": node.calls,
                    "called_by": sorted(node.called_by),
                    "calls_to": sorted(node.calls_to),
                    "has_cost_data": node.has_cost_data,
                }
                for name, node in nodes.items()
            }
        click.echo(json_mod.dumps(payload, indent=2))
        return

    console = get_console(no_color=(ctx.obj or {}).get("no_color", False))
    if tree:
        rows = [
            [
                name,
                format_usd(node.cost) if node.has_cost_data else "-",
                node.calls,
                ", ".join(sorted(node.called_by)) or "-",
                ", ".join(sorted(node.calls_to)) or "-",
            ]
            for name, node in sorted(nodes.items(), key=lambda item: -item[1].cost)
        ]
        console.print(
            build_table("Instances", ["Instance", "Cost", "Calls", "Called by", "Calls to"], rows)
        )
    console.print(f"[bold]Total Cost:[/bold] {format_usd(summary.total_cost)}")
