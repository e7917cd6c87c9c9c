"""The ps command: list the swarms that are running right now."""

from __future__ import annotations

import json as json_mod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click
import structlog
import yaml

from swarmrun.cli.formatters import build_table, format_duration, format_usd, get_console, truncate

logger = structlog.get_logger(__name__)


def _swarm_section(config_copy: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(config_copy.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.debug("ps.config_unreadable", path=str(config_copy), error=str(e))
        return {}
    swarm = data.get("swarm") if isinstance(data, dict) else None
    return swarm if isinstance(swarm, dict) else {}


def _main_directory(swarm: dict[str, Any], fallback: str) -> str:
    main = (swarm.get("instances") or {}).get(swarm.get("main")) or {}
    directory = main.get("directory") if isinstance(main, dict) else None
    if isinstance(directory, list):
        directory = directory[0] if directory else None
    return str(directory) if directory else fallback


def _uptime_seconds(start_time: Optional[str]) -> Optional[float]:
    if not start_time:
        return None
    try:
        started = datetime.fromisoformat(start_time)
    except ValueError:
        return None
    now = datetime.now(started.tzinfo) if started.tzinfo else datetime.now()
    return max(0.0, (now - started).total_seconds())


def collect_sessions(run_dir: Path) -> list[dict[str, Any]]:
    """Describe every live session linked from ``run_dir``. Stale links are skipped."""
    from swarmrun.costs import calculate_total_cost
    from swarmrun.session.store import SessionStore

    if not run_dir.is_dir():
        return []
    sessions: list[dict[str, Any]] = []
    for link in sorted(run_dir.iterdir()):
        if not link.is_symlink():
            continue
        target = link.resolve()
        if not target.is_dir():
            logger.debug("ps.stale_link", link=str(link))
            continue
        store = SessionStore(target, run_dir=run_dir)
        metadata = store.read_metadata()
        swarm = _swarm_section(store.path_for("config"))
        costs = calculate_total_cost(store.path_for("event_log"))
        main_name = swarm.get("main")
        root = metadata.root_directory if metadata else ""
        sessions.append(
            {
                "session_id": link.name,
                "swarm": (metadata.swarm_name if metadata else None) or swarm.get("name") or "?",
                "cost": costs.total_cost,
                "main_has_cost": main_name in costs.instances_with_cost,
                "uptime_seconds": _uptime_seconds(metadata.start_time if metadata else None),
                "directory": _main_directory(swarm, root),
                "path": str(target),
            }
        )
    return sessions


@click.command("ps")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def ps_cmd(ctx: click.Context, json_output: bool) -> None:
    """List active swarm sessions."""
    from swarmrun.config import SwarmrunSettings

    sessions = collect_sessions(SwarmrunSettings().run_dir)
    if json_output:
        click.echo(json_mod.dumps(sessions, indent=2))
        return

    console = get_console(no_color=(ctx.obj or {}).get("no_color", False))
    if not sessions:
        console.print("No active sessions")
        return

    rows = []
    for session in sessions:
        cost = format_usd(session["cost"])
        if not session["main_has_cost"]:
            cost += "*"
        uptime = session["uptime_seconds"]
        rows.append(
            [
                session["session_id"],
                truncate(session["swarm"], 30),
                cost,
                format_duration(uptime) if uptime is not None else "?",
                truncate(session["directory"], 50),
            ]
        )
    console.print(build_table("Active Swarms", ["Session", "Swarm", "Cost", "Uptime", "Directory"], rows))
    if any(not s["main_has_cost"] for s in sessions):
        console.print("* cost excludes the main instance")
