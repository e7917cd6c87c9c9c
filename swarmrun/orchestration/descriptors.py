"""
Descriptor and settings files written into the session before launch.

``<instance>.mcp.json`` lists the tool servers an instance can reach: its own
configured MCP servers plus one stdio entry per connection, each running the
configured RPC command for the connected instance. ``<instance>_settings.json``
carries agent hooks; the lead additionally gets a start hook that records its
transcript path so the orchestrator can follow it.
"""

from __future__ import annotations

import json
import secrets
import shlex
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

from swarmrun.config import SESSION_PATH_ENV, InstanceConfig, SwarmConfig
from swarmrun.session.store import SessionStore, atomic_write_text

logger = structlog.get_logger(__name__)


def new_instance_id(name: str) -> str:
    return f"{name}_{secrets.token_hex(4)}"


class JsonDescriptorGenerator:
    """Default DescriptorGenerator: JSON files in the session directory.

    Connection entries run ``rpc_command serve ...``. That RPC server is a
    separate program and is not part of this package; ``swarmrun-rpc`` is
    only the default name looked up on PATH (``SWARMRUN_RPC_COMMAND``
    overrides it).
    """

    def __init__(
        self,
        config: SwarmConfig,
        store: SessionStore,
        rpc_command: str = "swarmrun-rpc",
        vibe: bool = False,
    ) -> None:
        self.config = config
        self.store = store
        self.rpc_command = rpc_command
        self.vibe = vibe
        self._instance_ids: dict[str, str] = {}
        self._resumable_ids: dict[str, str] = {}

    def descriptor_path(self, name: str) -> Path:
        return self.store.path_for(f"descriptor:{name}")

    def instance_id(self, name: str) -> Optional[str]:
        return self._instance_ids.get(name)

    def resumable_id(self, name: str) -> Optional[str]:
        return self._resumable_ids.get(name)

    def generate_all(
        self, instances: Mapping[str, InstanceConfig], restore: bool = False
    ) -> None:
        if restore:
            self._load_states(instances)
        for name in instances:
            self._instance_ids.setdefault(name, new_instance_id(name))
        for name, instance in instances.items():
            atomic_write_text(
                self.descriptor_path(name),
                json.dumps(self._descriptor(name, instance, instances), indent=2),
            )
        logger.info(
            "descriptors.generated",
            count=len(instances),
            restore=restore,
            resumed=len(self._resumable_ids),
        )

    def _load_states(self, instances: Mapping[str, InstanceConfig]) -> None:
        for state in self.store.read_states().values():
            if state.instance_name not in instances:
                continue
            self._instance_ids[state.instance_name] = state.instance_id
            if state.resumable_session_id:
                self._resumable_ids[state.instance_name] = state.resumable_session_id

    def _descriptor(
        self,
        name: str,
        instance: InstanceConfig,
        instances: Mapping[str, InstanceConfig],
    ) -> dict[str, Any]:
        servers: dict[str, Any] = {}
        for mcp in instance.mcps:
            server = self._mcp_server(mcp)
            if server is not None:
                servers[str(mcp["name"])] = server
        for connection in instance.connections:
            servers[connection] = self._connection_server(connection, instances[connection], name)
        return {
            "instance_id": self._instance_ids[name],
            "instance_name": name,
            "mcpServers": servers,
        }

    @staticmethod
    def _mcp_server(mcp: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        kind = mcp.get("type", "stdio")
        if kind == "stdio":
            server: dict[str, Any] = {
                "type": "stdio",
                "command": mcp.get("command"),
                "args": list(mcp.get("args") or []),
            }
            if mcp.get("env"):
                server["env"] = dict(mcp["env"])
            return server
        if kind in ("sse", "http"):
            return {"type": kind, "url": mcp.get("url")}
        logger.warning("descriptors.unsupported_mcp_type", name=mcp.get("name"), type=kind)
        return None

    def _connection_server(self, name: str, instance: InstanceConfig, caller: str) -> dict[str, Any]:
        args = [
            "serve",
            "--name", name,
            "--instance-id", self._instance_ids[name],
            "--calling-instance", caller,
            "--calling-instance-id", self._instance_ids[caller],
        ]
        if self.config.config_path is not None:
            args += ["--config", str(self.config.config_path)]
        if instance.description:
            args += ["--description", instance.description]
        if self.vibe or instance.vibe:
            args.append("--vibe")
        resumable = self._resumable_ids.get(name)
        if resumable:
            args += ["--resume", resumable]
        return {
            "type": "stdio",
            "command": self.rpc_command,
            "args": args,
            "env": {SESSION_PATH_ENV: str(self.store.path)},
        }


def generate_settings(
    config: SwarmConfig,
    store: SessionStore,
    instances: Optional[Mapping[str, InstanceConfig]] = None,
    hook_command: str = "swarmrun hook session-start",
) -> list[Path]:
    """Write ``<instance>_settings.json`` where an instance has hooks.

    The lead always gets a SessionStart hook that records its transcript path.
    """
    written: list[Path] = []
    for name, instance in (instances or config.instances).items():
        settings: dict[str, Any] = {}
        if instance.hooks:
            settings["hooks"] = json.loads(json.dumps(instance.hooks))
        if name == config.main:
            hooks = settings.setdefault("hooks", {})
            hooks.setdefault("SessionStart", []).append(
                {
                    "matcher": "startup",
                    "hooks": [
                        {
                            "type": "command",
                            "command": f"{hook_command} {shlex.quote(str(store.path))}",
                            "timeout": 5,
                        }
                    ],
                }
            )
        if not settings:
            continue
        target = store.path_for(f"settings:{name}")
        atomic_write_text(target, json.dumps(settings, indent=2))
        written.append(target)
    return written
