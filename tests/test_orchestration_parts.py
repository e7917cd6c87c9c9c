"""
Tests for the pieces the orchestrator assembles: the lead's command line,
descriptor and settings files, and lifecycle commands.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from swarmrun.config import InstanceConfig, SwarmrunSettings, load_swarm_config
from swarmrun.errors import LifecycleCommandError
from swarmrun.orchestration.command import build_main_command, format_command_for_display
from swarmrun.orchestration.descriptors import JsonDescriptorGenerator, generate_settings
from swarmrun.orchestration.lifecycle import run_after_commands, run_before_commands
from swarmrun.session.models import InstanceState
from swarmrun.session.store import SessionStore


@pytest.fixture()
def config(swarm_yaml, project_dir: Path):
    return load_swarm_config(swarm_yaml(), base_dir=project_dir)


# ---------------------------------------------------------------------------
# Lead command
# ---------------------------------------------------------------------------

class TestMainCommand:
    def test_interactive(self, tmp_path: Path):
        lead = InstanceConfig(
            name="lead",
            model="opus",
            directories=[tmp_path, tmp_path / "docs"],
            allowed_tools=["Read"],
            disallowed_tools=["Bash"],
            connections=["backend"],
            prompt="You lead.",
        )
        cmd = build_main_command(lead, tmp_path / "lead.mcp.json", interactive_prompt="start here")
        assert cmd == [
            "claude",
            "--model", "opus",
            "--allowedTools", "Read,mcp__backend",
            "--disallowedTools", "Bash",
            "--append-system-prompt", "You lead.",
            "--add-dir", str(tmp_path / "docs"),
            "--mcp-config", str(tmp_path / "lead.mcp.json"),
            "start here",
        ]

    def test_non_interactive_streams_json(self, tmp_path: Path):
        lead = InstanceConfig(name="lead")
        cmd = build_main_command(lead, tmp_path / "d.json", prompt="do it", debug=True, resume_id="s1")
        assert cmd[cmd.index("--resume") + 1] == "s1"
        assert "--debug" in cmd
        assert cmd[-5:] == ["--output-format", "stream-json", "--verbose", "-p", "do it"]

    def test_vibe_replaces_tool_lists(self, tmp_path: Path):
        lead = InstanceConfig(name="lead", allowed_tools=["Read"], connections=["x"])
        cmd = build_main_command(lead, tmp_path / "d.json", vibe=True)
        assert "--dangerously-skip-permissions" in cmd
        assert "--allowedTools" not in cmd

    def test_model_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ANTHROPIC_MODEL", "claude-opus-4-1")
        assert "--model" not in build_main_command(InstanceConfig(name="lead"), tmp_path / "d.json")

    def test_settings_only_when_present(self, tmp_path: Path):
        settings = tmp_path / "lead_settings.json"
        lead = InstanceConfig(name="lead")
        assert "--settings" not in build_main_command(lead, tmp_path / "d.json", settings_path=settings)
        settings.write_text("{}")
        cmd = build_main_command(lead, tmp_path / "d.json", settings_path=settings)
        assert cmd[cmd.index("--settings") + 1] == str(settings)

    def test_display_quotes(self):
        assert format_command_for_display(["claude", "-p", "two words"]) == "claude -p 'two words'"


# ---------------------------------------------------------------------------
# Descriptors and settings
# ---------------------------------------------------------------------------

class TestDescriptors:
    def test_generate(self, config, store: SessionStore):
        generator = JsonDescriptorGenerator(config, store, rpc_command="swarmrun-rpc")
        generator.generate_all(config.instances)

        lead = json.loads(generator.descriptor_path("lead").read_text())
        assert lead["instance_name"] == "lead"
        assert lead["instance_id"] == generator.instance_id("lead")
        assert lead["instance_id"].startswith("lead_")
        server = lead["mcpServers"]["backend"]
        assert server["type"] == "stdio"
        assert server["command"] == "swarmrun-rpc"
        assert server["env"] == {"SWARMRUN_SESSION_PATH": str(store.path)}
        args = server["args"]
        assert args[:3] == ["serve", "--name", "backend"]
        assert args[args.index("--instance-id") + 1] == generator.instance_id("backend")
        assert args[args.index("--calling-instance") + 1] == "lead"
        assert args[args.index("--calling-instance-id") + 1] == generator.instance_id("lead")
        assert args[args.index("--description") + 1] == "Owns the API"
        assert "--resume" not in args

        backend = json.loads(generator.descriptor_path("backend").read_text())
        assert backend["mcpServers"] == {}

    def test_rpc_command_override(self, config, store: SessionStore, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SWARMRUN_RPC_COMMAND", "/opt/rpc/bin/swarm-rpc")
        settings = SwarmrunSettings()
        generator = JsonDescriptorGenerator(config, store, rpc_command=settings.rpc_command)
        generator.generate_all(config.instances)
        lead = json.loads(generator.descriptor_path("lead").read_text())
        assert lead["mcpServers"]["backend"]["command"] == "/opt/rpc/bin/swarm-rpc"

    def test_restore_reuses_ids(self, config, store: SessionStore):
        store.write_state(
            "backend_cafe",
            InstanceState(instance_name="backend", instance_id="backend_cafe", resumable_session_id="r1"),
        )
        generator = JsonDescriptorGenerator(config, store, vibe=True)
        generator.generate_all(config.instances, restore=True)
        assert generator.instance_id("backend") == "backend_cafe"
        assert generator.resumable_id("backend") == "r1"
        args = json.loads(generator.descriptor_path("lead").read_text())["mcpServers"]["backend"]["args"]
        assert args[args.index("--resume") + 1] == "r1"
        assert "--vibe" in args

    def test_configured_mcp_servers(self, swarm_yaml, project_dir: Path, store: SessionStore):
        path = swarm_yaml(
            lead={
                "mcps": [
                    {"name": "files", "type": "stdio", "command": "fs-server", "args": ["--ro"]},
                    {"name": "web", "type": "sse", "url": "http://localhost:9000"},
                    {"name": "odd", "type": "carrier-pigeon"},
                ]
            }
        )
        config = load_swarm_config(path, base_dir=project_dir)
        generator = JsonDescriptorGenerator(config, store)
        generator.generate_all(config.instances)
        servers = json.loads(generator.descriptor_path("lead").read_text())["mcpServers"]
        assert servers["files"] == {"type": "stdio", "command": "fs-server", "args": ["--ro"]}
        assert servers["web"] == {"type": "sse", "url": "http://localhost:9000"}
        assert "odd" not in servers

    def test_settings_for_main_always(self, config, store: SessionStore):
        written = generate_settings(config, store, hook_command="swarmrun hook session-start")
        assert written == [store.path_for("settings:lead")]
        hooks = json.loads(written[0].read_text())["hooks"]["SessionStart"]
        command = hooks[0]["hooks"][0]["command"]
        assert hooks[0]["matcher"] == "startup"
        assert command == f"swarmrun hook session-start {store.path}"

    def test_instance_hooks_are_kept(self, swarm_yaml, project_dir: Path, store: SessionStore):
        user_hook = {"PreToolUse": [{"matcher": "Bash", "hooks": [{"type": "command", "command": "audit"}]}]}
        config = load_swarm_config(swarm_yaml(lead={"hooks": user_hook}), base_dir=project_dir)
        generate_settings(config, store)
        hooks = json.loads(store.path_for("settings:lead").read_text())["hooks"]
        assert hooks["PreToolUse"] == user_hook["PreToolUse"]
        assert "SessionStart" in hooks
        assert not store.path_for("settings:backend").exists()


# ---------------------------------------------------------------------------
# Lifecycle commands
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_before_stops_at_first_failure(self, tmp_path: Path):
        with pytest.raises(LifecycleCommandError) as excinfo:
            run_before_commands(["touch one", "exit 4", "touch two"], cwd=tmp_path)
        assert (tmp_path / "one").exists()
        assert not (tmp_path / "two").exists()
        outcomes = excinfo.value.outcomes
        assert [o.returncode for o in outcomes] == [0, 4]

    def test_before_success(self, tmp_path: Path):
        outcomes = run_before_commands(["echo hi", "echo there >&2"], cwd=tmp_path)
        assert all(o.ok for o in outcomes)
        assert outcomes[0].output.strip() == "hi"
        assert outcomes[1].output.strip() == "there"

    def test_after_runs_everything(self, tmp_path: Path):
        outcomes = run_after_commands(["exit 1", "touch done"], cwd=tmp_path)
        assert [o.ok for o in outcomes] == [False, True]
        assert (tmp_path / "done").exists()

    def test_env_is_passed(self, tmp_path: Path):
        outcomes = run_before_commands(
            ['echo "$SWARMRUN_SESSION_PATH"'], cwd=tmp_path, env={"SWARMRUN_SESSION_PATH": "/s", "PATH": "/usr/bin:/bin"}
        )
        assert outcomes[0].output.strip() == "/s"

    def test_output_goes_to_human_log(self, store: SessionStore, tmp_path: Path):
        run_after_commands(["echo logged-output"], cwd=tmp_path, human_log=store.human_logger())
        store.close_human_log()
        text = store.path_for("human_log").read_text()
        assert "Executing after command 1/1: echo logged-output" in text
        assert "logged-output" in text
        assert "Exit status: 0" in text
