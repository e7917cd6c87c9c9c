"""
Shared fixtures for the swarmrun test suite.

Every test runs against a private SWARMRUN_HOME under tmp_path. Agent
processes are played by a small Python script (``fake_agent``) that speaks
the same line-delimited JSON protocol as the real agent CLI; its behaviour
is steered with FAKE_AGENT_* environment variables.
"""

from __future__ import annotations

import os
import stat
import sys
import textwrap
import time
from pathlib import Path
from typing import Callable, Optional

import pytest
import yaml

from swarmrun.config import SwarmrunSettings
from swarmrun.main import configure_logging
from swarmrun.session.store import SessionStore


FAKE_AGENT_SOURCE = textwrap.dedent(
    '''
    import json
    import os
    import sys
    import time

    args = sys.argv[1:]
    args_log = os.environ.get("FAKE_AGENT_ARGS")
    if args_log:
        with open(args_log, "a", encoding="utf-8") as f:
            f.write(json.dumps(args) + "\\n")

    mode = os.environ.get("FAKE_AGENT_MODE", "ok")
    session_id = os.environ.get("FAKE_AGENT_SESSION", "sess-123")


    def emit(obj):
        print(json.dumps(obj), flush=True)


    if "-p" not in args:
        # Interactive run: optionally publish a transcript the way the start hook would.
        transcript = os.environ.get("FAKE_AGENT_TRANSCRIPT")
        session_path = os.environ.get("SWARMRUN_SESSION_PATH")
        if transcript and session_path:
            with open(transcript, "w", encoding="utf-8") as f:
                f.write(json.dumps({"type": "user", "sessionId": session_id,
                                    "message": {"role": "user", "content": "hi"}}) + "\\n")
                f.write(json.dumps({"type": "assistant", "sessionId": session_id,
                                    "message": {"role": "assistant", "model": "claude-opus-4-1",
                                                "usage": {"input_tokens": 1000000}}}) + "\\n")
            with open(os.path.join(session_path, "main_instance_transcript.path"), "w") as f:
                f.write(transcript)
            time.sleep(0.5)
        sys.exit(int(os.environ.get("FAKE_AGENT_EXIT", "0")))

    if mode == "crash":
        sys.stderr.write("boom\\n")
        sys.exit(3)

    if mode == "noisy":
        sys.stdout.buffer.write(b"\\xff\\xfe garbage\\n")
        sys.stdout.buffer.flush()
        sys.stderr.buffer.write(b"\\xff\\n" + b"x" * 300000 + b"\\n")
        sys.stderr.buffer.flush()

    emit({"type": "system", "subtype": "init", "session_id": session_id})
    print("this line is not json", flush=True)
    emit({"type": "assistant", "message": {"role": "assistant",
                                           "content": [{"type": "text", "text": "working"}]}})
    if mode == "no_result":
        sys.exit(0)

    text = "" if mode == "empty" else "done: " + args[-1]
    emit({
        "type": "result",
        "subtype": "success",
        "result": text,
        "total_cost_usd": float(os.environ.get("FAKE_AGENT_COST", "0.25")),
        "duration_ms": 12,
        "session_id": session_id,
        "is_error": False,
    })
    '''
)


@pytest.fixture(autouse=True, scope="session")
def _configure_logging():
    configure_logging()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point SWARMRUN_HOME at a temp dir and clear variables that leak between runs."""
    home = tmp_path / "home"
    monkeypatch.setenv("SWARMRUN_HOME", str(home))
    for name in (
        "SWARMRUN_SESSION_PATH",
        "SWARMRUN_ROOT_DIR",
        "SWARMRUN_PROMPT",
        "SWARMRUN_AGENT_COMMAND",
        "ANTHROPIC_MODEL",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("FAKE_AGENT_"):
            monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def store(tmp_path: Path, project_dir: Path) -> SessionStore:
    """A fresh session for ``project_dir``."""
    return SessionStore.create(project_dir, home=tmp_path / "home")


@pytest.fixture()
def fake_agent(tmp_path: Path) -> str:
    """Path to an executable script that behaves like the agent CLI."""
    script = tmp_path / "fake-agent"
    script.write_text(f"#!{sys.executable}\n{FAKE_AGENT_SOURCE}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture()
def settings(tmp_path: Path, project_dir: Path, fake_agent: str) -> SwarmrunSettings:
    return SwarmrunSettings(
        home=tmp_path / "home",
        root_dir=project_dir,
        agent_command=fake_agent,
        cleanup_grace_seconds=0.2,
        poll_interval=0.01,
    )


@pytest.fixture()
def swarm_yaml(tmp_path: Path, project_dir: Path) -> Callable[..., Path]:
    """Write a two-instance swarm config (lead -> backend) and return its path."""

    def _write(lead: Optional[dict] = None, **swarm_fields) -> Path:
        (project_dir / "api").mkdir(exist_ok=True)
        lead_config = {
            "description": "Leads the work",
            "directory": ".",
            "connections": ["backend"],
            "allowed_tools": ["Read", "Edit"],
        }
        lead_config.update(lead or {})
        swarm = {
            "name": "Dev team",
            "main": "lead",
            "instances": {
                "lead": lead_config,
                "backend": {
                    "description": "Owns the API",
                    "directory": "./api",
                    "model": "haiku",
                },
            },
        }
        swarm.update(swarm_fields)
        path = tmp_path / "swarm.yml"
        path.write_text(yaml.safe_dump({"swarm": swarm}), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout passes."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait
