"""
Tests for swarmrun.config: runtime settings and the swarm topology file.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from swarmrun.config import (
    ApiConfig,
    SwarmrunSettings,
    load_swarm_config,
    session_path_from_env,
)
from swarmrun.errors import ConfigurationError


class TestSettings:
    def test_home_from_env(self, isolated_env: Path):
        settings = SwarmrunSettings()
        assert settings.home == isolated_env.resolve()
        assert settings.run_dir == settings.home / "run"
        assert settings.sessions_dir == settings.home / "sessions"

    def test_root_dir_override(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.setenv("SWARMRUN_ROOT_DIR", str(tmp_path))
        assert SwarmrunSettings().resolved_root_dir() == tmp_path.resolve()

    def test_root_dir_defaults_to_cwd(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.chdir(tmp_path)
        assert SwarmrunSettings().resolved_root_dir() == tmp_path.resolve()

    def test_values_are_clamped(self):
        settings = SwarmrunSettings(cleanup_grace_seconds=-3, poll_interval=0)
        assert settings.cleanup_grace_seconds == 0.0
        assert settings.poll_interval == pytest.approx(0.01)

    def test_api_config_clamps(self):
        config = ApiConfig(retry_max_retries=-1, retry_jitter_range=4, retry_base_delay=2, retry_max_delay=1)
        assert config.retry_max_retries == 0
        assert config.retry_jitter_range == 1.0
        assert config.retry_max_delay == config.retry_base_delay

    def test_session_path_required(self):
        with pytest.raises(ConfigurationError, match="SWARMRUN_SESSION_PATH"):
            session_path_from_env()

    def test_session_path_from_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.setenv("SWARMRUN_SESSION_PATH", str(tmp_path))
        assert session_path_from_env() == tmp_path


class TestSwarmConfig:
    def test_loads_topology(self, swarm_yaml, project_dir: Path):
        config = load_swarm_config(swarm_yaml(before=["make deps"]), base_dir=project_dir)
        assert config.name == "Dev team"
        assert config.main == "lead"
        assert config.main_instance.connections == ["backend"]
        assert config.instances["backend"].directory == (project_dir / "api").resolve()
        assert config.instances["backend"].model == "haiku"
        assert config.before == ["make deps"]
        assert config.after == []
        assert config.config_path is not None and config.config_path.name == "swarm.yml"
        assert not config.wants_worktrees

    def test_directory_list(self, swarm_yaml, project_dir: Path):
        (project_dir / "docs").mkdir()
        path = swarm_yaml(lead={"directory": [".", "./docs"]})
        lead = load_swarm_config(path, base_dir=project_dir).main_instance
        assert lead.directory == project_dir.resolve()
        assert lead.additional_directories == [(project_dir / "docs").resolve()]

    def test_base_dir_defaults_to_config_dir(self, swarm_yaml, tmp_path: Path):
        config = load_swarm_config(swarm_yaml())
        assert config.main_instance.directory == tmp_path.resolve()

    def test_worktree_request(self, swarm_yaml, project_dir: Path):
        config = load_swarm_config(swarm_yaml(lead={"worktree": True}), base_dir=project_dir)
        assert config.wants_worktrees

    def test_unknown_main(self, swarm_yaml, project_dir: Path):
        with pytest.raises(ConfigurationError, match="main instance"):
            load_swarm_config(swarm_yaml(main="ghost"), base_dir=project_dir)

    def test_unknown_connection(self, swarm_yaml, project_dir: Path):
        with pytest.raises(ConfigurationError, match="unknown instance"):
            load_swarm_config(swarm_yaml(lead={"connections": ["ghost"]}), base_dir=project_dir)

    def test_missing_swarm_mapping(self, tmp_path: Path):
        path = tmp_path / "bad.yml"
        path.write_text("instances: {}\n")
        with pytest.raises(ConfigurationError, match="'swarm' mapping"):
            load_swarm_config(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yml"
        path.write_text("swarm: [unclosed\n")
        with pytest.raises(ConfigurationError, match="not valid YAML"):
            load_swarm_config(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_swarm_config(tmp_path / "nope.yml")

    def test_bad_backend(self, swarm_yaml, project_dir: Path):
        with pytest.raises(ConfigurationError):
            load_swarm_config(swarm_yaml(lead={"backend": "carrier-pigeon"}), base_dir=project_dir)
