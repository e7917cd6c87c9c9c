# swarmrun/config.py
"""
Configuration for swarmrun.

Runtime settings come from the environment and are validated with
pydantic-settings. The swarm topology (which instances exist, how they are
connected, which commands run around the main process) is a YAML file loaded
into pydantic models. Anything that cannot be resolved here is a
ConfigurationError and is raised before a single process is spawned.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

import structlog
import yaml
from pydantic import BeforeValidator, Field, ValidationError, model_validator
from pydantic import BaseModel
from pydantic_settings import BaseSettings

from swarmrun.errors import ConfigurationError

logger = structlog.get_logger(__name__)

SESSION_PATH_ENV = "SWARMRUN_SESSION_PATH"
ROOT_DIR_ENV = "SWARMRUN_ROOT_DIR"
PROMPT_MODE_ENV = "SWARMRUN_PROMPT"


def _coerce_str_list(value: object) -> list[str]:
    """Accept a bare string, a comma-separated string or a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(value)]


StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class SwarmrunSettings(BaseSettings):
    """Process-wide runtime settings for the orchestrator and executors."""

    home: Path = Field(Path("~/.swarmrun"), alias="SWARMRUN_HOME")
    root_dir: Optional[Path] = Field(None, alias=ROOT_DIR_ENV)
    prompt_mode: bool = Field(False, alias=PROMPT_MODE_ENV)
    agent_command: str = Field("claude", alias="SWARMRUN_AGENT_COMMAND")
    rpc_command: str = Field("swarmrun-rpc", alias="SWARMRUN_RPC_COMMAND")
    cleanup_grace_seconds: float = Field(0.5, alias="SWARMRUN_CLEANUP_GRACE_SECONDS")
    poll_interval: float = Field(0.1, alias="SWARMRUN_POLL_INTERVAL")

    model_config = {"extra": "ignore", "populate_by_name": True, "env_ignore_empty": True}

    @model_validator(mode="after")
    def normalize(self) -> "SwarmrunSettings":
        self.home = self.home.expanduser().resolve()
        if self.root_dir is not None:
            self.root_dir = self.root_dir.expanduser().resolve()
        self.cleanup_grace_seconds = max(0.0, float(self.cleanup_grace_seconds))
        self.poll_interval = max(0.01, float(self.poll_interval))
        return self

    @property
    def sessions_dir(self) -> Path:
        return self.home / "sessions"

    @property
    def run_dir(self) -> Path:
        return self.home / "run"

    def resolved_root_dir(self) -> Path:
        """The swarm root: the override when set, otherwise the working directory."""
        return self.root_dir if self.root_dir is not None else Path.cwd().resolve()


class SessionEnvConfig(BaseSettings):
    """The session directory an executor writes into. Never defaulted."""

    session_path: Path = Field(..., alias=SESSION_PATH_ENV)

    model_config = {"extra": "ignore", "env_ignore_empty": True}


def session_path_from_env() -> Path:
    """Return the session path from the environment or raise ConfigurationError."""
    try:
        return SessionEnvConfig().session_path
    except ValidationError as exc:
        raise ConfigurationError(f"{SESSION_PATH_ENV} is not set") from exc


class ApiConfig(BaseSettings):
    """Transport settings for API-backed executors."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    request_timeout_seconds: float = Field(600.0, alias="SWARMRUN_API_TIMEOUT_SECONDS")
    max_tokens: int = Field(8192, alias="SWARMRUN_API_MAX_TOKENS")
    retry_max_retries: int = Field(3, alias="SWARMRUN_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, alias="SWARMRUN_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, alias="SWARMRUN_RETRY_MAX_DELAY")
    retry_exponential_base: float = Field(2.0, alias="SWARMRUN_RETRY_EXPONENTIAL_BASE")
    retry_jitter_range: float = Field(0.5, alias="SWARMRUN_RETRY_JITTER_RANGE")

    model_config = {"extra": "ignore", "populate_by_name": True, "env_ignore_empty": True}

    @model_validator(mode="after")
    def normalize_runtime_limits(self) -> "ApiConfig":
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.max_tokens = max(1, int(self.max_tokens))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.retry_base_delay = max(0.05, float(self.retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(self.retry_max_delay))
        self.retry_exponential_base = max(1.0, float(self.retry_exponential_base))
        self.retry_jitter_range = max(0.0, min(1.0, float(self.retry_jitter_range)))
        return self


# ---------------------------------------------------------------------------
# Swarm topology
# ---------------------------------------------------------------------------


class InstanceConfig(BaseModel):
    """One agent role in the swarm."""

    name: str
    description: str = ""
    backend: Literal["cli", "api"] = "cli"
    model: str = "sonnet"
    directories: list[Path] = Field(default_factory=lambda: [Path(".")])
    allowed_tools: StrList = Field(default_factory=list)
    disallowed_tools: StrList = Field(default_factory=list)
    connections: StrList = Field(default_factory=list)
    mcps: list[dict[str, Any]] = Field(default_factory=list)
    hooks: dict[str, Any] = Field(default_factory=dict)
    prompt: Optional[str] = None
    vibe: bool = False
    worktree: Union[bool, str, None] = None

    @property
    def directory(self) -> Path:
        return self.directories[0]

    @property
    def additional_directories(self) -> list[Path]:
        return list(self.directories[1:])


class SwarmConfig(BaseModel):
    """Parsed swarm topology."""

    name: str
    main: str
    instances: dict[str, InstanceConfig]
    before: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)
    config_path: Optional[Path] = None

    @model_validator(mode="after")
    def check_references(self) -> "SwarmConfig":
        if self.main not in self.instances:
            raise ValueError(f"main instance '{self.main}' is not defined")
        for inst in self.instances.values():
            unknown = [c for c in inst.connections if c not in self.instances]
            if unknown:
                raise ValueError(
                    f"instance '{inst.name}' connects to unknown instance(s): {', '.join(unknown)}"
                )
        return self

    @property
    def main_instance(self) -> InstanceConfig:
        return self.instances[self.main]

    @property
    def wants_worktrees(self) -> bool:
        return any(inst.worktree not in (None, False) for inst in self.instances.values())


def _parse_directories(raw: Any, base_dir: Path) -> list[Path]:
    entries = raw if isinstance(raw, list) else [raw or "."]
    return [(base_dir / os.path.expanduser(str(entry))).resolve() for entry in entries]


def load_swarm_config(path: Path, base_dir: Optional[Path] = None) -> SwarmConfig:
    """Load a swarm topology YAML file.

    Expected shape::

        swarm:
          name: "Dev team"
          main: lead
          before: ["make deps"]
          instances:
            lead:
              directory: .
              connections: [backend]
            backend:
              directory: ./api
              backend: api
    """
    path = Path(path).expanduser().resolve()
    base_dir = (base_dir or path.parent).resolve()
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Swarm config not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Swarm config is not valid YAML: {exc}") from exc

    swarm = (raw or {}).get("swarm") if isinstance(raw, dict) else None
    if not isinstance(swarm, dict):
        raise ConfigurationError("Swarm config must contain a 'swarm' mapping")

    instances: dict[str, dict[str, Any]] = {}
    for name, inst in (swarm.get("instances") or {}).items():
        inst = dict(inst or {})
        inst["name"] = name
        inst["directories"] = _parse_directories(inst.pop("directory", "."), base_dir)
        instances[name] = inst

    try:
        config = SwarmConfig(
            name=swarm.get("name", "swarm"),
            main=swarm.get("main", ""),
            instances=instances,
            before=swarm.get("before") or [],
            after=swarm.get("after") or [],
            config_path=path,
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid swarm config {path}: {exc}") from exc

    logger.debug("config.swarm_loaded", path=str(path), instances=len(config.instances))
    return config
