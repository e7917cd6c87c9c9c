"""
Orchestrator: one swarm run from session to summary.

Drives a run through its states:

  created -> session_resolved -> worktrees_provisioned
          -> descriptors_generated -> launched -> cleaned_up

A new run creates the session, provisions worktrees when any instance asks
for them, writes descriptors, snapshots the topology and metadata, runs the
before-commands and launches the lead. A restore reopens the session,
re-attaches worktrees only when the stored metadata says they were used,
regenerates descriptors from the persisted instance states, and resumes the
lead when it has a resumable id. Lifecycle commands never run on restore.

Whatever happens, the terminal phase stops the background loops, reaps every
tracked process, removes the run symlink and cleans up worktrees. A run that
launched the lead always gets a summary.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

import structlog
from rich.console import Console

from swarmrun import __version__
from swarmrun.config import (
    PROMPT_MODE_ENV,
    ROOT_DIR_ENV,
    SESSION_PATH_ENV,
    InstanceConfig,
    SwarmConfig,
    SwarmrunSettings,
)
from swarmrun.costs import calculate_total_cost
from swarmrun.errors import ExecutionError, LifecycleCommandError
from swarmrun.orchestration.collaborators import (
    DescriptorGenerator,
    WorktreeProvisioner,
    WorktreeProvisionerFactory,
)
from swarmrun.orchestration.command import build_main_command, format_command_for_display
from swarmrun.orchestration.descriptors import JsonDescriptorGenerator, generate_settings
from swarmrun.orchestration.lifecycle import run_after_commands, run_before_commands
from swarmrun.orchestration.telemetry import LogTailer, TranscriptTailer
from swarmrun.process_tracker import ProcessTracker
from swarmrun.protocol.stream import StreamReader
from swarmrun.session.models import InstanceState, SessionMetadata, WorktreeInfo
from swarmrun.session.store import SessionStore

logger = structlog.get_logger(__name__)

DescriptorGeneratorFactory = Callable[[SwarmConfig, SessionStore], DescriptorGenerator]

_LOOP_JOIN_SECONDS = 2.0


class OrchestratorState(str, Enum):
    CREATED = "created"
    SESSION_RESOLVED = "session_resolved"
    WORKTREES_PROVISIONED = "worktrees_provisioned"
    DESCRIPTORS_GENERATED = "descriptors_generated"
    LAUNCHED = "launched"
    CLEANED_UP = "cleaned_up"


def format_cost(cost: float, main_has_cost: bool) -> str:
    text = f"${cost:.4f}"
    if not main_has_cost:
        text += " (excluding main instance)"
    return text


def format_runtime(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


@dataclass
class RunSummary:
    session_id: str
    runtime_seconds: int
    total_cost: float
    main_has_cost: bool
    returncode: Optional[int] = None

    @property
    def cost_text(self) -> str:
        return format_cost(self.total_cost, self.main_has_cost)


class Orchestrator:
    """Run one swarm: resolve a session, launch the lead, always clean up."""

    def __init__(
        self,
        config: SwarmConfig,
        settings: Optional[SwarmrunSettings] = None,
        prompt: Optional[str] = None,
        interactive_prompt: Optional[str] = None,
        stream_logs: bool = False,
        debug: bool = False,
        vibe: bool = False,
        session_id: Optional[str] = None,
        restore_path: Optional[Path] = None,
        descriptor_factory: Optional[DescriptorGeneratorFactory] = None,
        worktree_factory: Optional[WorktreeProvisionerFactory] = None,
        console: Optional[Console] = None,
    ) -> None:
        self.config = config
        self.settings = settings or SwarmrunSettings()
        self.prompt = prompt
        self.interactive_prompt = interactive_prompt
        self.stream_logs = stream_logs
        self.debug = debug
        self.vibe = vibe
        self.session_id = session_id
        self.restore_path = Path(restore_path) if restore_path else None
        self._descriptor_factory = descriptor_factory
        self._worktree_factory = worktree_factory
        self.console = console or Console()

        self.state = OrchestratorState.CREATED
        self.store: Optional[SessionStore] = None
        self.tracker: Optional[ProcessTracker] = None
        self.generator: Optional[DescriptorGenerator] = None
        self.worktrees: Optional[WorktreeProvisioner] = None
        self.metadata: Optional[SessionMetadata] = None
        self.instances: dict[str, InstanceConfig] = dict(config.instances)
        self.summary: Optional[RunSummary] = None
        self.main_pid: Optional[int] = None
        self.stop_event = threading.Event()
        self._loops: list[threading.Thread] = []
        self._env: dict[str, str] = {}
        self.human_log: Optional[logging.Logger] = None
        self._start_time = datetime.now().astimezone()
        self._start_monotonic = time.monotonic()

    @property
    def quiet(self) -> bool:
        return self.prompt is not None or self.settings.prompt_mode

    @property
    def restoring(self) -> bool:
        return self.restore_path is not None

    @property
    def main_launched(self) -> bool:
        return self.main_pid is not None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> int:
        """Execute the whole run and return the lead's exit status."""
        self._start_time = datetime.now().astimezone()
        self._start_monotonic = time.monotonic()
        returncode: Optional[int] = None
        try:
            self._resolve_session()
            self._provision_worktrees()
            self._generate_descriptors()
            if not self.restoring:
                self._persist_snapshot()
                self._run_before_commands()
            returncode = self._launch_main()
            return returncode
        finally:
            self._finish(returncode)

    def _resolve_session(self) -> None:
        if self.restoring:
            self._say(f"Restoring swarm: {self.config.name}")
            self.store = SessionStore.open(self.restore_path, run_dir=self.settings.run_dir)
            self.metadata = self.store.read_metadata()
        else:
            self._say(f"Starting swarm: {self.config.name}")
            self.store = SessionStore.create(
                self._root_dir(),
                session_id=self.session_id,
                home=self.settings.home,
                run_dir=self.settings.run_dir,
            )
        if self.vibe:
            self._say("Vibe mode ON")
        self.session_id = self.store.session_id
        self.tracker = ProcessTracker(self.store.path)
        self.store.create_symlink()
        self.human_log = self.store.human_logger()
        self._env = self._child_env()

        self._say(f"Session files: {self.store.path}/")
        logger.info(
            "orchestrator.session_resolved",
            session_id=self.session_id,
            restore=self.restoring,
            path=str(self.store.path),
        )
        self.state = OrchestratorState.SESSION_RESOLVED

    def _provision_worktrees(self) -> None:
        shared_name: Optional[str] = None
        wanted = False
        if self.restoring:
            worktree = self.metadata.worktree if self.metadata else None
            if worktree is not None and worktree.enabled:
                wanted, shared_name = True, worktree.shared_name
        else:
            wanted = self.config.wants_worktrees

        if wanted:
            if self._worktree_factory is None:
                logger.warning("orchestrator.worktrees_unavailable", session_id=self.session_id)
            else:
                self._say("Setting up git worktrees...")
                self.worktrees = self._worktree_factory(shared_name, self.session_id)
                self.instances = self.worktrees.setup(self.instances)
        self.state = OrchestratorState.WORKTREES_PROVISIONED

    def _generate_descriptors(self) -> None:
        assert self.store is not None
        if self._descriptor_factory is not None:
            self.generator = self._descriptor_factory(self.config, self.store)
        else:
            self.generator = JsonDescriptorGenerator(
                self.config,
                self.store,
                rpc_command=self.settings.rpc_command,
                vibe=self.vibe,
            )
        self.generator.generate_all(self.instances, restore=self.restoring)
        generate_settings(self.config, self.store, self.instances, hook_command=self._hook_command())
        self._say(
            "Regenerated descriptors with resumable ids"
            if self.restoring
            else "Generated descriptors in session directory"
        )
        self.state = OrchestratorState.DESCRIPTORS_GENERATED

    def _persist_snapshot(self) -> None:
        assert self.store is not None
        if self.config.config_path is not None and self.config.config_path.exists():
            self.store.copy_config(self.config.config_path)
        worktree = None
        if self.worktrees is not None:
            worktree = WorktreeInfo.model_validate(self.worktrees.session_metadata())
        self.metadata = SessionMetadata(
            root_directory=str(self._root_dir()),
            start_time=self._start_time.isoformat(timespec="seconds"),
            swarm_name=self.config.name,
            version=__version__,
            worktree=worktree,
        )
        self.store.write_metadata(self.metadata)

    def _run_before_commands(self) -> None:
        if not self.config.before:
            return
        self._say("Executing before commands...")
        try:
            run_before_commands(
                self.config.before,
                cwd=self.instances[self.config.main].directory,
                env=self._env,
                human_log=self.human_log,
            )
        except LifecycleCommandError as e:
            self._say(f"[red]Before commands failed. Aborting swarm launch.[/red] {e}")
            raise

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def _launch_main(self) -> int:
        assert self.store is not None and self.generator is not None
        main = self.instances[self.config.main]
        resume_id = self._main_resume_id() if self.restoring else None
        command = build_main_command(
            main,
            self.generator.descriptor_path(self.config.main),
            agent_command=self.settings.agent_command,
            resume_id=resume_id,
            vibe=self.vibe,
            debug=self.debug,
            prompt=self.prompt,
            interactive_prompt=self.interactive_prompt,
            settings_path=self.store.path_for(f"settings:{self.config.main}"),
        )
        self._say(f"Launching main instance: {self.config.main} (model {main.model})")
        if self.debug:
            self._say(f"Running: {format_command_for_display(command)}")

        if self.prompt is not None:
            return self._run_streaming(main, command)
        return self._run_interactive(main, command)

    def _run_interactive(self, main: InstanceConfig, command: list[str]) -> int:
        assert self.store is not None and self.generator is not None
        marker = self.store.path_for("transcript_marker")
        if marker.exists():
            marker.unlink()

        proc = subprocess.Popen(command, cwd=str(main.directory), env=self._env)
        self._on_main_spawned(proc.pid)
        self._start_loop(
            TranscriptTailer(
                self.store,
                self.stop_event,
                self.config.main,
                state_instance_id=self.generator.instance_id(self.config.main),
                poll_interval=self.settings.poll_interval,
                from_start=not self.restoring,
            )
        )
        try:
            while True:
                try:
                    return proc.wait()
                except KeyboardInterrupt:
                    # The terminal delivers SIGINT to the lead as well; it decides.
                    logger.info("orchestrator.interrupt", pid=proc.pid)
        finally:
            self.tracker.untrack(proc.pid)

    def _run_streaming(self, main: InstanceConfig, command: list[str]) -> int:
        assert self.store is not None and self.generator is not None
        store = self.store
        main_name = self.config.main
        main_id = self.generator.instance_id(main_name)

        if self.stream_logs:
            self._start_loop(
                LogTailer(
                    store.path_for("human_log"),
                    self.stop_event,
                    poll_interval=self.settings.poll_interval,
                )
            )

        def on_event(event: dict[str, Any]) -> None:
            store.record(event, instance=main_name, instance_id=main_id)
            if event.get("type") == "system" and event.get("subtype") == "init" and main_id:
                session_id = event.get("session_id")
                if session_id:
                    try:
                        store.write_state(
                            main_id,
                            InstanceState(
                                instance_name=main_name,
                                instance_id=main_id,
                                resumable_session_id=str(session_id),
                            ),
                        )
                    except OSError as e:
                        logger.error(
                            "orchestrator.state_write_failed",
                            instance=main_name,
                            instance_id=main_id,
                            error=str(e),
                        )

        reader = StreamReader(tracker=self.tracker, label="main")
        try:
            outcome = reader.run(
                command,
                cwd=main.directory,
                env=self._env,
                on_event=on_event,
                on_spawn=self._on_main_spawned,
            )
        except ExecutionError as e:
            logger.error("orchestrator.main_failed", error=str(e)[:500])
            Console(stderr=True).print(f"[red]Main instance failed:[/red] {e}", markup=True)
            return getattr(e, "returncode", 1) or 1

        self.console.print(outcome.result_text, markup=False, highlight=False, soft_wrap=True)
        return 1 if (outcome.result or {}).get("is_error") else 0

    def _on_main_spawned(self, pid: int) -> None:
        assert self.store is not None and self.tracker is not None
        self.main_pid = pid
        self.store.write_main_pid(pid)
        self.tracker.track(pid, "main")
        self.state = OrchestratorState.LAUNCHED
        logger.info("orchestrator.main_launched", pid=pid, session_id=self.session_id)

    def _main_resume_id(self) -> Optional[str]:
        assert self.store is not None
        for state in self.store.read_states().values():
            if state.instance_name == self.config.main:
                return state.resumable_session_id
        return None

    def _start_loop(self, loop: threading.Thread) -> None:
        self._loops.append(loop)
        loop.start()

    # ------------------------------------------------------------------
    # Terminal phase
    # ------------------------------------------------------------------

    def _finish(self, returncode: Optional[int]) -> None:
        self.stop_event.set()
        for loop in self._loops:
            loop.join(timeout=_LOOP_JOIN_SECONDS)

        if self.main_launched:
            try:
                self.summary = self._summarize(returncode)
            except Exception as e:
                logger.warning("orchestrator.summary_failed", error=str(e))
            if self.config.after and not self.restoring:
                self._run_after_commands()

        self._cleanup()
        self.state = OrchestratorState.CLEANED_UP

    def _run_after_commands(self) -> None:
        self._say("Executing after commands...")
        try:
            outcomes = run_after_commands(
                self.config.after,
                cwd=self.instances[self.config.main].directory,
                env=self._env,
                human_log=self.human_log,
            )
        except Exception as e:
            logger.warning("orchestrator.after_commands_error", error=str(e))
            return
        if any(not o.ok for o in outcomes):
            self._say("[yellow]Some after commands failed[/yellow]")

    def _cleanup(self) -> None:
        if self.tracker is not None:
            try:
                report = self.tracker.cleanup_all(self.settings.cleanup_grace_seconds)
                for failure in report.failures:
                    logger.warning(
                        "orchestrator.cleanup_failure",
                        pid=failure.pid,
                        label=failure.label,
                        error=failure.error,
                    )
            except Exception as e:
                logger.warning("orchestrator.process_cleanup_failed", error=str(e))
        if self.store is not None:
            try:
                self.store.remove_symlink()
            except Exception as e:
                logger.warning("orchestrator.symlink_cleanup_failed", error=str(e))
        if self.worktrees is not None:
            try:
                self.worktrees.cleanup()
            except Exception as e:
                logger.warning("orchestrator.worktree_cleanup_failed", error=str(e))
        if self.store is not None:
            self.store.close_human_log()

    def _summarize(self, returncode: Optional[int]) -> RunSummary:
        assert self.store is not None
        end = datetime.now().astimezone()
        runtime = int(time.monotonic() - self._start_monotonic)
        self.store.update_metadata(
            end_time=end.isoformat(timespec="seconds"), duration_seconds=runtime
        )
        costs = calculate_total_cost(self.store.path_for("event_log"))
        summary = RunSummary(
            session_id=self.store.session_id,
            runtime_seconds=runtime,
            total_cost=costs.total_cost,
            main_has_cost=self.config.main in costs.instances_with_cost,
            returncode=returncode,
        )
        if not self.quiet:
            rule = "=" * 50
            self.console.print(
                f"\n{rule}\nSwarm Summary\n{rule}\n"
                f"Runtime: {format_runtime(summary.runtime_seconds)}\n"
                f"Total Cost: {summary.cost_text}\n"
                f"Session: {summary.session_id}\n{rule}",
                markup=False,
                highlight=False,
            )
        logger.info(
            "orchestrator.summary",
            session_id=summary.session_id,
            runtime_seconds=summary.runtime_seconds,
            total_cost=round(summary.total_cost, 6),
            returncode=returncode,
        )
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _root_dir(self) -> Path:
        if self.metadata is not None and self.metadata.root_directory:
            return Path(self.metadata.root_directory)
        return self.settings.resolved_root_dir()

    def _child_env(self) -> dict[str, str]:
        assert self.store is not None
        env = dict(os.environ)
        env[SESSION_PATH_ENV] = str(self.store.path)
        env[ROOT_DIR_ENV] = str(self._root_dir())
        if self.prompt is not None:
            env[PROMPT_MODE_ENV] = "1"
        return env

    @staticmethod
    def _hook_command() -> str:
        return f"{shlex.quote(sys.executable)} -m swarmrun hook session-start"

    def _say(self, message: str) -> None:
        if not self.quiet:
            self.console.print(message)
