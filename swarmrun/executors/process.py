"""
Process Executor: one invocation is one run of the agent CLI.

The agent is started in non-interactive stream mode and its events are fed
through the StreamReader. The resumable session id is persisted the moment
the ``system/init`` event arrives, so a crash later in the run still leaves a
resumable conversation behind.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional, Sequence

import structlog

from swarmrun.config import SESSION_PATH_ENV
from swarmrun.errors import ExecutionError
from swarmrun.executors.base import BaseExecutor, InvocationResult
from swarmrun.process_tracker import ProcessTracker
from swarmrun.protocol.stream import StreamReader
from swarmrun.session.store import SessionStore

logger = structlog.get_logger(__name__)

_MAX_LOGGED_ARGUMENTS = 300


class ProcessExecutor(BaseExecutor):
    """Drive a local agent process over the stream-json protocol."""

    def __init__(
        self,
        store: SessionStore,
        instance_name: str,
        instance_id: Optional[str] = None,
        calling_instance: Optional[str] = None,
        calling_instance_id: Optional[str] = None,
        working_directory: Optional[Path] = None,
        resumable_session_id: Optional[str] = None,
        model: Optional[str] = None,
        vibe: bool = False,
        additional_directories: Sequence[Path] = (),
        mcp_config: Optional[Path] = None,
        agent_command: str = "claude",
        tracker: Optional[ProcessTracker] = None,
    ) -> None:
        super().__init__(
            store,
            instance_name,
            instance_id=instance_id,
            calling_instance=calling_instance,
            calling_instance_id=calling_instance_id,
            working_directory=working_directory,
            resumable_session_id=resumable_session_id,
        )
        self.model = model
        self.vibe = vibe
        self.additional_directories = [Path(d) for d in additional_directories]
        self.mcp_config = Path(mcp_config) if mcp_config else None
        self.agent_command = agent_command
        self.tracker = tracker if tracker is not None else ProcessTracker(store.path)

    def build_command(self, prompt: str, **options: Any) -> list[str]:
        """The full agent command line for one invocation."""
        cmd = [self.agent_command, "-p", "--output-format", "stream-json", "--verbose"]

        if self.model and not os.environ.get("ANTHROPIC_MODEL"):
            cmd += ["--model", self.model]

        if self.resumable_session_id and not options.get("new_session"):
            cmd += ["--resume", self.resumable_session_id]

        if self.vibe:
            cmd.append("--dangerously-skip-permissions")
        else:
            allowed = list(options.get("allowed_tools") or [])
            allowed += [f"mcp__{name}" for name in options.get("connections") or []]
            if allowed:
                cmd += ["--allowedTools", ",".join(allowed)]
            disallowed = list(options.get("disallowed_tools") or [])
            if disallowed:
                cmd += ["--disallowedTools", ",".join(disallowed)]

        system_prompt = options.get("system_prompt")
        if system_prompt:
            cmd += ["--append-system-prompt", system_prompt]

        if self.mcp_config and self.mcp_config.exists():
            cmd += ["--mcp-config", str(self.mcp_config)]

        settings = self.store.path_for(f"settings:{self.instance_name}")
        if settings.exists():
            cmd += ["--settings", str(settings)]

        for directory in self.additional_directories:
            cmd += ["--add-dir", str(directory)]

        cmd.append(prompt)
        return cmd

    def _invoke(self, prompt: str, **options: Any) -> InvocationResult:
        command = self.build_command(prompt, **options)
        env = dict(os.environ)
        env[SESSION_PATH_ENV] = str(self.store.path)

        reader = StreamReader(tracker=self.tracker, label=f"executor:{self.instance_name}")
        outcome = reader.run(command, cwd=self.working_directory, env=env, on_event=self._on_event)

        result = outcome.result or {}
        text = result.get("result")
        if not isinstance(text, str) or not text.strip():
            raise ExecutionError(
                "Agent returned an empty result. The agent completed execution "
                "but provided no response content."
            )

        session_id = result.get("session_id") or outcome.resumable_session_id
        if session_id and session_id != self.resumable_session_id:
            self.resumable_session_id = str(session_id)
            self._write_state()

        cost = result.get("total_cost_usd", result.get("cost_usd")) or 0.0
        return InvocationResult(
            result_text=text,
            duration_ms=int(result.get("duration_ms") or 0),
            cost=float(cost),
            resumable_session_id=self.resumable_session_id,
            is_error=bool(result.get("is_error", False)),
        )

    def _on_event(self, event: dict[str, Any]) -> None:
        self._append(event)
        event_type = event.get("type")
        if event_type == "system":
            if event.get("subtype") == "init" and event.get("session_id"):
                self.resumable_session_id = str(event["session_id"])
                self._write_state()
                self.log.info(
                    "Wrote instance state for %s (%s) with session ID: %s",
                    self.instance_name,
                    self.instance_id,
                    self.resumable_session_id,
                )
        elif event_type == "assistant":
            self._log_assistant(event.get("message") or {})
        elif event_type == "result":
            self.log.info(
                "(%s $ - %sms) %s -> %s: \n---\n%s\n---",
                event.get("total_cost_usd", event.get("cost_usd")),
                event.get("duration_ms"),
                self.instance_name,
                self.calling_instance,
                event.get("result"),
            )

    def _log_assistant(self, message: dict[str, Any]) -> None:
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_use":
                arguments = json.dumps(block.get("input"), default=str)
                if len(arguments) > _MAX_LOGGED_ARGUMENTS:
                    arguments = arguments[:_MAX_LOGGED_ARGUMENTS] + " ...}"
                self.log.info(
                    "Tool call from %s -> Tool: %s, ID: %s, Arguments: %s",
                    self.instance_name,
                    block.get("name"),
                    block.get("id"),
                    arguments,
                )
            elif block.get("type") == "text":
                self.log.info("%s is thinking:\n---\n%s\n---", self.instance_name, block.get("text"))
