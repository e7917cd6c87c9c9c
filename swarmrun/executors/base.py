"""
Executor Base: one instance answering one prompt at a time.

Every executor shares the same contract: it logs the incoming request to the
session event log, runs exactly one invocation at a time, and returns an
InvocationResult. Backends (a local agent process, the Messages API) only
implement ``_invoke``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel

from swarmrun.errors import ExecutorBusyError
from swarmrun.session.models import InstanceState, now_iso
from swarmrun.session.store import SessionStore

logger = structlog.get_logger(__name__)


class ExecutorStatus(str, Enum):
    """Lifecycle of an executor's most recent invocation."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class InvocationResult(BaseModel):
    """What one invocation returned to its caller."""

    type: Literal["result"] = "result"
    result_text: str = ""
    duration_ms: int = 0
    cost: float = 0.0
    resumable_session_id: Optional[str] = None
    is_error: bool = False


class BaseExecutor(ABC):
    """Shared request logging, state persistence and the one-at-a-time guard."""

    def __init__(
        self,
        store: SessionStore,
        instance_name: str,
        instance_id: Optional[str] = None,
        calling_instance: Optional[str] = None,
        calling_instance_id: Optional[str] = None,
        working_directory: Optional[Path] = None,
        resumable_session_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.instance_name = instance_name
        self.instance_id = instance_id
        self.calling_instance = calling_instance
        self.calling_instance_id = calling_instance_id
        self.working_directory = Path(working_directory) if working_directory else Path.cwd()
        self.resumable_session_id = resumable_session_id
        self.status = ExecutorStatus.IDLE
        self.last_result: Optional[InvocationResult] = None
        self._run_lock = threading.Lock()

        self.log = store.human_logger(instance_name)
        info = instance_name + (f" ({instance_id})" if instance_id else "")
        self.log.info("Started %s for instance: %s", type(self).__name__, info)

    @property
    def has_session(self) -> bool:
        return self.resumable_session_id is not None

    def execute(self, prompt: str, **options: Any) -> InvocationResult:
        """Run one invocation. Raises ExecutorBusyError if one is in flight."""
        if not self._run_lock.acquire(blocking=False):
            raise ExecutorBusyError(
                f"Executor for {self.instance_name} is already running an invocation"
            )
        try:
            self.status = ExecutorStatus.RUNNING
            self._log_request(prompt)
            try:
                result = self._invoke(prompt, **options)
            except Exception as e:
                self.status = ExecutorStatus.FAILED
                self.log.error("Execution error for %s: %s - %s", self.instance_name, type(e).__name__, e)
                logger.error(
                    "executor.failed",
                    instance=self.instance_name,
                    error_type=type(e).__name__,
                    error=str(e)[:300],
                )
                raise
            self.status = ExecutorStatus.COMPLETED
            self.last_result = result
            return result
        finally:
            self._run_lock.release()

    def reset_session(self) -> None:
        """Forget the resumable conversation so the next invocation starts fresh."""
        self.resumable_session_id = None
        self.last_result = None
        logger.debug("executor.session_reset", instance=self.instance_name)

    @abstractmethod
    def _invoke(self, prompt: str, **options: Any) -> InvocationResult:
        """Backend-specific invocation."""

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    def _append(self, event: dict[str, Any]) -> None:
        self.store.record(
            event,
            instance=self.instance_name,
            instance_id=self.instance_id,
            calling_instance=self.calling_instance,
            calling_instance_id=self.calling_instance_id,
        )

    def _log_request(self, prompt: str) -> None:
        self.log.info("%s -> %s: \n---\n%s\n---", self.calling_instance, self.instance_name, prompt)
        self._append(
            {
                "type": "request",
                "from_instance": self.calling_instance,
                "to_instance": self.instance_name,
                "prompt": prompt,
                "timestamp": now_iso(),
            }
        )

    def _write_state(self) -> None:
        """Persist the resumable id. Advisory: failures are logged only."""
        if not self.instance_id or not self.resumable_session_id:
            return
        try:
            self.store.write_state(
                self.instance_id,
                InstanceState(
                    instance_name=self.instance_name,
                    instance_id=self.instance_id,
                    resumable_session_id=self.resumable_session_id,
                ),
            )
        except OSError as e:
            logger.error(
                "executor.state_write_failed",
                instance=self.instance_name,
                instance_id=self.instance_id,
                error=str(e),
            )
