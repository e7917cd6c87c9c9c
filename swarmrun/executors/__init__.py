"""Executors: how one swarm instance turns a prompt into a result."""

from swarmrun.executors.api import ApiExecutor
from swarmrun.executors.base import BaseExecutor, ExecutorStatus, InvocationResult
from swarmrun.executors.factory import create_executor, task_options
from swarmrun.executors.process import ProcessExecutor
from swarmrun.executors.retry import RetryConfig, is_retryable_error, with_retries
from swarmrun.executors.task import run_task

__all__ = [
    "ApiExecutor",
    "BaseExecutor",
    "ExecutorStatus",
    "InvocationResult",
    "ProcessExecutor",
    "RetryConfig",
    "create_executor",
    "is_retryable_error",
    "run_task",
    "task_options",
    "with_retries",
]
