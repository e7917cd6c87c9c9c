"""
The tool-call seam: what another instance sees when it delegates a task.

A calling agent expects text back, never a traceback, so every failure is
reported as an ``Error: ...`` string.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from swarmrun.errors import SwarmrunError
from swarmrun.executors.base import BaseExecutor

logger = structlog.get_logger(__name__)


def run_task(
    executor: BaseExecutor,
    prompt: str,
    new_session: bool = False,
    system_prompt: Optional[str] = None,
    **options: Any,
) -> str:
    """Run one delegated task and return its text or an error string."""
    if system_prompt:
        options["system_prompt"] = system_prompt
    try:
        result = executor.execute(prompt, new_session=new_session, **options)
    except SwarmrunError as e:
        logger.warning("task.failed", instance=executor.instance_name, error=str(e)[:300])
        return f"Error: {e}"
    except Exception as e:
        logger.error(
            "task.unexpected_error",
            instance=executor.instance_name,
            error_type=type(e).__name__,
            error=str(e)[:300],
        )
        return f"Error: {type(e).__name__}: {e}"

    if not result.result_text.strip():
        return "Error: Agent completed execution but returned no response content."
    if result.is_error:
        return f"Error: {result.result_text}"
    return result.result_text
