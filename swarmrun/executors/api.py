"""
API Executor: one invocation is one Messages API call.

There is no agent process to resume, so the conversation lives in memory and
is identified by a locally allocated ``api-<hex>`` id. Token usage of every
call is priced into a flat ``cost_usd`` on the result event; API-backed
costs are never cumulative.
"""

from __future__ import annotations

import time
import uuid
from pathlib import Path
from typing import Any, Optional

import anthropic
import structlog

from swarmrun.config import ApiConfig
from swarmrun.costs import price_usage
from swarmrun.errors import ConfigurationError, ExecutionError
from swarmrun.executors.base import BaseExecutor, InvocationResult
from swarmrun.executors.retry import RetryConfig, with_retries
from swarmrun.session.store import SessionStore

logger = structlog.get_logger(__name__)

MODEL_ALIASES = {
    "opus": "claude-opus-4-1",
    "sonnet": "claude-sonnet-4-5",
    "haiku": "claude-haiku-4-5",
}


def resolve_model(model: Optional[str]) -> str:
    if not model:
        return MODEL_ALIASES["sonnet"]
    return MODEL_ALIASES.get(model, model)


def new_conversation_id() -> str:
    return f"api-{uuid.uuid4().hex[:16]}"


class ApiExecutor(BaseExecutor):
    """Answer prompts with direct Messages API calls."""

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
        api_config: Optional[ApiConfig] = None,
        client: Any = None,
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
        self.api_config = api_config or ApiConfig()
        self.model = resolve_model(model)
        self.retry_config = RetryConfig.from_api_config(self.api_config)
        self.history: list[dict[str, Any]] = []
        if client is not None:
            self._client = client
        else:
            if not self.api_config.api_key:
                raise ConfigurationError(
                    f"ANTHROPIC_API_KEY is required for API-backed instance '{instance_name}'"
                )
            # Retries are ours; the SDK's own would double them.
            self._client = anthropic.Anthropic(
                api_key=self.api_config.api_key,
                timeout=self.api_config.request_timeout_seconds,
                max_retries=0,
            )

    def reset_session(self) -> None:
        super().reset_session()
        self.history = []

    def _invoke(self, prompt: str, **options: Any) -> InvocationResult:
        if options.get("new_session"):
            self.reset_session()
        if self.resumable_session_id is None:
            self.resumable_session_id = new_conversation_id()
            self.history = []
            self._write_state()

        messages = self.history + [{"role": "user", "content": prompt}]
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.api_config.max_tokens,
            "messages": messages,
        }
        if options.get("system_prompt"):
            kwargs["system"] = options["system_prompt"]

        start = time.monotonic()
        response = with_retries(
            lambda: self._client.messages.create(**kwargs),
            config=self.retry_config,
        )
        duration_ms = int((time.monotonic() - start) * 1000)

        text = "\n".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = self._usage_dict(response.usage)
        cost = price_usage(usage, getattr(response, "model", None) or self.model)

        self._append(
            {
                "type": "assistant",
                "message": {
                    "role": "assistant",
                    "model": getattr(response, "model", None) or self.model,
                    "content": [{"type": "text", "text": text}],
                    "usage": usage,
                },
                "session_id": self.resumable_session_id,
            }
        )
        self._append(
            {
                "type": "result",
                "subtype": "success",
                "result": text,
                "cost_usd": cost,
                "duration_ms": duration_ms,
                "session_id": self.resumable_session_id,
                "is_error": False,
            }
        )
        self.log.info(
            "($%.4f - %sms) %s -> %s: \n---\n%s\n---",
            cost, duration_ms, self.instance_name, self.calling_instance, text,
        )

        if not text.strip():
            raise ExecutionError(f"Empty response from model for instance '{self.instance_name}'")

        self.history = messages + [{"role": "assistant", "content": text}]
        self._write_state()
        return InvocationResult(
            result_text=text,
            duration_ms=duration_ms,
            cost=cost,
            resumable_session_id=self.resumable_session_id,
        )

    @staticmethod
    def _usage_dict(usage: Any) -> dict[str, int]:
        if usage is None:
            return {}
        fields = (
            "input_tokens",
            "output_tokens",
            "cache_creation_input_tokens",
            "cache_read_input_tokens",
        )
        return {name: int(getattr(usage, name, 0) or 0) for name in fields}
