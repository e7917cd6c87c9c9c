"""
Main: the swarmrun entry point.

Configures logging once, then hands over to the click command tree in
``swarmrun.cli``.
"""

from __future__ import annotations

import logging
import re
import sys

import structlog

_SECRET_RE = re.compile(r"sk-ant-[A-Za-z0-9_-]{8,}")
_TRUNCATED_KEYS = {"prompt", "result", "line", "stderr"}
_MAX_DISPLAY_LEN = 200


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that masks API keys and truncates bulky fields.

    Prompts, results and raw protocol lines can be arbitrarily long; the
    session log keeps them in full, the console does not need to.
    """
    for key, val in list(event_dict.items()):
        if not isinstance(val, str):
            continue
        val = _SECRET_RE.sub("sk-ant-***", val)
        if key in _TRUNCATED_KEYS and len(val) > _MAX_DISPLAY_LEN:
            val = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
        event_dict[key] = val
    return event_dict


_logging_configured = False


def configure_logging(debug: bool = False) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once; later calls only adjust the level.
    """
    global _logging_configured  # noqa: PLW0603
    level = logging.DEBUG if debug else logging.WARNING
    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for the swarmrun command."""
    configure_logging()
    from swarmrun.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
