"""
Structured logging with run-scoped context propagation.

Every workflow run sets a run_id once; the executor adds the workflow_id
and each handler invocation adds node_id/node_type. Plain logger.info()
calls anywhere below that pick the fields up through a ContextVar, which
also keeps parallel iteration branches apart.

Output modes:
    json  - one JSON object per line (LOG_FORMAT=json or ENV=production)
    human - colourised single line with a [run | node] prefix
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

run_context: ContextVar[dict[str, Any] | None] = ContextVar("run_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Attributes passed through ``extra=`` that are copied into JSON entries
_EXTRA_FIELDS = ("event", "latency_ms", "attempt", "node_id", "model", "status")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """JSON formatter: timestamp, level, logger, message, run context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        context = run_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colourised formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = run_context.get() or {}

        prefix_parts = []
        if context.get("run_id"):
            prefix_parts.append(f"run:{context['run_id'][:8]}")
        if context.get("workflow_id"):
            prefix_parts.append(f"wf:{context['workflow_id']}")
        if context.get("node_id"):
            prefix_parts.append(f"node:{context['node_id']}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        line = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for the process. Call once from the entry point
    (CLI, stream server) or a test fixture.

    Args:
        level: Log level name
        format: "json", "human", or "auto" (json when LOG_FORMAT=json or
            ENV=production, otherwise human)
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        os.environ["NO_COLOR"] = "1"
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route chatty client libraries through the root formatter
    for logger_name in ("LiteLLM", "httpx", "httpcore", "aiohttp.access"):
        third_party = logging.getLogger(logger_name)
        third_party.handlers.clear()
        third_party.propagate = True
        if logger_name != "aiohttp.access":
            third_party.setLevel(max(root_logger.level, logging.WARNING))


def set_run_context(**kwargs: Any) -> None:
    """Merge fields (run_id, workflow_id, node_id, ...) into the current run context."""
    current = run_context.get() or {}
    run_context.set({**current, **kwargs})


def get_run_context() -> dict:
    """Return a copy of the current run context, empty if none is set."""
    context = run_context.get() or {}
    return context.copy()


def clear_run_context() -> None:
    run_context.set(None)
