"""
Observability for workflow runs: structured logging with run context
propagated through ContextVar, so handlers never pass ids around.
"""

from flowcore.observability.logging import (
    clear_run_context,
    configure_logging,
    get_run_context,
    set_run_context,
)

__all__ = [
    "configure_logging",
    "get_run_context",
    "set_run_context",
    "clear_run_context",
]
