"""Tools exposed to agent, notification and knowledge nodes."""

from flowcore.tools.registry import (
    BUILTIN_TOOLS,
    GET_EMPLOYEE_LOGS,
    SEARCH_KNOWLEDGE,
    SEND_EMAIL_NOTIFICATION,
    SEND_SITE_NOTIFICATION,
    RegisteredTool,
    ToolRegistry,
)

__all__ = [
    "BUILTIN_TOOLS",
    "GET_EMPLOYEE_LOGS",
    "SEARCH_KNOWLEDGE",
    "SEND_EMAIL_NOTIFICATION",
    "SEND_SITE_NOTIFICATION",
    "RegisteredTool",
    "ToolRegistry",
]
