"""Tool registration and invocation for agents and notification nodes."""

import contextvars
import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from flowcore.llm.provider import Tool, ToolResult, ToolUse

logger = logging.getLogger(__name__)

# Per-run context overrides. Each asyncio task (and so each concurrent
# run or parallel iteration branch) sees its own copy.
_execution_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "_execution_context", default=None
)

# Stable tool ids the engine knows how to expose to models.
GET_EMPLOYEE_LOGS = "get_employee_logs"
SEND_SITE_NOTIFICATION = "send_site_notification"
SEND_EMAIL_NOTIFICATION = "send_email_notification"
SEARCH_KNOWLEDGE = "search_knowledge"

BUILTIN_TOOLS: dict[str, Tool] = {
    GET_EMPLOYEE_LOGS: Tool(
        name=GET_EMPLOYEE_LOGS,
        description=(
            "Fetch work logs of the company's employees. Returns unprocessed logs by "
            "default; used for risk monitoring and summary reports."
        ),
        parameters={
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Maximum number of logs"},
                "includeProcessed": {
                    "type": "boolean",
                    "description": "Include logs that were already processed",
                },
                "keyword": {"type": "string", "description": "Only logs containing this text"},
                "level": {"type": "string", "description": "info, warning, error or success"},
            },
            "required": [],
        },
    ),
    SEND_SITE_NOTIFICATION: Tool(
        name=SEND_SITE_NOTIFICATION,
        description="Send an in-app notification to the company's managers.",
        parameters={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Notification title"},
                "content": {"description": "Body: text, object or list"},
                "type": {"type": "string", "enum": ["info", "warning", "error", "success"]},
            },
            "required": ["title", "content"],
        },
    ),
    SEND_EMAIL_NOTIFICATION: Tool(
        name=SEND_EMAIL_NOTIFICATION,
        description="Email a summary to the company's primary contact (requires SMTP).",
        parameters={
            "type": "object",
            "properties": {
                "subject": {"type": "string", "description": "Email subject"},
                "content": {"description": "Body: text, object or list"},
            },
            "required": ["subject", "content"],
        },
    ),
    SEARCH_KNOWLEDGE: Tool(
        name=SEARCH_KNOWLEDGE,
        description="Search the company knowledge base for relevant passages.",
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search keywords or question"},
                "kbId": {"type": "string", "description": "Restrict to one knowledge base"},
                "topK": {"type": "integer", "description": "Number of results"},
            },
            "required": ["query"],
        },
    ),
}


@dataclass
class RegisteredTool:
    """A tool with its executor function."""

    tool: Tool
    executor: Callable[[dict], Any]


class ToolRegistry:
    """
    Tools keyed by stable string ids. Executors may be sync or async.

    Run-scoped values (company_id, employee_id) are never shown to the
    model; they are stripped from generated schemas and injected at call
    time for executors whose signature accepts them.

    Example:
        registry = ToolRegistry()
        registry.register_builtin("send_site_notification", notify_managers)
        result = await registry.execute("send_site_notification", {"title": "Hi", "content": "x"})
    """

    CONTEXT_PARAMS = frozenset({"company_id", "employee_id", "run_id"})

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}
        self._session_context: dict[str, Any] = {}

    def register(
        self,
        name: str,
        tool: Tool,
        executor: Callable[[dict], Any],
    ) -> None:
        """
        Register a single tool with its executor.

        Args:
            name: Tool id (must match tool.name)
            tool: Tool definition shown to models
            executor: Takes the tool input dict, returns the result (or awaitable)
        """
        self._tools[name] = RegisteredTool(tool=tool, executor=executor)

    def register_builtin(self, tool_id: str, func: Callable[..., Any]) -> None:
        """Attach an implementation to one of the engine's known tool ids."""
        if tool_id not in BUILTIN_TOOLS:
            raise KeyError(f"Unknown built-in tool '{tool_id}'. Known: {sorted(BUILTIN_TOOLS)}")
        self.register(tool_id, BUILTIN_TOOLS[tool_id], self._wrap_function(func))

    def register_function(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
    ) -> None:
        """
        Register a function as a tool, generating the Tool definition from
        its signature and docstring.
        """
        tool_name = name or func.__name__
        tool_desc = description or func.__doc__ or f"Execute {tool_name}"

        sig = inspect.signature(func)
        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param_name in ("self", "cls") or param_name in self.CONTEXT_PARAMS:
                continue

            param_type = "string"
            if param.annotation is int:
                param_type = "integer"
            elif param.annotation is float:
                param_type = "number"
            elif param.annotation is bool:
                param_type = "boolean"
            elif param.annotation is dict:
                param_type = "object"
            elif param.annotation is list:
                param_type = "array"

            properties[param_name] = {"type": param_type}
            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        tool = Tool(
            name=tool_name,
            description=tool_desc.strip(),
            parameters={"type": "object", "properties": properties, "required": required},
        )
        self.register(tool_name, tool, self._wrap_function(func))

    def _wrap_function(self, func: Callable[..., Any]) -> Callable[[dict], Any]:
        accepted = set(inspect.signature(func).parameters)
        accepts_kwargs = any(
            p.kind is inspect.Parameter.VAR_KEYWORD
            for p in inspect.signature(func).parameters.values()
        )

        def executor(inputs: dict) -> Any:
            call_args = dict(inputs)
            for key, value in self._current_context().items():
                if key in self.CONTEXT_PARAMS and (key in accepted or accepts_kwargs):
                    call_args.setdefault(key, value)
            if not accepts_kwargs:
                call_args = {k: v for k, v in call_args.items() if k in accepted}
            return func(**call_args)

        return executor

    # === LOOKUP ===

    def get_tools(self, names: list[str] | None = None) -> list[Tool]:
        """Tool definitions, optionally restricted to ``names`` (order preserved)."""
        if names is None:
            return [t.tool for t in self._tools.values()]
        return [self._tools[n].tool for n in names if n in self._tools]

    def get_registered_names(self) -> list[str]:
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    # === CONTEXT ===

    def set_session_context(self, **context) -> None:
        """Context injected into every call made through this registry."""
        self._session_context.update(context)

    @staticmethod
    def set_execution_context(**context) -> contextvars.Token:
        """
        Set per-run context for the current asyncio task.

        Values here take precedence over session context. Returns a token
        for reset_execution_context.
        """
        current = _execution_context.get() or {}
        return _execution_context.set({**current, **context})

    @staticmethod
    def reset_execution_context(token: contextvars.Token) -> None:
        _execution_context.reset(token)

    def _current_context(self) -> dict[str, Any]:
        return {**self._session_context, **(_execution_context.get() or {})}

    # === EXECUTION ===

    async def execute(self, name: str, inputs: dict[str, Any]) -> Any:
        """Invoke a tool by id. Raises KeyError for unknown ids."""
        registered = self._tools.get(name)
        if registered is None:
            raise KeyError(f"Tool '{name}' is not registered")
        result = registered.executor(inputs or {})
        if inspect.isawaitable(result):
            result = await result
        return result

    def make_executor(self, allowed: set[str] | None = None) -> Callable[[ToolUse], Any]:
        """
        Build an async (ToolUse) -> ToolResult executor for the tool loop.

        Calls outside ``allowed`` are refused with an error result rather
        than executed.
        """

        async def executor(tool_use: ToolUse) -> ToolResult:
            if allowed is not None and tool_use.name not in allowed:
                return ToolResult(
                    tool_use_id=tool_use.id,
                    content=json.dumps({"error": f"Tool '{tool_use.name}' is not enabled"}),
                    is_error=True,
                )
            try:
                result = await self.execute(tool_use.name, tool_use.input)
            except Exception as e:
                logger.warning(f"Tool '{tool_use.name}' failed: {e}")
                return ToolResult(
                    tool_use_id=tool_use.id,
                    content=json.dumps({"error": str(e)}),
                    is_error=True,
                )
            content = result if isinstance(result, str) else json.dumps(result, default=str)
            return ToolResult(tool_use_id=tool_use.id, content=content)

        return executor
