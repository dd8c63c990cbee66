"""
flowcore - execution engine for AI employee workflows.

A workflow is a graph of typed steps (triggers, LLM calls, conditions,
classifiers, agents, sandboxed code, HTTP calls, notifications, loops).
The executor walks it from its trigger to a final result and reports
every node transition on an event bus.

Example:
    from flowcore import WorkflowExecutor
    from flowcore.llm import LiteLLMProvider

    executor = WorkflowExecutor(llm=LiteLLMProvider())
    result = await executor.execute(definition, input_data="hello")
"""

from flowcore.config import EngineConfig
from flowcore.errors import (
    CodeExecutionError,
    CodeTimeoutError,
    GraphValidationError,
    HttpStatusError,
    IterationError,
    NodeExecutionError,
    NodeTimeoutError,
    WorkflowCancelledError,
    WorkflowError,
)
from flowcore.graph import (
    CancellationToken,
    EdgeSpec,
    NodeResult,
    NodeSpec,
    NodeStatus,
    NodeType,
    WorkflowDefinition,
    WorkflowExecutor,
    WorkflowResult,
)
from flowcore.runtime.event_bus import EventBus, EventType, WorkflowEvent
from flowcore.tools.registry import ToolRegistry

__all__ = [
    "CancellationToken",
    "CodeExecutionError",
    "CodeTimeoutError",
    "EdgeSpec",
    "EngineConfig",
    "EventBus",
    "EventType",
    "GraphValidationError",
    "HttpStatusError",
    "IterationError",
    "NodeExecutionError",
    "NodeResult",
    "NodeSpec",
    "NodeStatus",
    "NodeTimeoutError",
    "NodeType",
    "ToolRegistry",
    "WorkflowCancelledError",
    "WorkflowDefinition",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowExecutor",
    "WorkflowResult",
]
