"""Workflow graph: definition model, run state, variable resolution and the executor."""

from flowcore.graph.cancellation import CancellationToken
from flowcore.graph.context import ExecutionContext, NodeResult, NodeStatus
from flowcore.graph.definition import EdgeSpec, NodeSpec, NodeType, WorkflowDefinition
from flowcore.graph.retry import ErrorPolicy, RetryPolicy, run_with_policy
from flowcore.graph.variables import interpolate, resolve_value, resolve_variable

# The executor pulls in the node handlers, which import the modules above
from flowcore.graph.executor import WorkflowExecutor, WorkflowResult  # noqa: E402, I001

__all__ = [
    "CancellationToken",
    "EdgeSpec",
    "ErrorPolicy",
    "ExecutionContext",
    "NodeResult",
    "NodeSpec",
    "NodeStatus",
    "NodeType",
    "RetryPolicy",
    "WorkflowDefinition",
    "WorkflowExecutor",
    "WorkflowResult",
    "interpolate",
    "resolve_value",
    "resolve_variable",
    "run_with_policy",
]
