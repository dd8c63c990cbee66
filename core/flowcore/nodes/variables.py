"""Variable assignment and aggregation nodes."""

import json
import logging
from typing import Any

from flowcore.graph.definition import NodeType
from flowcore.graph.variables import WRAPPER_KEYS
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler

logger = logging.getLogger(__name__)

AGGREGATE_STRATEGIES = ("concat", "merge", "array")


def unwrap(value: Any) -> Any:
    """Prefer a node's wrapped payload (output, data or result) over the envelope."""
    if isinstance(value, dict):
        for key in WRAPPER_KEYS:
            if value.get(key) is not None:
                return value[key]
    return value


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return "" if value is None else str(value)


@register_handler(NodeType.VARIABLE_ASSIGNMENT)
class VariableAssignmentHandler(NodeHandler):
    """Bind a value under ``variableName`` for later ``{{name}}`` references."""

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        name = data.get("variableName") or "result"
        if data.get("variableValue") is not None:
            value = step.resolve(data["variableValue"])
        elif data.get("input") is not None:
            value = step.resolve(data["input"])
        else:
            value = step.previous_output()

        step.context.bind_variable(name, value)
        logger.debug(f"Variable '{name}' bound by node '{step.node_id}'")
        return StepOutput(output={name: value, "value": value}, extra={"variableName": name})


@register_handler(NodeType.VARIABLE_AGGREGATOR)
class VariableAggregatorHandler(NodeHandler):
    """
    Combine several upstream values.

    concat joins with newlines, merge joins with nothing, array keeps the
    raw values. Objects are JSON-encoded for the joining strategies.
    """

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        strategy = data.get("aggregateStrategy") or "concat"
        if strategy not in AGGREGATE_STRATEGIES:
            logger.warning(f"Unknown aggregate strategy '{strategy}', using concat")
            strategy = "concat"

        values = [
            unwrap(step.resolve_variable(selector))
            for selector in data.get("aggregateVariables") or []
        ]

        if strategy == "array":
            output: Any = values
        elif strategy == "merge":
            output = "".join(_as_text(v) for v in values)
        else:
            output = "\n".join(_as_text(v) for v in values)
        return StepOutput(output=output)
