"""Condition node: boolean routing through "true"/"false" handles."""

import logging
import re
from collections.abc import Callable
from typing import Any

from flowcore.errors import CodeExecutionError
from flowcore.graph.definition import NodeType
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler
from flowcore.sandbox import evaluate_expression

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def _loose_equals(target: Any, value: Any) -> bool:
    if target == value:
        return True
    if isinstance(target, bool) or isinstance(value, bool):
        return _text(target) == _text(value)
    if isinstance(target, (int, float)) or isinstance(value, (int, float)):
        return _number(target) == _number(value)
    return False


def _contains(target: Any, value: Any) -> bool:
    if target is None:
        return False
    if isinstance(target, (list, tuple)):
        return value in target
    return _text(value) in _text(target)


def _is_empty(target: Any) -> bool:
    if target is None:
        return True
    if isinstance(target, str):
        return not target.strip()
    if isinstance(target, (list, dict)):
        return len(target) == 0
    return False


def _regex(target: Any, value: Any) -> bool:
    try:
        return re.search(_text(value), _text(target)) is not None
    except re.error:
        return False


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "contains": _contains,
    "not_contains": lambda t, v: not _contains(t, v),
    "equals": _loose_equals,
    "not_equals": lambda t, v: not _loose_equals(t, v),
    "start_with": lambda t, v: _text(t).startswith(_text(v)),
    "end_with": lambda t, v: _text(t).endswith(_text(v)),
    "is_empty": lambda t, v: _is_empty(t),
    "not_empty": lambda t, v: not _is_empty(t),
    "is_null": lambda t, v: t is None,
    "not_null": lambda t, v: t is not None,
    "regex": _regex,
    "gt": lambda t, v: _number(t) > _number(v),
    "gte": lambda t, v: _number(t) >= _number(v),
    "lt": lambda t, v: _number(t) < _number(v),
    "lte": lambda t, v: _number(t) <= _number(v),
}


async def evaluate_condition(
    target: Any,
    operator: str,
    value: Any,
    expression: str | None = None,
) -> bool:
    """
    Apply one operator. ``js_expression`` evaluates the expression (or
    ``value``) with the target bound as ``input``; unknown operators are
    false.
    """
    if operator == "js_expression":
        source = expression or value
        if not source:
            return False
        try:
            return await evaluate_expression(str(source), {"input": target})
        except CodeExecutionError as e:
            logger.warning(f"Condition expression failed, treating as false: {e}")
            return False

    check = OPERATORS.get(operator)
    if check is None:
        logger.warning(f"Unknown condition operator '{operator}', treating as false")
        return False
    return check(target, value)


@register_handler(NodeType.CONDITION)
class ConditionHandler(NodeHandler):
    """
    ``conditions`` is a list of {variable, operator, value} combined with
    ``logicalOperator`` (AND by default). Without it, the single-condition
    shape is read: conditionType / conditionValue / expression against
    conditionVariable, targetVariable or the previous output.
    """

    def handle_for(self, output: Any) -> str | None:
        return "true" if output else "false"

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        conditions = data.get("conditions") or []

        if conditions:
            results = []
            for condition in conditions:
                target = step.resolve_variable(condition.get("variable") or "")
                results.append(
                    await evaluate_condition(
                        target,
                        condition.get("operator") or "contains",
                        step.resolve(condition.get("value")),
                    )
                )
            if (data.get("logicalOperator") or "AND").upper() == "OR":
                outcome = any(results)
            else:
                outcome = all(results)
        else:
            outcome = await self._legacy(step)

        logger.info(f"⑂ Condition '{step.node_id}' -> {outcome}")
        return StepOutput(output=outcome, handle=self.handle_for(outcome))

    async def _legacy(self, step: StepContext) -> bool:
        data = step.data
        selector = data.get("conditionVariable") or data.get("targetVariable")
        target = step.resolve_variable(selector) if selector else step.previous_output()

        operator = data.get("conditionType")
        if not operator and data.get("expression"):
            operator = "js_expression"
        return await evaluate_condition(
            target,
            operator or "contains",
            step.resolve(data.get("conditionValue")),
            data.get("expression"),
        )
