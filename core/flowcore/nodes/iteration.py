"""
Iteration node: run the private sub-graph once per item of a list.

Items run sequentially or in parallel (bounded by ``parallelism``). Each
item gets its own sub-run and ExecutionContext with the item as input and
``item`` / ``index`` bound as variables. Outputs keep the item order.

Per-item failure policy (``errorHandling``):
    terminate      first failure fails the node (default)
    continue       the failed item's slot becomes None
    remove_failed  the failed item is dropped from the output
"""

import asyncio
import json
import logging
from typing import Any

from flowcore.errors import IterationError, WorkflowError
from flowcore.graph.definition import NodeType
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler

logger = logging.getLogger(__name__)

TERMINATE = "terminate"
CONTINUE = "continue"
REMOVE_FAILED = "remove_failed"
ITEM_POLICIES = (TERMINATE, CONTINUE, REMOVE_FAILED)


def resolve_items(value: Any) -> list[Any]:
    """
    Coerce the iteration target into a list.

    Lists pass through, JSON text is decoded, other text is split on
    commas and any other single value is wrapped.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except ValueError:
            return [part.strip() for part in text.split(",") if part.strip()]
        return parsed if isinstance(parsed, list) else [parsed]
    return [value]


@register_handler(NodeType.ITERATION)
class IterationHandler(NodeHandler):
    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        sub_graph = step.definition.sub_graph(step.node_id)
        if sub_graph is None:
            raise WorkflowError(f"Iteration node '{step.node_id}' has no sub-graph")

        if data.get("iterationVariable"):
            target = step.resolve_variable(data["iterationVariable"])
        elif data.get("input") not in (None, ""):
            target = step.resolve(data["input"])
        else:
            target = step.previous_output()
        items = resolve_items(target)

        mode = data.get("processingMode") or (
            "parallel" if data.get("isParallel") else "sequential"
        )
        policy = data.get("errorHandling") or TERMINATE
        if policy not in ITEM_POLICIES:
            policy = TERMINATE

        logger.info(
            f"🔁 Iteration '{step.node_id}': {len(items)} item(s), {mode}, on error {policy}",
            extra={"node_id": step.node_id},
        )

        sub_runs: list[list[dict[str, Any]]] = [[] for _ in items]

        async def run_item(index: int, item: Any) -> Any:
            result = await step.run_sub_graph(sub_graph, item, {"item": item, "index": index})
            sub_runs[index] = [r.to_dict() for r in result.node_results]
            if not result.success:
                raise IterationError(f"Iteration {index} failed: {result.error}", index)
            return result.final_output

        if mode == "parallel":
            limit = max(int(data.get("parallelism") or step.config.iteration_parallelism), 1)
            semaphore = asyncio.Semaphore(limit)

            async def bounded(index: int, item: Any) -> Any:
                async with semaphore:
                    return await run_item(index, item)

            settled = await asyncio.gather(
                *(bounded(i, item) for i, item in enumerate(items)), return_exceptions=True
            )
        else:
            settled = []
            for index, item in enumerate(items):
                try:
                    settled.append(await run_item(index, item))
                except IterationError as e:
                    if policy == TERMINATE:
                        raise
                    settled.append(e)

        outputs: list[Any] = []
        failures = 0
        for index, value in enumerate(settled):
            if isinstance(value, IterationError):
                failures += 1
                if policy == TERMINATE:
                    raise value
                logger.warning(f"   Iteration '{step.node_id}' item {index}: {value}")
                if policy == CONTINUE:
                    outputs.append(None)
            elif isinstance(value, BaseException):
                raise value
            else:
                outputs.append(value)

        return StepOutput(
            output={
                "items": outputs,
                "count": len(outputs),
                "processingMode": mode,
                "errorHandling": policy,
            },
            extra={"subRuns": sub_runs, "failedItems": failures},
        )
