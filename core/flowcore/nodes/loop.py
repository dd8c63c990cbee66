"""Loop and exit_loop nodes."""

import logging
from typing import Any

from flowcore.errors import CodeExecutionError, IterationError, WorkflowError
from flowcore.graph.context import NodeStatus
from flowcore.graph.definition import NodeType
from flowcore.graph.variables import decode_json
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler
from flowcore.sandbox import evaluate_expression

logger = logging.getLogger(__name__)


def _exit_requested(result) -> bool:
    return any(
        r.type == NodeType.EXIT_LOOP and r.status == NodeStatus.COMPLETED
        for r in result.node_results
    )


@register_handler(NodeType.LOOP)
class LoopHandler(NodeHandler):
    """
    Re-run the private sub-graph up to ``maxLoops`` times.

    State starts from ``loopVariables`` ([{name, initialValue}]). Each
    sub-run receives {iterationIndex, state, **state} as input; when its
    final output is an object, keys matching state variables overwrite
    them. The loop stops early when a sub-run completes an exit_loop node
    or when ``loopCondition`` (JS, with state, ``input`` and
    ``iterationIndex`` bound) evaluates true.
    """

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        sub_graph = step.definition.sub_graph(step.node_id)
        if sub_graph is None:
            raise WorkflowError(f"Loop node '{step.node_id}' has no sub-graph")

        max_loops = int(data.get("maxLoops") or step.config.default_max_loops)
        state: dict[str, Any] = {}
        for variable in data.get("loopVariables") or []:
            if isinstance(variable, dict) and variable.get("name"):
                state[variable["name"]] = decode_json(step.resolve(variable.get("initialValue")))
        condition = data.get("loopCondition")

        logger.info(
            f"🔁 Loop '{step.node_id}': up to {max_loops} run(s), state {sorted(state)}",
            extra={"node_id": step.node_id},
        )

        iterations: list[Any] = []
        sub_runs: list[list[dict[str, Any]]] = []
        exited = False
        for index in range(max_loops):
            step.cancellation.raise_if_cancelled()
            sub_input = {"iterationIndex": index, "state": dict(state), **state}
            variables = {"iterationIndex": index, **state}
            result = await step.run_sub_graph(sub_graph, sub_input, variables)
            sub_runs.append([r.to_dict() for r in result.node_results])
            if not result.success:
                raise IterationError(f"Loop iteration {index} failed: {result.error}", index)

            output = result.final_output
            iterations.append(output)

            if _exit_requested(result):
                logger.info(f"   Loop '{step.node_id}' exited by signal at iteration {index}")
                exited = True
                break

            decoded = decode_json(output)
            if isinstance(decoded, dict):
                for key in state:
                    if key in decoded:
                        state[key] = decoded[key]

            if condition:
                bindings = {**state, "input": output, "iterationIndex": index}
                try:
                    stop = await evaluate_expression(condition, bindings)
                except CodeExecutionError as e:
                    logger.warning(f"Loop '{step.node_id}' condition failed, continuing: {e}")
                    stop = False
                if stop:
                    logger.info(f"   Loop '{step.node_id}' condition met at iteration {index}")
                    exited = True
                    break

        return StepOutput(
            output={
                "output": iterations,
                "items": iterations,
                "iterations": len(iterations),
                "totalIterations": len(iterations),
                "finalState": state,
                "exited": exited,
            },
            extra={"subRuns": sub_runs},
        )


@register_handler(NodeType.EXIT_LOOP)
class ExitLoopHandler(NodeHandler):
    """Marks the enclosing loop for exit; the loop node acts on it."""

    async def execute(self, step: StepContext) -> StepOutput:
        message = step.interpolate(step.data.get("message") or "Exit Loop signal")
        return StepOutput(output={"signal": "break", "message": message, "isExitSignal": True})
