"""Code node: user JavaScript or Python run in a sandbox."""

import logging
from typing import Any

from flowcore.errors import WorkflowError
from flowcore.graph.definition import NodeType
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler
from flowcore.sandbox import run_javascript, run_python

logger = logging.getLogger(__name__)

JAVASCRIPT_ALIASES = frozenset({"javascript", "js", "typescript", "ts"})
PYTHON_ALIASES = frozenset({"python", "python3", "py"})


@register_handler(NodeType.CODE)
class CodeHandler(NodeHandler):
    """
    Node data:
        code / codeContent   source defining ``main``
        language             javascript (default) or python
        variables            optional {name: selector-or-template} passed as ``vars``
        input                optional templated input (defaults to previous output)
        timeout              ms, defaults to the engine's sandbox timeout
    """

    owns_timeout = True

    def _variables(self, step: StepContext) -> dict[str, Any]:
        mapping = step.data.get("variables")
        if isinstance(mapping, dict):
            return {name: step.resolve_variable(selector) for name, selector in mapping.items()}
        if isinstance(mapping, list):
            # [{name, value}] as produced by the editor
            return {
                item["name"]: step.resolve_variable(item.get("value"))
                for item in mapping
                if isinstance(item, dict) and item.get("name")
            }
        return {}

    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        code = data.get("code") or data.get("codeContent") or ""
        if not code.strip():
            raise WorkflowError(f"Code node '{step.node_id}' has no code")

        language = (data.get("language") or "javascript").lower()
        if data.get("input") not in (None, ""):
            input_data = step.resolve(data["input"])
        else:
            input_data = step.previous_output()
        variables = self._variables(step)

        if language in PYTHON_ALIASES:
            timeout_ms = int(data.get("timeout") or step.config.python_timeout_ms)
            run = run_python(
                code,
                input_data,
                variables,
                timeout_ms=timeout_ms,
                executable=step.config.python_executable,
            )
        elif language in JAVASCRIPT_ALIASES:
            timeout_ms = int(data.get("timeout") or step.config.js_timeout_ms)
            run = run_javascript(code, input_data, variables, timeout_ms=timeout_ms)
        else:
            raise WorkflowError(f"Unsupported code language '{language}'")

        result = await step.guard(run)
        logger.info(
            f"✓ Code node '{step.node_id}' ({language}) finished in {result.duration_ms}ms",
            extra={"node_id": step.node_id, "latency_ms": result.duration_ms},
        )
        return StepOutput(output=result.output, extra={"logs": result.logs} if result.logs else {})
