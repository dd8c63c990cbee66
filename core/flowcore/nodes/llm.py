"""LLM processing node (``llm`` and its legacy alias ``process``)."""

import logging
from typing import Any

from flowcore.config import EngineConfig
from flowcore.graph.definition import NodeType
from flowcore.graph.variables import stringify
from flowcore.llm.parsing import extract_json, parse_schema, validate_schema
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler

logger = logging.getLogger(__name__)


def schema_response_format(schema: dict[str, Any], name: str = "node_output") -> dict[str, Any]:
    return {"type": "json_schema", "json_schema": {"name": name, "schema": schema}}


@register_handler(NodeType.LLM, NodeType.PROCESS)
class LLMHandler(NodeHandler):
    """
    One model call.

    The system prompt is the interpolated ``prompt``. The user message is
    the interpolated ``input`` field when configured, else the previous
    node's output, else the raw run input. With ``outputSchema`` the schema
    is sent as a structured-output constraint and the reply is parsed; a
    schema that is not valid JSON is appended to the user message instead.
    """

    def default_timeout_ms(self, config: EngineConfig) -> int | None:
        return config.llm_timeout_ms

    async def execute(self, step: StepContext) -> StepOutput:
        llm = step.require_llm()
        data = step.data

        system = step.interpolate(data.get("prompt") or data.get("systemPrompt"))
        if data.get("input") not in (None, ""):
            user_value = step.resolve(data["input"])
        else:
            user_value = step.previous_output()
        user_text = stringify(user_value)

        raw_schema = data.get("outputSchema")
        schema = parse_schema(raw_schema)
        response_format = None
        if schema:
            response_format = schema_response_format(schema)
        elif isinstance(raw_schema, str) and raw_schema.strip():
            user_text += f"\n\n**Respond only with JSON in this format:**\n{raw_schema}"

        if not user_text.strip():
            # Nothing upstream: the prompt itself is the request
            user_text, system = system, ""

        logger.info(
            f"🤖 LLM node '{step.node.label}' calling {llm.model or 'model'}",
            extra={"node_id": step.node_id, "model": llm.model},
        )
        response = await step.guard(
            llm.acomplete(
                [{"role": "user", "content": user_text}],
                system=system,
                max_tokens=int(data.get("maxTokens") or 1024),
                response_format=response_format,
                temperature=data.get("temperature"),
            )
        )

        output: Any = response.content
        if raw_schema:
            parsed = extract_json(response.content)
            if parsed is not None:
                output = parsed
                if schema:
                    errors = validate_schema(parsed, schema)
                    if errors:
                        logger.warning(
                            f"LLM node '{step.node_id}' output does not match schema: "
                            f"{'; '.join(errors[:3])}"
                        )
            else:
                logger.warning(f"LLM node '{step.node_id}' returned non-JSON structured output")

        return StepOutput(
            output=output,
            extra={
                "model": response.model,
                "usage": {
                    "inputTokens": response.input_tokens,
                    "outputTokens": response.output_tokens,
                },
            },
        )
