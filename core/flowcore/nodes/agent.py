"""
Agent node: a model that may call tools.

Strategies:
    function_calling  native tool calls, bounded by maxIterations model turns
    react             text protocol (Thought / Action / Action Input /
                      Final Answer), one tool per turn, bounded likewise
    simple            no tools enabled: a single generation

Only tool ids listed in the node's ``tools`` are exposed, and only those
the registry can actually execute.
"""

import json
import logging
import re
from typing import Any

from flowcore.config import EngineConfig
from flowcore.errors import WorkflowCancelledError
from flowcore.graph.definition import NodeType
from flowcore.graph.variables import decode_json
from flowcore.llm.parsing import extract_json
from flowcore.llm.provider import LLMProvider, Tool
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler
from flowcore.tools.registry import BUILTIN_TOOLS

logger = logging.getLogger(__name__)

FUNCTION_CALLING = "function_calling"
REACT = "react"
SIMPLE = "simple"

_LABEL_END = r"\s*[:：]\s*"
_THOUGHT = re.compile(
    r"(?:Thought|思考)"
    + _LABEL_END
    + r"(.*?)(?=(?:Action|行动|Final Answer|最终答案)\s*[:：]|$)",
    re.DOTALL | re.IGNORECASE,
)
_FINAL = re.compile(
    r"(?:Final Answer|最终答案)" + _LABEL_END + r"(.*)$", re.DOTALL | re.IGNORECASE
)
_ACTION = re.compile(r"(?:Action|行动)" + _LABEL_END + r"(\S+)", re.IGNORECASE)
_ACTION_INPUT = re.compile(
    r"(?:Action Input|行动输入)"
    + _LABEL_END
    + r"(.*?)(?=\n\s*(?:Thought|思考|Action|行动)\s*[:：]|$)",
    re.DOTALL | re.IGNORECASE,
)


def parse_react_output(text: str) -> dict[str, Any]:
    """
    Split one ReAct turn into thought / action / action_input / final_answer.

    Missing parts are absent from the result. Action input is decoded as
    JSON when possible.
    """
    result: dict[str, Any] = {}
    thought = _THOUGHT.search(text)
    if thought:
        result["thought"] = thought.group(1).strip()

    final = _FINAL.search(text)
    if final:
        result["final_answer"] = final.group(1).strip()
        return result

    action = _ACTION.search(text)
    if action:
        result["action"] = action.group(1).strip()

    action_input = _ACTION_INPUT.search(text)
    if action_input:
        raw = action_input.group(1).strip()
        try:
            result["action_input"] = json.loads(raw)
        except ValueError:
            result["action_input"] = raw
    return result


def build_task_prompt(context_text: str, instruction: str, output_schema: str | None) -> str:
    prompt = f"Context:\n{context_text}\n\nInstruction: {instruction}"
    if output_schema:
        prompt += (
            "\n\n**Output requirement**: respond strictly in the JSON Schema below. "
            "Output only valid JSON, with no Markdown code fences and no explanation."
            f"\n\nJSON Schema:\n{output_schema}"
        )
    return prompt


def build_react_prompt(
    instruction: str,
    context_text: str,
    tools: list[Tool],
    observations: list[str],
    iteration: int,
    max_iterations: int,
) -> str:
    tool_lines = "\n".join(f"- {t.name}: {t.description or 'no description'}" for t in tools)
    prompt = f"""You are an assistant using the ReAct (Reasoning + Acting) framework.

## Goal
{instruction}

## Context
{context_text}

## Available tools
{tool_lines}

## Output format
Every reply must use exactly one of these formats:

Format A - call a tool:
Thought: [your reasoning]
Action: [tool name]
Action Input: [tool arguments as JSON]

Format B - give the final answer:
Thought: [your reasoning]
Final Answer: [your answer]

## Rules
- This is iteration {iteration}/{max_iterations}
- Give the final answer as soon as you have enough information
- Action Input must be valid JSON
- Call one tool per reply"""
    if observations:
        prompt += "\n\n## History\n" + "\n\n".join(observations)
    return prompt + "\n\nBegin."


def build_agent_output(
    text: str,
    tool_calls: list[dict[str, Any]],
    strategy: str,
    iterations: int,
) -> dict[str, Any]:
    parsed = extract_json(text)
    return {
        "output": parsed if isinstance(parsed, (dict, list)) else text,
        "text": text,
        "toolCalls": tool_calls,
        "strategy": strategy,
        "iterations": iterations,
    }


def select_strategy(agent_type: str | None, tools: list[Tool]) -> str:
    if tools and agent_type == REACT:
        return REACT
    if tools:
        return FUNCTION_CALLING
    return SIMPLE


@register_handler(NodeType.AGENT)
class AgentHandler(NodeHandler):
    def default_timeout_ms(self, config: EngineConfig) -> int | None:
        return config.llm_timeout_ms * 2

    def _enabled_tools(self, step: StepContext) -> list[Tool]:
        registry = step.services.tools
        enabled = []
        for tool_id in step.data.get("tools") or []:
            if tool_id not in BUILTIN_TOOLS:
                logger.warning(f"Agent '{step.node_id}': unknown tool id '{tool_id}' ignored")
            elif not registry.has_tool(tool_id):
                logger.warning(f"Agent '{step.node_id}': tool '{tool_id}' has no implementation")
            else:
                enabled.append(BUILTIN_TOOLS[tool_id])
        return enabled

    def _context_text(self, step: StepContext) -> str:
        data = step.data
        if data.get("inputVariable"):
            value = step.resolve_variable(data["inputVariable"])
        elif data.get("input") not in (None, ""):
            value = step.resolve(data["input"])
        else:
            value = step.previous_output()

        value = decode_json(value)
        if isinstance(value, dict) and value.get("output") is not None:
            value = value["output"]
        if isinstance(value, str):
            return value
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)

    async def execute(self, step: StepContext) -> StepOutput:
        llm = step.require_llm()
        data = step.data

        instruction = step.interpolate(data.get("prompt"))
        context_text = self._context_text(step)
        schema = data.get("outputSchema")
        schema_text = json.dumps(schema, indent=2) if isinstance(schema, dict) else schema
        tools = self._enabled_tools(step)
        strategy = select_strategy(data.get("agentType"), tools)
        max_iterations = int(data.get("maxIterations") or step.config.agent_max_iterations)

        memory = data.get("memory") or {}
        history = step.services.agent_memory.get(step.node_id, []) if memory.get("enabled") else []

        logger.info(
            f"🤖 Agent '{step.node.label}' [{strategy}] with tools "
            f"[{', '.join(t.name for t in tools)}]",
            extra={"node_id": step.node_id, "model": llm.model},
        )

        task_prompt = build_task_prompt(context_text, instruction, schema_text)
        if strategy == REACT:
            output = await self._react(
                step, llm, instruction, context_text, tools, max_iterations, history
            )
        elif strategy == FUNCTION_CALLING:
            output = await self._function_calling(
                step, llm, task_prompt, instruction, tools, max_iterations, history
            )
        else:
            messages = history + [{"role": "user", "content": task_prompt}]
            response = await step.guard(llm.acomplete(messages, system=instruction))
            output = build_agent_output(response.content, [], SIMPLE, 1)

        if memory.get("enabled"):
            window = int(memory.get("window") or 10)
            conversation = history + [
                {"role": "user", "content": task_prompt},
                {"role": "assistant", "content": output["text"]},
            ]
            step.services.agent_memory[step.node_id] = conversation[-window:]

        return StepOutput(output=output)

    async def _function_calling(
        self,
        step: StepContext,
        llm: LLMProvider,
        task_prompt: str,
        instruction: str,
        tools: list[Tool],
        max_iterations: int,
        history: list[dict[str, Any]],
    ) -> dict[str, Any]:
        executor = step.services.tools.make_executor(allowed={t.name for t in tools})
        response, executed = await step.guard(
            llm.acomplete_with_tools(
                history + [{"role": "user", "content": task_prompt}],
                system=instruction,
                tools=tools,
                tool_executor=executor,
                max_iterations=max_iterations,
            )
        )
        tool_calls = [
            {
                "tool": call["name"],
                "args": call["input"],
                "result": decode_json(call["output"]),
                "isError": call["isError"],
            }
            for call in executed
        ]
        logger.info(
            f"✓ Agent '{step.node_id}' function calling done: {len(tool_calls)} tool call(s)"
        )
        return build_agent_output(response.content, tool_calls, FUNCTION_CALLING, len(tool_calls))

    async def _react(
        self,
        step: StepContext,
        llm: LLMProvider,
        instruction: str,
        context_text: str,
        tools: list[Tool],
        max_iterations: int,
        history: list[dict[str, Any]],
    ) -> dict[str, Any]:
        allowed = {t.name for t in tools}
        observations: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        final_answer = ""

        for iteration in range(1, max_iterations + 1):
            prompt = build_react_prompt(
                instruction, context_text, tools, observations, iteration, max_iterations
            )
            response = await step.guard(
                llm.acomplete(history + [{"role": "user", "content": prompt}], system=instruction)
            )
            parsed = parse_react_output(response.content)

            if "final_answer" in parsed:
                final_answer = parsed["final_answer"]
                logger.info(f"✓ Agent '{step.node_id}' ReAct answered at iteration {iteration}")
                break

            action = parsed.get("action")
            if not action or "action_input" not in parsed:
                # Free text without the protocol is taken as the answer
                final_answer = response.content
                break

            action_input = parsed["action_input"]
            if action not in allowed:
                observations.append(
                    f"[Iteration {iteration}] Action: {action}\nError: tool not found"
                )
                continue

            arguments = action_input if isinstance(action_input, dict) else {"input": action_input}
            try:
                result = await step.guard(step.services.tools.execute(action, arguments))
            except WorkflowCancelledError:
                raise
            except Exception as e:
                observations.append(f"[Iteration {iteration}] Action: {action}\nError: {e}")
                tool_calls.append({"tool": action, "args": arguments, "error": str(e)})
                continue

            observation = result if isinstance(result, str) else json.dumps(
                result, indent=2, ensure_ascii=False, default=str
            )
            observations.append(
                f"[Iteration {iteration}] Action: {action}\n"
                f"Input: {json.dumps(arguments, ensure_ascii=False, default=str)}\n"
                f"Observation: {observation}"
            )
            tool_calls.append({"tool": action, "args": arguments, "result": result})

        if not final_answer:
            last = observations[-1] if observations else "none"
            final_answer = (
                f"Agent did not reach a final answer after {max_iterations} iterations.\n\n"
                f"Last observation:\n{last}"
            )

        output = build_agent_output(final_answer, tool_calls, REACT, len(observations))
        output["observations"] = observations
        return output
