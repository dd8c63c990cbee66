"""LLM Provider abstraction - the resolved model handle step handlers call."""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Tool:
    """A tool the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass
class ToolUse:
    """A tool call requested by the LLM."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ToolResult:
    """Result of executing a tool."""

    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    tool_calls: list[ToolUse] = field(default_factory=list)
    raw_response: Any = None


ToolExecutor = Callable[[ToolUse], ToolResult | Awaitable[ToolResult]]


def _assistant_tool_message(response: LLMResponse) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": response.content or None,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.input)},
            }
            for call in response.tool_calls
        ],
    }


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any backend.

    Implementations only need ``complete``. The async variants and the
    tool-use loop are built on top of it; backends with native async
    clients should override ``acomplete``.
    """

    model: str = ""

    @abstractmethod
    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        tools: list[Tool] | None = None,
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
        temperature: float | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation history [{role: "user"|"assistant"|"tool", content: str}]
            system: System prompt
            tools: Available tools for the LLM to use
            max_tokens: Maximum tokens to generate
            response_format: Optional structured output format. Use:
                - {"type": "json_object"} for basic JSON mode
                - {"type": "json_schema", "json_schema": {"name": "...", "schema": {...}}}
                  for strict JSON schema enforcement
            json_mode: If True, request JSON output
            temperature: Sampling temperature override

        Returns:
            LLMResponse with content, any requested tool calls and usage
        """
        pass

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        tools: list[Tool] | None = None,
        max_tokens: int = 1024,
        response_format: dict[str, Any] | None = None,
        json_mode: bool = False,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Async completion. Default runs ``complete`` in a worker thread."""
        return await asyncio.to_thread(
            self.complete,
            messages,
            system,
            tools,
            max_tokens,
            response_format,
            json_mode,
            temperature,
        )

    async def generate(self, prompt: str, system: str = "", **kwargs: Any) -> LLMResponse:
        """Single-turn convenience: one user message in, one response out."""
        return await self.acomplete([{"role": "user", "content": prompt}], system=system, **kwargs)

    async def acomplete_with_tools(
        self,
        messages: list[dict[str, Any]],
        system: str,
        tools: list[Tool],
        tool_executor: ToolExecutor,
        max_iterations: int = 10,
        max_tokens: int = 1024,
    ) -> tuple[LLMResponse, list[dict[str, Any]]]:
        """
        Run a tool-use loop until the LLM produces a final response.

        Args:
            messages: Initial conversation
            system: System prompt
            tools: Available tools
            tool_executor: Executes one call, sync or async: (ToolUse) -> ToolResult
            max_iterations: Max model turns that may request tools

        Returns:
            (final response, list of executed calls as {name, input, output, isError})
        """
        conversation = list(messages)
        executed: list[dict[str, Any]] = []

        for iteration in range(max_iterations):
            response = await self.acomplete(
                conversation, system=system, tools=tools, max_tokens=max_tokens
            )
            if not response.tool_calls:
                return response, executed

            conversation.append(_assistant_tool_message(response))
            for call in response.tool_calls:
                result = tool_executor(call)
                if inspect.isawaitable(result):
                    result = await result
                executed.append(
                    {
                        "name": call.name,
                        "input": call.input,
                        "output": result.content,
                        "isError": result.is_error,
                    }
                )
                conversation.append(
                    {"role": "tool", "tool_call_id": call.id, "content": result.content}
                )
            logger.debug(f"Tool loop iteration {iteration + 1}: {len(response.tool_calls)} call(s)")

        logger.warning(f"Tool loop hit max_iterations={max_iterations}, forcing final answer")
        final = await self.acomplete(conversation, system=system, max_tokens=max_tokens)
        return final, executed
