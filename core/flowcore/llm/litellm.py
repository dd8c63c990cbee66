"""LiteLLM-backed provider: one interface over OpenAI, Anthropic, local models, etc."""

import json
import logging
from typing import Any

import litellm

from flowcore.config import get_api_base, get_api_key, get_default_model
from flowcore.llm.provider import LLMProvider, LLMResponse, Tool, ToolUse

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    Provider for any model string LiteLLM understands.

    Example:
        llm = LiteLLMProvider(model="openai/gpt-4o-mini")
        response = await llm.generate("Summarise today's logs")
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.7,
        timeout: float = 30.0,
        num_retries: int = 2,
    ):
        self.model = model or get_default_model()
        self.api_key = api_key or get_api_key()
        self.api_base = api_base or get_api_base()
        self.temperature = temperature
        self.timeout = timeout
        self.num_retries = num_retries

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        system: str,
        tools: list[Tool] | None,
        max_tokens: int,
        response_format: dict[str, Any] | None,
        json_mode: bool,
        temperature: float | None,
    ) -> dict[str, Any]:
        full_messages = [{"role": "system", "content": system}] if system else []
        full_messages.extend(messages)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": full_messages,
            "max_tokens": max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "timeout": self.timeout,
            "num_retries": self.num_retries,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if tools:
            kwargs["tools"] = [t.to_openai() for t in tools]
        if response_format:
            kwargs["response_format"] = response_format
        elif json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    def _parse_response(self, response: Any) -> LLMResponse:
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        for call in getattr(message, "tool_calls", None) or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Tool '{call.function.name}' called with invalid JSON arguments")
                arguments = {"_raw": call.function.arguments}
            tool_calls.append(ToolUse(id=call.id, name=call.function.name, input=arguments))

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=message.content or "",
            model=getattr(response, "model", None) or self.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            tool_calls=tool_calls,
            raw_response=response,
        )

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
        kwargs = self._build_kwargs(
            messages, system, tools, max_tokens, response_format, json_mode, temperature
        )
        return self._parse_response(litellm.completion(**kwargs))

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
        kwargs = self._build_kwargs(
            messages, system, tools, max_tokens, response_format, json_mode, temperature
        )
        return self._parse_response(await litellm.acompletion(**kwargs))
