"""Deterministic provider for tests and offline runs."""

from collections.abc import Callable
from typing import Any

from flowcore.llm.provider import LLMProvider, LLMResponse, Tool


class MockLLMProvider(LLMProvider):
    """
    Plays back scripted responses in order, then repeats ``default``.

    Scripts may be plain strings or full LLMResponse objects (to script
    tool calls). A ``responder`` callable, when given, is consulted
    instead of the script: responder(messages, system) -> str | LLMResponse.
    Every call is recorded in ``calls`` for assertions.
    """

    def __init__(
        self,
        responses: list[str | LLMResponse] | None = None,
        default: str = "",
        responder: Callable[[list[dict[str, Any]], str], str | LLMResponse] | None = None,
        model: str = "mock-model",
    ):
        self._responses = list(responses or [])
        self._default = default
        self._responder = responder
        self.model = model
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

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
        self.calls.append(
            {
                "messages": list(messages),
                "system": system,
                "tools": [t.name for t in tools or []],
                "response_format": response_format,
                "json_mode": json_mode,
            }
        )

        if self._responder is not None:
            reply = self._responder(messages, system)
        elif self._responses:
            reply = self._responses.pop(0)
        else:
            reply = self._default

        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(
            content=reply,
            model=self.model,
            input_tokens=sum(len(str(m.get("content", ""))) for m in messages) // 4,
            output_tokens=len(reply) // 4,
            stop_reason="stop",
        )
