"""LLM provider abstraction."""

from flowcore.llm.litellm import LiteLLMProvider
from flowcore.llm.mock import MockLLMProvider
from flowcore.llm.provider import LLMProvider, LLMResponse, Tool, ToolResult, ToolUse

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Tool",
    "ToolUse",
    "ToolResult",
    "LiteLLMProvider",
    "MockLLMProvider",
]
