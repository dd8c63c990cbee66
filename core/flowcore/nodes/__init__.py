"""
Step handlers, one per node type.

Importing this package registers every handler in HANDLERS.
"""

from flowcore.nodes import (  # noqa: F401
    agent,
    classifier,
    code,
    condition,
    http,
    iteration,
    knowledge,
    llm,
    loop,
    notification,
    output,
    triggers,
    variables,
)
from flowcore.nodes.base import (
    HANDLERS,
    EngineServices,
    NodeHandler,
    StepContext,
    StepOutput,
    get_handler,
    register_handler,
)

__all__ = [
    "HANDLERS",
    "EngineServices",
    "NodeHandler",
    "StepContext",
    "StepOutput",
    "get_handler",
    "register_handler",
]
