"""
Step handler protocol and the type -> handler table.

Every node type is served by exactly one NodeHandler. Handlers receive a
StepContext (resolved config helpers, the run's ExecutionContext and the
injected collaborators) and return a StepOutput or raise. Retries,
timeouts and error policies are applied around them by the executor.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from flowcore.config import EngineConfig
from flowcore.errors import WorkflowError
from flowcore.graph.cancellation import CancellationToken
from flowcore.graph.context import ExecutionContext, NodeStatus
from flowcore.graph.definition import NodeSpec, WorkflowDefinition
from flowcore.graph.variables import interpolate, resolve_value, resolve_variable
from flowcore.llm.provider import LLMProvider
from flowcore.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from flowcore.graph.executor import WorkflowResult

logger = logging.getLogger(__name__)


@dataclass
class StepOutput:
    """
    What a handler produces.

    ``handle`` selects outgoing edges on branching nodes; ``extra`` is
    merged into the node's reported result (e.g. nested node results).
    """

    output: Any = None
    handle: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class EngineServices:
    """Collaborators shared by every handler of one executor."""

    llm: LLMProvider | None = None
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    config: EngineConfig = field(default_factory=EngineConfig)
    http_client: httpx.AsyncClient | None = None
    # node id -> rolling conversation, for agents with memory enabled
    agent_memory: dict[str, list[dict[str, Any]]] = field(default_factory=dict)


SubGraphRunner = Callable[..., Awaitable["WorkflowResult"]]


@dataclass
class StepContext:
    """Everything a handler may touch while executing one node."""

    node: NodeSpec
    definition: WorkflowDefinition
    context: ExecutionContext
    services: EngineServices
    run_sub_graph: SubGraphRunner
    cancellation: CancellationToken

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def data(self) -> dict[str, Any]:
        return self.node.data

    @property
    def config(self) -> EngineConfig:
        return self.services.config

    def resolve(self, value: Any) -> Any:
        return resolve_value(value, self.context)

    def interpolate(self, template: str | None) -> str:
        return interpolate(template or "", self.context)

    def resolve_variable(self, selector: Any) -> Any:
        return resolve_variable(selector, self.context)

    def previous_output(self) -> Any:
        """
        Output of the most recently settled completed predecessor.

        Falls back to the raw run input when no predecessor completed.
        """
        sources = {e.source for e in self.definition.get_incoming_edges(self.node.id)}
        for result in reversed(self.context.results):
            if result.node_id in sources and result.status == NodeStatus.COMPLETED:
                return result.output
        return self.context.input

    def require_llm(self) -> LLMProvider:
        if self.services.llm is None:
            raise WorkflowError(f"Node '{self.node.id}' ({self.node.type}) needs an LLM provider")
        return self.services.llm

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """Await a suspension point, aborting if the run is cancelled."""
        return await self.cancellation.guard(awaitable)


class NodeHandler(ABC):
    """
    Base class for step handlers.

    Subclasses declare the node types they serve with @register_handler
    and implement ``execute``.
    """

    node_types: ClassVar[tuple[str, ...]] = ()

    # Handlers that enforce their own wall-clock limit (sandboxes) opt out
    # of the wrapper-level timeout so the more specific error surfaces.
    owns_timeout: ClassVar[bool] = False

    def default_timeout_ms(self, config: EngineConfig) -> int | None:
        return None

    def handle_for(self, output: Any) -> str | None:
        return None

    @abstractmethod
    async def execute(self, step: StepContext) -> StepOutput:
        """Run the node once. Raise on failure; the executor applies policy."""


HANDLERS: dict[str, NodeHandler] = {}


def register_handler(*node_types: str) -> Callable[[type[NodeHandler]], type[NodeHandler]]:
    """Class decorator binding a handler to one or more node types."""

    def decorator(cls: type[NodeHandler]) -> type[NodeHandler]:
        instance = cls()
        cls.node_types = tuple(str(t) for t in node_types)
        for node_type in cls.node_types:
            if node_type in HANDLERS:
                logger.warning(f"Handler for '{node_type}' replaced by {cls.__name__}")
            HANDLERS[node_type] = instance
        return cls

    return decorator


def get_handler(node_type: str) -> NodeHandler:
    handler = HANDLERS.get(node_type)
    if handler is None:
        raise WorkflowError(f"No handler registered for node type '{node_type}'")
    return handler
