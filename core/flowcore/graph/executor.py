"""
Workflow Executor - walks a definition from its triggers to completion.

The executor:
1. Validates the definition (no node runs on a graph error)
2. Prunes nodes unreachable from the entry nodes
3. Runs ready nodes one at a time, in definition order
4. Wraps every handler call in the retry/timeout policy
5. Routes branching nodes through their selected handle, skipping the
   nodes whose inbound edges all went dead
6. Reports every transition and one final result on the event bus

Loop and iteration handlers re-enter the executor for their private
sub-graphs; those nested runs get a fresh ExecutionContext and do not
report to the event bus.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from flowcore.config import EngineConfig
from flowcore.errors import (
    GraphValidationError,
    NodeExecutionError,
    WorkflowCancelledError,
    WorkflowError,
)
from flowcore.graph.cancellation import CancellationToken
from flowcore.graph.context import ExecutionContext, NodeResult, NodeStatus, now_ms
from flowcore.graph.definition import (
    NodeSpec,
    NodeType,
    WorkflowDefinition,
)
from flowcore.graph.retry import RetryPolicy, run_with_policy
from flowcore.llm.provider import LLMProvider
from flowcore.nodes.base import EngineServices, StepContext, StepOutput, get_handler
from flowcore.observability import clear_run_context, set_run_context
from flowcore.runtime.event_bus import EventBus
from flowcore.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """Result of executing a workflow."""

    success: bool
    final_output: Any = None
    node_results: list[NodeResult] = field(default_factory=list)
    total_duration: int = 0
    error: str | None = None
    unreachable: list[str] = field(default_factory=list)
    run_id: str = ""

    def get(self, node_id: str) -> NodeResult | None:
        for result in self.node_results:
            if result.node_id == node_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        """Payload of the ``final`` event."""
        data: dict[str, Any] = {
            "success": self.success,
            "finalOutput": self.final_output,
            "nodeResults": [r.to_dict() for r in self.node_results],
            "totalDuration": self.total_duration,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def _final_output(context: ExecutionContext) -> Any:
    completed = context.completed()
    for result in reversed(completed):
        if result.type == NodeType.OUTPUT:
            return result.output
    return completed[-1].output if completed else None


def _edge_live(node: NodeSpec, source_handle: str | None, handle: str | None) -> bool:
    if node.type == NodeType.CONDITION:
        # Unlabelled edges out of a condition follow the true branch
        return (source_handle or "true") == handle
    if node.type == NodeType.QUESTION_CLASSIFIER:
        return source_handle is None or source_handle == handle
    return True


def _schema_errors(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in item['loc']) or 'definition'}: {item['msg']}"
        for item in error.errors()
    ]


class WorkflowExecutor:
    """
    Executes workflow definitions.

    Example:
        executor = WorkflowExecutor(llm=LiteLLMProvider(), tools=registry)
        result = await executor.execute(definition, input_data="New ticket: ...")
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        tools: ToolRegistry | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the executor.

        Args:
            llm: Resolved model handle for llm/agent/classifier nodes
            tools: Tool implementations keyed by tool id
            config: Engine limits (timeouts, parallelism)
            event_bus: Where progress events are published
            http_client: Shared client for http_request nodes
        """
        self.services = EngineServices(
            llm=llm,
            tools=tools or ToolRegistry(),
            config=config or EngineConfig(),
            http_client=http_client,
        )
        self.event_bus = event_bus

    async def execute(
        self,
        definition: WorkflowDefinition | dict[str, Any],
        input_data: Any = None,
        cancellation: CancellationToken | None = None,
        variables: dict[str, Any] | None = None,
        company_id: str = "",
        employee_id: str = "",
        run_id: str | None = None,
    ) -> WorkflowResult:
        """
        Run a workflow to completion.

        Never raises for workflow-level problems: graph errors, node
        failures and cancellation all come back as ``success=False``.
        Exactly one terminal event is published per call: ``final``, or
        ``error`` when an unexpected exception escaped every node boundary.
        """
        invalid: GraphValidationError | None = None
        if isinstance(definition, dict):
            raw = definition
            try:
                definition = WorkflowDefinition.model_validate(raw)
            except ValidationError as e:
                invalid = GraphValidationError(_schema_errors(e))
                definition = WorkflowDefinition(id=str(raw.get("id") or "workflow"))
        cancellation = cancellation or CancellationToken()
        context = ExecutionContext(
            input_data=input_data,
            variables=variables,
            run_id=run_id,
            company_id=company_id,
            employee_id=employee_id,
        )

        set_run_context(run_id=context.run_id, workflow_id=definition.id)
        tool_token = ToolRegistry.set_execution_context(
            company_id=company_id, employee_id=employee_id, run_id=context.run_id
        )
        started = now_ms()
        logger.info(
            f"🚀 Starting workflow {definition.id} "
            f"({len(definition.nodes)} nodes, {len(definition.edges)} edges)"
        )
        if self.event_bus:
            await self.event_bus.emit_run_started(context.run_id, definition.id, input_data)

        fatal = False
        try:
            if invalid:
                raise invalid
            result = await self._run(definition, context, cancellation, report=True)
        except GraphValidationError as e:
            logger.error(f"✗ {e}")
            result = self._failed(context, str(e))
        except WorkflowCancelledError as e:
            logger.warning(f"⏹ Workflow {definition.id} cancelled: {e}")
            result = self._failed(context, str(e))
        except Exception as e:
            logger.exception(f"✗ Workflow {definition.id} aborted by unexpected error")
            result = self._failed(context, str(e) or e.__class__.__name__)
            fatal = True
        finally:
            ToolRegistry.reset_execution_context(tool_token)

        result.total_duration = now_ms() - started
        if result.success:
            logger.info(f"✓ Workflow {definition.id} completed in {result.total_duration}ms")
        else:
            logger.error(f"✗ Workflow {definition.id} failed: {result.error}")

        try:
            if self.event_bus and fatal:
                await self.event_bus.emit_run_error(context.run_id, result.error or "")
            elif self.event_bus:
                await self.event_bus.emit_run_final(context.run_id, result.to_dict())
        finally:
            clear_run_context()
        return result

    def _failed(self, context: ExecutionContext, error: str) -> WorkflowResult:
        return WorkflowResult(
            success=False,
            final_output=_final_output(context),
            node_results=context.results,
            error=error,
            run_id=context.run_id,
        )

    def _sub_runner(self, parent: ExecutionContext, cancellation: CancellationToken):
        async def run_sub_graph(
            definition: WorkflowDefinition,
            input_data: Any,
            variables: dict[str, Any] | None = None,
        ) -> WorkflowResult:
            inherited = {
                k: v
                for k, v in parent.variables.items()
                if k not in ("__input__", "sys.timestamp")
            }
            context = ExecutionContext(
                input_data=input_data,
                variables={**inherited, **(variables or {})},
                company_id=parent.company_id,
                employee_id=parent.employee_id,
            )
            started = now_ms()
            result = await self._run(definition, context, cancellation, report=False)
            result.total_duration = now_ms() - started
            return result

        return run_sub_graph

    async def _run(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        cancellation: CancellationToken,
        report: bool,
    ) -> WorkflowResult:
        """
        Walk one scope.

        Raises:
            GraphValidationError: the definition is malformed
            WorkflowCancelledError: the run was cancelled
        """
        errors = definition.validate(require_trigger=report)
        if errors:
            raise GraphValidationError(errors)

        reachable = definition.reachable_nodes()
        unreachable = definition.unreachable_nodes()
        if unreachable:
            logger.info(f"   Pruned unreachable nodes: {', '.join(unreachable)}")

        pending = [n for n in definition.top_level_nodes() if n.id in reachable]
        edges = [
            e
            for e in definition.top_level_edges()
            if e.source in reachable and e.target in reachable
        ]
        incoming: dict[str, list[int]] = {n.id: [] for n in pending}
        outgoing: dict[str, list[int]] = {n.id: [] for n in pending}
        for index, edge in enumerate(edges):
            incoming[edge.target].append(index)
            outgoing[edge.source].append(index)
        # None = source not settled yet, True = live, False = dead
        edge_state: list[bool | None] = [None] * len(edges)

        while pending:
            node = next(
                (n for n in pending if all(edge_state[i] is not None for i in incoming[n.id])),
                None,
            )
            if node is None:
                # Unreachable for a validated acyclic graph
                raise WorkflowError(f"Scheduler stalled with pending nodes in {definition.id}")
            pending.remove(node)
            cancellation.raise_if_cancelled()

            if incoming[node.id] and not any(edge_state[i] for i in incoming[node.id]):
                await self._skip(node, context, report)
                for i in outgoing[node.id]:
                    edge_state[i] = False
                continue

            result, step_output = await self._execute_node(
                node, definition, context, cancellation, report
            )
            if result.status == NodeStatus.FAILED:
                return WorkflowResult(
                    success=False,
                    final_output=_final_output(context),
                    node_results=context.results,
                    error=f"Node '{node.id}' failed: {result.error}",
                    unreachable=unreachable,
                    run_id=context.run_id,
                )

            for i in outgoing[node.id]:
                edge_state[i] = _edge_live(node, edges[i].source_handle, step_output.handle)

        return WorkflowResult(
            success=True,
            final_output=_final_output(context),
            node_results=context.results,
            unreachable=unreachable,
            run_id=context.run_id,
        )

    async def _skip(self, node: NodeSpec, context: ExecutionContext, report: bool) -> None:
        result = NodeResult(node_id=node.id, type=node.type, label=node.label)
        result.finish(NodeStatus.SKIPPED)
        context.record(result)
        logger.info(f"   ⤼ Skipped {node.id} (no live inbound edge)")
        if report and self.event_bus:
            await self.event_bus.emit_node_update(context.run_id, node.id, NodeStatus.SKIPPED)

    async def _execute_node(
        self,
        node: NodeSpec,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        cancellation: CancellationToken,
        report: bool,
    ) -> tuple[NodeResult, StepOutput]:
        result = NodeResult(
            node_id=node.id, type=node.type, label=node.label, status=NodeStatus.RUNNING
        )
        if report and self.event_bus:
            await self.event_bus.emit_node_update(context.run_id, node.id, NodeStatus.RUNNING)

        handler = get_handler(node.type)
        policy = RetryPolicy.from_node_data(
            node.data, handler.default_timeout_ms(self.services.config)
        )
        if handler.owns_timeout:
            policy.timeout_ms = None

        step = StepContext(
            node=node,
            definition=definition,
            context=context,
            services=self.services,
            run_sub_graph=self._sub_runner(context, cancellation),
            cancellation=cancellation,
        )
        if report:
            set_run_context(node_id=node.id)
        logger.info(f"   ▶ {node.id} ({node.type})", extra={"node_id": node.id})

        async def on_retry(attempt: int, error: str) -> None:
            if report and self.event_bus:
                await self.event_bus.emit_node_retry(context.run_id, node.id, attempt, error)

        try:
            outcome = await run_with_policy(
                lambda: handler.execute(step), policy, node.id, on_retry=on_retry
            )
        except NodeExecutionError as e:
            result.attempts = policy.max_attempts
            result.finish(NodeStatus.FAILED, error=str(e))
            await self._settle(result, context, report)
            return result, StepOutput()
        except WorkflowCancelledError as e:
            result.finish(NodeStatus.FAILED, error=str(e))
            await self._settle(result, context, report)
            raise

        result.attempts = outcome.attempts
        if outcome.substituted:
            step_output = StepOutput(
                output=outcome.value, handle=handler.handle_for(outcome.value)
            )
            result.extra["error_tolerated"] = True
            result.finish(NodeStatus.COMPLETED, step_output.output, error=outcome.tolerated_error)
        else:
            step_output = outcome.value
            result.extra.update(step_output.extra)
            result.finish(NodeStatus.COMPLETED, step_output.output)

        logger.info(
            f"   ✓ {node.id} completed in {result.duration}ms",
            extra={"node_id": node.id, "latency_ms": result.duration},
        )
        await self._settle(result, context, report)
        return result, step_output

    async def _settle(self, result: NodeResult, context: ExecutionContext, report: bool) -> None:
        context.record(result)
        if report and self.event_bus:
            await self.event_bus.emit_node_update(
                context.run_id, result.node_id, result.status, result.output, result.error
            )
