"""
Execution context - per-run store of node results.

One ExecutionContext exists per run (and per nested sub-run or parallel
iteration branch). It grows monotonically: a node's terminal result is
written exactly once and read many times by downstream resolution.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowcore.errors import WorkflowError


class NodeStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.SKIPPED})


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class NodeResult:
    """Outcome of one node in one run."""

    node_id: str
    type: str
    label: str
    status: NodeStatus = NodeStatus.IDLE
    output: Any = None
    error: str | None = None
    start_time: int = field(default_factory=now_ms)
    end_time: int | None = None
    duration: int | None = None
    attempts: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def finish(self, status: NodeStatus, output: Any = None, error: str | None = None) -> None:
        self.status = status
        self.output = output
        self.error = error
        self.end_time = now_ms()
        self.duration = self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase, as streamed to clients)."""
        data: dict[str, Any] = {
            "nodeId": self.node_id,
            "type": self.type,
            "label": self.label,
            "status": self.status.value,
            "output": self.output,
            "startTime": self.start_time,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.end_time is not None:
            data["endTime"] = self.end_time
        if self.duration is not None:
            data["duration"] = self.duration
        if self.attempts:
            data["attempts"] = self.attempts
        if self.extra:
            data.update(self.extra)
        return data


class ExecutionContext:
    """
    Mutable mapping node_id -> NodeResult for a single run.

    Also carries the raw trigger input (``__input__``), named variables
    bound by variable_assignment nodes and ``sys.timestamp``. Never shared
    between runs: sub-runs and parallel branches build their own.
    """

    def __init__(
        self,
        input_data: Any = None,
        variables: dict[str, Any] | None = None,
        run_id: str | None = None,
        company_id: str = "",
        employee_id: str = "",
    ):
        self.run_id = run_id or uuid.uuid4().hex
        self.input = input_data
        self.company_id = company_id
        self.employee_id = employee_id
        self.variables: dict[str, Any] = {
            **(variables or {}),
            "__input__": input_data,
            "sys.timestamp": str(now_ms()),
        }
        self._results: dict[str, NodeResult] = {}
        self._order: list[str] = []

    def record(self, result: NodeResult) -> None:
        """Store a terminal result. A node settles at most once per run."""
        if result.status not in TERMINAL_STATUSES:
            raise WorkflowError(f"Cannot record non-terminal status '{result.status}'")
        if result.node_id in self._results:
            raise WorkflowError(f"Node '{result.node_id}' already has a result in this run")
        self._results[result.node_id] = result
        self._order.append(result.node_id)

    def get_result(self, node_id: str) -> NodeResult | None:
        return self._results.get(node_id)

    def has_result(self, node_id: str) -> bool:
        return node_id in self._results

    def completed_output(self, node_id: str) -> Any:
        """Output of a completed node, None for anything else."""
        result = self._results.get(node_id)
        if result is None or result.status != NodeStatus.COMPLETED:
            return None
        return result.output

    def bind_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value

    @property
    def results(self) -> list[NodeResult]:
        """Results in the order nodes settled."""
        return [self._results[node_id] for node_id in self._order]

    def completed(self) -> list[NodeResult]:
        return [r for r in self.results if r.status == NodeStatus.COMPLETED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "input": self.input,
            "variables": {k: v for k, v in self.variables.items() if k != "__input__"},
            "nodeResults": [r.to_dict() for r in self.results],
        }
