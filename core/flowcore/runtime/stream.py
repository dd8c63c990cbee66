"""
NDJSON progress stream for a single run.

Subscribes a queue to the executor's event bus, runs the workflow as a
task and yields one encoded line per wire event: node updates in the
order they happened, then exactly one ``final`` (or one ``error``).
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from flowcore.graph.cancellation import CancellationToken
from flowcore.runtime.event_bus import WIRE_EVENTS, EventBus, EventType, WorkflowEvent

if TYPE_CHECKING:
    from flowcore.graph.definition import WorkflowDefinition
    from flowcore.graph.executor import WorkflowExecutor, WorkflowResult

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset({EventType.RUN_FINAL, EventType.RUN_ERROR})


def error_line(message: str) -> str:
    return WorkflowEvent(type=EventType.RUN_ERROR, run_id="", data={"error": message}).to_ndjson()


def final_line(result: "WorkflowResult") -> str:
    return WorkflowEvent(
        type=EventType.RUN_FINAL, run_id=result.run_id, data={"result": result.to_dict()}
    ).to_ndjson()


async def stream_workflow(
    executor: "WorkflowExecutor",
    definition: "WorkflowDefinition | dict[str, Any]",
    input_data: Any = None,
    cancellation: CancellationToken | None = None,
    company_id: str = "",
    employee_id: str = "",
) -> AsyncIterator[str]:
    """
    Execute ``definition`` and yield NDJSON lines as the run progresses.

    If the consumer stops iterating early the run is cancelled.
    """
    if executor.event_bus is None:
        executor.event_bus = EventBus()
    bus = executor.event_bus
    run_id = uuid.uuid4().hex
    cancellation = cancellation or CancellationToken()
    queue: asyncio.Queue[WorkflowEvent | None] = asyncio.Queue()

    async def enqueue(event: WorkflowEvent) -> None:
        await queue.put(event)

    sub_id = bus.subscribe(list(WIRE_EVENTS), enqueue, filter_run=run_id)
    task = asyncio.create_task(
        executor.execute(
            definition,
            input_data,
            cancellation=cancellation,
            company_id=company_id,
            employee_id=employee_id,
            run_id=run_id,
        )
    )
    # Wakes the reader when the run task dies without a terminal event
    task.add_done_callback(lambda _: queue.put_nowait(None))

    finished = False
    try:
        while True:
            event = await queue.get()
            if event is None:
                if task.cancelled():
                    yield error_line(cancellation.reason or "Workflow execution cancelled")
                    finished = True
                    break
                if task.exception() is not None:
                    error = task.exception()
                    logger.error(f"✗ Stream for run {run_id} failed: {error}")
                    yield error_line(str(error) or error.__class__.__name__)
                    finished = True
                    break
                yield final_line(task.result())
                finished = True
                break
            yield event.to_ndjson()
            if event.type in TERMINAL_EVENTS:
                finished = True
                break
    finally:
        bus.unsubscribe(sub_id)
        if not finished:
            cancellation.cancel("Stream consumer disconnected")
        if not task.done():
            await asyncio.wait({task}, timeout=5)
        if not task.done():
            task.cancel()
