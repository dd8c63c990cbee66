"""
Event Bus - pub/sub channel for workflow progress.

The executor publishes one event per node transition and one terminal
event per run; reporters (the NDJSON stream, the HTTP server, tests)
subscribe. Handlers run concurrently per event, but publish() returns only
after they finish, so subscribers observe events in publish order.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Wire events (streamed to clients)
    NODE_UPDATE = "update"
    RUN_FINAL = "final"
    RUN_ERROR = "error"

    # Internal observability
    RUN_STARTED = "run_started"
    NODE_RETRY = "node_retry"


WIRE_EVENTS = frozenset({EventType.NODE_UPDATE, EventType.RUN_FINAL, EventType.RUN_ERROR})


@dataclass
class WorkflowEvent:
    """An event about one run."""

    type: EventType
    run_id: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and debugging."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_wire(self) -> dict[str, Any]:
        """
        Client-facing shape.

        update: {type, nodeId, status, output, error?}
        final:  {type, result}
        error:  {type, error}
        """
        if self.type == EventType.NODE_UPDATE:
            wire = {
                "type": "update",
                "nodeId": self.node_id,
                "status": self.data.get("status"),
                "output": self.data.get("output"),
            }
            if self.data.get("error") is not None:
                wire["error"] = self.data["error"]
            return wire
        if self.type == EventType.RUN_FINAL:
            return {"type": "final", "result": self.data.get("result", {})}
        if self.type == EventType.RUN_ERROR:
            return {"type": "error", "error": self.data.get("error", "")}
        return {"type": self.type.value, **self.data}

    def to_ndjson(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, default=str) + "\n"


# Type for event handlers
EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events about this node


class EventBus:
    """
    Pub/sub event bus for run progress.

    Example:
        bus = EventBus()

        async def on_final(event: WorkflowEvent):
            print(event.to_wire())

        bus.subscribe(event_types=[EventType.RUN_FINAL], handler=on_final)
        await executor.execute(definition, "hello")
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[WorkflowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            s.handler for s in self._subscriptions.values() if self._matches(s, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: WorkflowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: WorkflowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    async def emit_run_started(
        self, run_id: str, workflow_id: str, input_data: Any = None
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.RUN_STARTED,
                run_id=run_id,
                data={"workflowId": workflow_id, "input": input_data},
            )
        )

    async def emit_node_update(
        self,
        run_id: str,
        node_id: str,
        status: str,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        """Emit a node transition (running or terminal)."""
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_UPDATE,
                run_id=run_id,
                node_id=node_id,
                data={"status": status, "output": output, "error": error},
            )
        )

    async def emit_node_retry(
        self, run_id: str, node_id: str, attempt: int, error: str
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_RETRY,
                run_id=run_id,
                node_id=node_id,
                data={"attempt": attempt, "error": error},
            )
        )

    async def emit_run_final(self, run_id: str, result: dict[str, Any]) -> None:
        """Emit the single terminal event of a run."""
        await self.publish(
            WorkflowEvent(type=EventType.RUN_FINAL, run_id=run_id, data={"result": result})
        )

    async def emit_run_error(self, run_id: str, error: str) -> None:
        await self.publish(
            WorkflowEvent(type=EventType.RUN_ERROR, run_id=run_id, data={"error": error})
        )

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        return events[:limit]

    async def wait_for(
        self,
        event_type: EventType,
        run_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> WorkflowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: WorkflowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: WorkflowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_run=run_id,
            filter_node=node_id,
        )
        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)
