"""
Run reporting: the event bus and its NDJSON and HTTP consumers.

The stream and server modules import the executor, so import them by
their module path (flowcore.runtime.stream, flowcore.runtime.stream_server).
"""

from flowcore.runtime.event_bus import EventBus, EventType, Subscription, WorkflowEvent

__all__ = ["EventBus", "EventType", "Subscription", "WorkflowEvent"]
