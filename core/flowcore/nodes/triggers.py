"""Trigger nodes: start, webhook and cron_trigger."""

import logging
from datetime import UTC, datetime
from typing import Any

from flowcore.graph.context import now_ms
from flowcore.graph.definition import NodeType
from flowcore.nodes.base import NodeHandler, StepContext, StepOutput, register_handler

logger = logging.getLogger(__name__)

VISUAL_FIELDS = ("frequency", "time", "daysOfWeek", "daysOfMonth", "interval", "minute")


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def generate_cron(config: dict[str, Any]) -> str:
    """
    Six-field cron (sec min hour dom month dow) for a visual schedule.

    >>> generate_cron({"frequency": "weekly", "time": "08:15", "daysOfWeek": "1,3"})
    '0 15 8 * * 1,3'
    """
    frequency = config.get("frequency")
    hour_part, _, minute_part = (config.get("time") or "09:00").partition(":")
    hour, minute = _int(hour_part), _int(minute_part)
    interval = _int(config.get("interval"), 1)
    target_minute = _int(config["minute"]) if config.get("minute") is not None else minute

    if frequency == "minutely":
        return f"0 */{interval} * * * *" if interval > 1 else "0 * * * * *"
    if frequency == "hourly":
        if interval > 1:
            return f"0 {target_minute} */{interval} * * *"
        return f"0 {target_minute} * * * *"
    if frequency == "daily":
        return f"0 {minute} {hour} * * *"
    if frequency == "weekly":
        return f"0 {minute} {hour} * * {config.get('daysOfWeek') or '1'}"
    if frequency == "monthly":
        return f"0 {minute} {hour} {config.get('daysOfMonth') or '1'} * *"
    return "0 */30 * * * *"


def parse_cron(expression: str) -> dict[str, Any]:
    """
    Best-effort inverse of generate_cron. Accepts five- or six-field
    expressions; returns {} when the expression is too short.
    """
    parts = (expression or "").split()
    if len(parts) < 5:
        return {}
    if len(parts) >= 6:
        parts = parts[1:]
    minute, hour, dom, month, dow = parts[:5]

    def clock() -> str:
        return f"{_int(hour):02d}:{_int(minute):02d}"

    if hour == "*" and dom == "*" and month == "*" and dow == "*":
        if "/" in minute:
            return {"frequency": "minutely", "interval": _int(minute.split("/")[1], 1)}
        if minute == "*":
            return {"frequency": "minutely", "interval": 1}

    if dom == "*" and month == "*" and dow == "*":
        if "/" in hour:
            return {
                "frequency": "hourly",
                "interval": _int(hour.split("/")[1], 1),
                "minute": _int(minute),
            }
        if hour == "*":
            return {"frequency": "hourly", "interval": 1, "minute": _int(minute)}

    if dow != "*":
        return {"frequency": "weekly", "time": clock(), "daysOfWeek": dow}
    if dom != "*":
        return {"frequency": "monthly", "time": clock(), "daysOfMonth": dom}
    return {"frequency": "daily", "time": clock()}


@register_handler(NodeType.START, NodeType.WEBHOOK)
class TriggerHandler(NodeHandler):
    """Emits the raw trigger payload."""

    async def execute(self, step: StepContext) -> StepOutput:
        return StepOutput(output=step.context.input)


@register_handler(NodeType.CRON_TRIGGER)
class CronTriggerHandler(NodeHandler):
    async def execute(self, step: StepContext) -> StepOutput:
        data = step.data
        schedule_type = data.get("scheduleType") or "visual"

        if schedule_type == "cron":
            config = {"cron": data.get("cron")}
            expression = data.get("cron")
        else:
            config = {key: data[key] for key in VISUAL_FIELDS if key in data}
            expression = generate_cron(config) if config.get("frequency") else None

        logger.info(
            f"⏰ Cron trigger '{step.node.label}' fired",
            extra={"node_id": step.node_id},
        )
        output = {
            "triggeredAt": datetime.now(UTC).isoformat(),
            "timestamp": now_ms(),
            "scheduleType": schedule_type,
            "config": config,
            "input": step.context.input,
        }
        if expression:
            output["cronExpression"] = expression
        return StepOutput(output=output)
