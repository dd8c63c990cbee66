"""Tests for trigger nodes and the visual cron schedule helpers."""

import pytest

from flowcore.graph.executor import WorkflowExecutor
from flowcore.nodes.triggers import generate_cron, parse_cron


class TestCronHelpers:
    @pytest.mark.parametrize(
        "config,expected",
        [
            ({"frequency": "minutely"}, "0 * * * * *"),
            ({"frequency": "minutely", "interval": 5}, "0 */5 * * * *"),
            ({"frequency": "hourly", "minute": 15}, "0 15 * * * *"),
            ({"frequency": "hourly", "interval": "3", "minute": 0}, "0 0 */3 * * *"),
            ({"frequency": "daily", "time": "07:30"}, "0 30 7 * * *"),
            ({"frequency": "weekly", "time": "08:15", "daysOfWeek": "1,3"}, "0 15 8 * * 1,3"),
            ({"frequency": "monthly", "daysOfMonth": "15"}, "0 0 9 15 * *"),
            ({}, "0 */30 * * * *"),
        ],
    )
    def test_generate(self, config, expected):
        assert generate_cron(config) == expected

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("0 */5 * * * *", {"frequency": "minutely", "interval": 5}),
            ("* * * * *", {"frequency": "minutely", "interval": 1}),
            ("0 15 */3 * * *", {"frequency": "hourly", "interval": 3, "minute": 15}),
            ("30 7 * * *", {"frequency": "daily", "time": "07:30"}),
            ("0 15 8 * * 1,3", {"frequency": "weekly", "time": "08:15", "daysOfWeek": "1,3"}),
            ("0 0 9 15 * *", {"frequency": "monthly", "time": "09:00", "daysOfMonth": "15"}),
            ("* *", {}),
        ],
    )
    def test_parse(self, expression, expected):
        assert parse_cron(expression) == expected


class TestTriggerNodes:
    @pytest.mark.asyncio
    async def test_start_emits_payload(self):
        definition = {"nodes": [{"id": "start", "type": "start"}], "edges": []}
        result = await WorkflowExecutor().execute(definition, {"ticket": 1})
        assert result.final_output == {"ticket": 1}

    @pytest.mark.asyncio
    async def test_webhook_is_a_trigger(self):
        definition = {"nodes": [{"id": "hook", "type": "webhook"}], "edges": []}
        result = await WorkflowExecutor().execute(definition, {"event": "push"})
        assert result.success
        assert result.final_output == {"event": "push"}

    @pytest.mark.asyncio
    async def test_cron_trigger_visual_schedule(self):
        definition = {
            "nodes": [
                {
                    "id": "tick",
                    "type": "cron_trigger",
                    "data": {"frequency": "daily", "time": "18:00", "label": "Evening"},
                }
            ],
            "edges": [],
        }
        result = await WorkflowExecutor().execute(definition, None)

        output = result.get("tick").output
        assert output["scheduleType"] == "visual"
        assert output["config"] == {"frequency": "daily", "time": "18:00"}
        assert output["cronExpression"] == "0 0 18 * * *"
        assert output["input"] is None
        assert isinstance(output["timestamp"], int)

    @pytest.mark.asyncio
    async def test_cron_trigger_raw_expression(self):
        definition = {
            "nodes": [
                {
                    "id": "tick",
                    "type": "cron_trigger",
                    "data": {"scheduleType": "cron", "cron": "0 */10 * * * *"},
                }
            ],
            "edges": [],
        }
        result = await WorkflowExecutor().execute(definition, "manual")

        output = result.get("tick").output
        assert output["config"] == {"cron": "0 */10 * * * *"}
        assert output["cronExpression"] == "0 */10 * * * *"
        assert output["input"] == "manual"
