"""
Tests for the NDJSON progress stream.
"""

import asyncio
import json

import pytest

from flowcore.graph.cancellation import CancellationToken
from flowcore.graph.executor import WorkflowExecutor
from flowcore.nodes.base import HANDLERS, NodeHandler, StepOutput
from flowcore.runtime.stream import error_line, stream_workflow

LINEAR = {
    "id": "greeting",
    "nodes": [
        {"id": "start", "type": "start"},
        {"id": "greet", "type": "text_template", "data": {"template": "Hello {{input}}"}},
        {"id": "out", "type": "output"},
    ],
    "edges": [
        {"source": "start", "target": "greet"},
        {"source": "greet", "target": "out"},
    ],
}


class Sleeper(NodeHandler):
    async def execute(self, step):
        await step.guard(asyncio.sleep(10))
        return StepOutput(output="late")


async def _collect(agen) -> list[dict]:
    return [json.loads(line) async for line in agen]


class TestStreamWorkflow:
    @pytest.mark.asyncio
    async def test_updates_then_exactly_one_final(self):
        lines = await _collect(stream_workflow(WorkflowExecutor(), LINEAR, "Ada"))

        updates = [line for line in lines if line["type"] == "update"]
        assert [(u["nodeId"], u["status"]) for u in updates] == [
            ("start", "running"),
            ("start", "completed"),
            ("greet", "running"),
            ("greet", "completed"),
            ("out", "running"),
            ("out", "completed"),
        ]
        assert updates[3]["output"] == "Hello Ada"
        assert lines[-1]["type"] == "final"
        assert [line["type"] for line in lines].count("final") == 1
        assert lines[-1]["result"]["success"] is True
        assert lines[-1]["result"]["finalOutput"] == "Hello Ada"

    @pytest.mark.asyncio
    async def test_failed_run_still_ends_with_final(self):
        definition = {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "code", "type": "code", "data": {"code": ""}},
            ],
            "edges": [{"source": "start", "target": "code"}],
        }
        lines = await _collect(stream_workflow(WorkflowExecutor(), definition))

        failed = [line for line in lines if line.get("status") == "failed"]
        assert failed[0]["nodeId"] == "code"
        assert "has no code" in failed[0]["error"]
        assert lines[-1]["type"] == "final"
        assert lines[-1]["result"]["success"] is False

    @pytest.mark.asyncio
    async def test_unexpected_error_yields_single_error_line(self, monkeypatch):
        executor = WorkflowExecutor()

        async def explode(*args, **kwargs):
            raise RuntimeError("scheduler exploded")

        monkeypatch.setattr(executor, "_run", explode)
        lines = await _collect(stream_workflow(executor, LINEAR, "x"))

        assert lines == [{"type": "error", "error": "scheduler exploded"}]

    @pytest.mark.asyncio
    async def test_malformed_definition_yields_failed_final(self):
        lines = await _collect(stream_workflow(WorkflowExecutor(), {"nodes": "oops"}))
        assert len(lines) == 1
        assert lines[0]["type"] == "final"
        assert lines[0]["result"]["success"] is False
        assert "Invalid workflow definition" in lines[0]["result"]["error"]

    @pytest.mark.asyncio
    async def test_consumer_disconnect_cancels_run(self, monkeypatch):
        monkeypatch.setitem(HANDLERS, "message", Sleeper())
        definition = {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "wait", "type": "message"},
            ],
            "edges": [{"source": "start", "target": "wait"}],
        }
        token = CancellationToken()
        agen = stream_workflow(WorkflowExecutor(), definition, cancellation=token)

        first = json.loads(await agen.__anext__())
        assert first["nodeId"] == "start"
        await agen.aclose()

        assert token.cancelled
        assert token.reason == "Stream consumer disconnected"

    def test_error_line_shape(self):
        assert error_line("bad") == '{"type": "error", "error": "bad"}\n'
