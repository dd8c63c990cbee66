"""
Tests for WorkflowServer: streamed test runs and webhook triggers.
"""

import asyncio
import hashlib
import hmac as hmac_mod
import json

import aiohttp
import pytest

from flowcore.graph.executor import WorkflowExecutor
from flowcore.runtime.event_bus import EventBus, EventType
from flowcore.runtime.stream_server import (
    TEST_RUN_PATH,
    WebhookRoute,
    WorkflowServer,
    WorkflowServerConfig,
)

ECHO = {
    "id": "echo",
    "nodes": [
        {"id": "hook", "type": "webhook"},
        {"id": "out", "type": "output", "data": {"template": "got {{input.event}}"}},
    ],
    "edges": [{"source": "hook", "target": "out"}],
}


def _make_server(
    executor: WorkflowExecutor | None = None,
    routes: list[WebhookRoute] | None = None,
    company_resolver=None,
) -> WorkflowServer:
    """Helper to create a WorkflowServer with port=0 for an OS-assigned port."""
    config = WorkflowServerConfig(host="127.0.0.1", port=0)
    server = WorkflowServer(executor or WorkflowExecutor(), config, company_resolver)
    for route in routes or []:
        server.add_route(route)
    return server


def _base_url(server: WorkflowServer) -> str:
    return f"http://127.0.0.1:{server.port}"


async def _first_event(bus: EventBus, event_type: EventType, timeout: float = 2.0):
    """Poll history so events published before the call are not missed."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        events = bus.get_history(event_type=event_type)
        if events:
            return events[-1]
        await asyncio.sleep(0.01)
    raise AssertionError(f"no {event_type} event within {timeout}s")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self):
        server = _make_server()
        await server.start()
        assert server.is_running
        assert server.port is not None

        await server.stop()
        assert not server.is_running
        assert server.port is None

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        server = _make_server()
        await server.stop()
        assert not server.is_running

    def test_test_run_path_is_reserved(self):
        server = _make_server()
        with pytest.raises(ValueError):
            server.add_route(WebhookRoute(path=TEST_RUN_PATH, definition=ECHO))


class TestTestRun:
    @pytest.mark.asyncio
    async def test_streams_ndjson_progress(self):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}{TEST_RUN_PATH}",
                    json={"definition": ECHO, "input": {"event": "ping"}},
                ) as resp:
                    assert resp.status == 200
                    assert resp.headers["Content-Type"].startswith("application/x-ndjson")
                    text = await resp.text()
        finally:
            await server.stop()

        lines = [json.loads(line) for line in text.splitlines() if line]
        assert [line["type"] for line in lines] == ["update"] * 4 + ["final"]
        assert lines[-1]["result"]["success"] is True
        assert lines[-1]["result"]["finalOutput"] == "got ping"

    @pytest.mark.asyncio
    async def test_company_resolved_from_employee(self):
        seen = []

        async def resolver(employee_id):
            seen.append(employee_id)
            return "acme"

        executor = WorkflowExecutor(event_bus=EventBus())
        started = []

        async def record(event):
            started.append(event)

        executor.event_bus.subscribe([EventType.RUN_STARTED], record)
        server = _make_server(executor, company_resolver=resolver)
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}{TEST_RUN_PATH}",
                    json={"definition": ECHO, "input": {}, "employeeId": "emp-7"},
                ) as resp:
                    await resp.text()
        finally:
            await server.stop()

        assert seen == ["emp-7"]
        assert len(started) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [b"not json", b'{"input": 1}', b'{"definition": "nope"}'],
    )
    async def test_bad_requests(self, payload):
        server = _make_server()
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}{TEST_RUN_PATH}",
                    data=payload,
                    headers={"Content-Type": "application/json"},
                ) as resp:
                    assert resp.status == 400
                    body = await resp.json()
                    assert "error" in body
        finally:
            await server.stop()


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_post_starts_run(self):
        bus = EventBus()
        executor = WorkflowExecutor(event_bus=bus)
        route = WebhookRoute(path="/hooks/echo", definition=ECHO, company_id="acme")
        server = _make_server(executor, [route])
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{_base_url(server)}/hooks/echo", json={"event": "opened"}
                ) as resp:
                    assert resp.status == 202
                    body = await resp.json()
            assert body["status"] == "accepted"

            final = await _first_event(bus, EventType.RUN_FINAL)
        finally:
            await server.stop()

        assert final.run_id == body["runId"]
        assert final.data["result"]["finalOutput"] == "got opened"

    @pytest.mark.asyncio
    async def test_non_json_body_becomes_raw_body(self):
        bus = EventBus()
        route = WebhookRoute(path="/hooks/raw", definition=ECHO)
        server = _make_server(WorkflowExecutor(event_bus=bus), [route])
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(f"{_base_url(server)}/hooks/raw", data=b"a=1") as resp:
                    assert resp.status == 202
            started = await _first_event(bus, EventType.RUN_STARTED)
        finally:
            await server.stop()

        assert started.data["input"] == {"raw_body": "a=1"}

    @pytest.mark.asyncio
    async def test_signature_checked(self):
        secret = "s3cret"
        route = WebhookRoute(path="/hooks/signed", definition=ECHO, secret=secret)
        server = _make_server(routes=[route])
        await server.start()
        payload = json.dumps({"event": "push"}).encode()
        good = hmac_mod.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        try:
            async with aiohttp.ClientSession() as session:
                url = f"{_base_url(server)}/hooks/signed"
                async with session.post(url, data=payload) as resp:
                    assert resp.status == 401
                async with session.post(
                    url, data=payload, headers={"X-Hub-Signature-256": "sha256=deadbeef"}
                ) as resp:
                    assert resp.status == 401
                async with session.post(
                    url, data=payload, headers={"X-Hub-Signature-256": f"sha256={good}"}
                ) as resp:
                    assert resp.status == 202
            await asyncio.sleep(0.05)
        finally:
            await server.stop()
