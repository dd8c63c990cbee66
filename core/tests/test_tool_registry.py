"""Tests for ToolRegistry registration, context injection and the tool-loop executor."""

import json

import pytest

from flowcore.llm.provider import ToolUse
from flowcore.tools.registry import BUILTIN_TOOLS, ToolRegistry


class TestRegistration:
    def test_builtin_ids_only(self):
        registry = ToolRegistry()
        registry.register_builtin("search_knowledge", lambda query: [])
        assert registry.has_tool("search_knowledge")
        assert registry.get_tools() == [BUILTIN_TOOLS["search_knowledge"]]
        with pytest.raises(KeyError):
            registry.register_builtin("format_disk", lambda: None)

    def test_function_schema_hides_context_params(self):
        def lookup(name: str, limit: int = 5, verbose: bool = False, company_id: str = ""):
            """Find a colleague."""

        registry = ToolRegistry()
        registry.register_function(lookup)
        tool = registry.get_tools(["lookup"])[0]

        assert tool.description == "Find a colleague."
        assert tool.parameters["properties"] == {
            "name": {"type": "string"},
            "limit": {"type": "integer"},
            "verbose": {"type": "boolean"},
        }
        assert tool.parameters["required"] == ["name"]
        assert registry.get_registered_names() == ["lookup"]

    def test_openai_shape(self):
        shape = BUILTIN_TOOLS["send_site_notification"].to_openai()
        assert shape["type"] == "function"
        assert shape["function"]["parameters"]["required"] == ["title", "content"]


class TestExecution:
    @pytest.mark.asyncio
    async def test_sync_and_async_executors(self):
        async def search(query):
            return [query.upper()]

        registry = ToolRegistry()
        registry.register_builtin("search_knowledge", search)
        registry.register_function(lambda a, b: a + b, name="add")

        assert await registry.execute("search_knowledge", {"query": "vpn"}) == ["VPN"]
        assert await registry.execute("add", {"a": 1, "b": 2}) == 3
        with pytest.raises(KeyError):
            await registry.execute("missing", {})

    @pytest.mark.asyncio
    async def test_execution_context_beats_session_context(self):
        seen = []

        def logs(limit=10, company_id=None, employee_id=None):
            seen.append((company_id, employee_id))
            return []

        registry = ToolRegistry()
        registry.register_builtin("get_employee_logs", logs)
        registry.set_session_context(company_id="session-co", employee_id="e1")

        await registry.execute("get_employee_logs", {})
        token = ToolRegistry.set_execution_context(company_id="run-co")
        try:
            await registry.execute("get_employee_logs", {})
        finally:
            ToolRegistry.reset_execution_context(token)
        await registry.execute("get_employee_logs", {"company_id": "explicit"})

        assert seen == [("session-co", "e1"), ("run-co", "e1"), ("explicit", "e1")]

    @pytest.mark.asyncio
    async def test_unaccepted_arguments_are_dropped(self):
        registry = ToolRegistry()
        registry.register_builtin("search_knowledge", lambda query: query)
        assert await registry.execute("search_knowledge", {"query": "q", "topK": 3}) == "q"


class TestToolLoopExecutor:
    @pytest.mark.asyncio
    async def test_results_are_json_encoded(self):
        registry = ToolRegistry()
        registry.register_builtin("get_employee_logs", lambda limit=1: [{"id": 1}])
        executor = registry.make_executor()

        result = await executor(ToolUse(id="t1", name="get_employee_logs", input={}))
        assert result.tool_use_id == "t1"
        assert json.loads(result.content) == [{"id": 1}]
        assert not result.is_error

    @pytest.mark.asyncio
    async def test_disallowed_tool_is_refused(self):
        calls = []
        registry = ToolRegistry()
        registry.register_builtin("send_site_notification", lambda **kw: calls.append(kw))
        executor = registry.make_executor(allowed={"get_employee_logs"})

        result = await executor(
            ToolUse(id="t1", name="send_site_notification", input={"title": "x", "content": "y"})
        )
        assert result.is_error
        assert "not enabled" in result.content
        assert calls == []

    @pytest.mark.asyncio
    async def test_tool_errors_become_error_results(self):
        def broken(query):
            raise RuntimeError("index offline")

        registry = ToolRegistry()
        registry.register_builtin("search_knowledge", broken)
        executor = registry.make_executor()

        result = await executor(ToolUse(id="t2", name="search_knowledge", input={"query": "q"}))
        assert result.is_error
        assert json.loads(result.content) == {"error": "index offline"}
