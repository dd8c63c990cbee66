"""
Tests for the JavaScript and Python sandboxes and the code node.
"""

import asyncio
import sys

import pytest

from flowcore.config import EngineConfig
from flowcore.errors import CodeExecutionError, CodeTimeoutError
from flowcore.graph.executor import WorkflowExecutor
from flowcore.sandbox import evaluate_expression, run_javascript, run_python
from flowcore.sandbox.python_runner import OUTPUT_END, OUTPUT_START, parse_output


class TestJavaScript:
    @pytest.mark.asyncio
    async def test_main_receives_input(self):
        result = await run_javascript(
            "async function main({ input }) { return { doubled: input * 2 }; }", 21
        )
        assert result.output == {"doubled": 42}

    @pytest.mark.asyncio
    async def test_vars_are_spread_and_nested(self):
        code = """
        function main({ greeting, input, vars }) {
          return greeting + " " + input.name + " (" + Object.keys(vars).length + ")";
        }
        """
        result = await run_javascript(code, {"name": "Ada"}, {"greeting": "hi"})
        assert result.output == "hi Ada (1)"

    @pytest.mark.asyncio
    async def test_console_output_is_collected(self):
        code = 'async function main() { console.log("step", 1); return null; }'
        result = await run_javascript(code)
        assert result.output is None
        assert result.logs == ["step 1"]

    @pytest.mark.asyncio
    async def test_thrown_error(self):
        with pytest.raises(CodeExecutionError):
            await run_javascript('async function main() { throw new Error("boom"); }')

    @pytest.mark.asyncio
    async def test_missing_main(self):
        with pytest.raises(CodeExecutionError):
            await run_javascript("const x = 1;")

    @pytest.mark.asyncio
    async def test_runaway_script_times_out(self):
        with pytest.raises(CodeTimeoutError):
            await run_javascript("function main() { while (true) {} }", timeout_ms=200)

    @pytest.mark.asyncio
    async def test_globals_do_not_leak_between_runs(self):
        await run_javascript("function main() { globalThis.leaked = 1; return 1; }")
        result = await run_javascript("function main() { return typeof leaked; }")
        assert result.output == "undefined"

    @pytest.mark.asyncio
    async def test_no_node_builtins(self):
        result = await run_javascript(
            "function main() { return [typeof require, typeof process]; }"
        )
        assert result.output == ["undefined", "undefined"]

    @pytest.mark.asyncio
    async def test_expression(self):
        assert await evaluate_expression("count >= 3 && input.ok", {"count": 3, "input": {"ok": 1}})
        assert not await evaluate_expression("count > 3", {"count": 3})

    def test_runaway_script_on_a_later_event_loop(self):
        first = asyncio.run(run_javascript("function main() { return { a: 1 }; }"))
        assert first.output == {"a": 1}

        async def runaway():
            with pytest.raises(CodeTimeoutError):
                await run_javascript("function main() { while (true) {} }", timeout_ms=200)
            assert await evaluate_expression("x === 2", {"x": 2})

        asyncio.run(runaway())


class TestPython:
    @pytest.mark.asyncio
    async def test_echo(self):
        code = "def main(input, vars):\n    return {'echo': input, 'k': vars.get('k')}\n"
        result = await run_python(code, {"a": 1}, {"k": "x"}, executable=sys.executable)
        assert result.output == {"echo": {"a": 1}, "k": "x"}

    @pytest.mark.asyncio
    async def test_prints_before_result_become_logs(self):
        code = "def main(input, vars):\n    print('working')\n    return 1\n"
        result = await run_python(code, executable=sys.executable)
        assert result.output == 1
        assert result.logs == ["working"]

    @pytest.mark.asyncio
    async def test_exception_surfaces_stderr(self):
        code = "def main(input, vars):\n    raise ValueError('nope')\n"
        with pytest.raises(CodeExecutionError) as exc_info:
            await run_python(code, executable=sys.executable)
        assert "Execution Error: nope" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_main(self):
        with pytest.raises(CodeExecutionError) as exc_info:
            await run_python("x = 1\n", executable=sys.executable)
        assert "'main' function not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        code = "import time\n\ndef main(input, vars):\n    time.sleep(10)\n"
        with pytest.raises(CodeTimeoutError):
            await run_python(code, timeout_ms=300, executable=sys.executable)

    def test_only_framed_output_is_trusted(self):
        stdout = f'{{"fake": true}}\n{OUTPUT_START}\n{{"real": 1}}\n{OUTPUT_END}\n'
        assert parse_output(stdout) == {"real": 1}

    def test_unframed_json_fallback(self):
        assert parse_output('{"a": 2}\n') == {"a": 2}
        with pytest.raises(CodeExecutionError):
            parse_output("not json")


def _code_workflow(data: dict) -> dict:
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "code", "type": "code", "data": data},
        ],
        "edges": [{"source": "start", "target": "code"}],
    }


class TestCodeNode:
    @pytest.mark.asyncio
    async def test_javascript_node_uses_previous_output(self):
        definition = _code_workflow(
            {"code": "function main({ input }) { return input.toUpperCase(); }"}
        )
        result = await WorkflowExecutor().execute(definition, "shout")
        assert result.success
        assert result.final_output == "SHOUT"

    @pytest.mark.asyncio
    async def test_python_node_with_variables(self):
        definition = _code_workflow(
            {
                "language": "python",
                "code": (
                    "def main(input, vars):\n"
                    "    return {'total': input['n'] + vars['bonus']}\n"
                ),
                "variables": [{"name": "bonus", "value": "input.bonus"}],
            }
        )
        executor = WorkflowExecutor(config=EngineConfig(python_executable=sys.executable))
        result = await executor.execute(definition, {"n": 2, "bonus": 5})
        assert result.success
        assert result.final_output == {"total": 7}

    @pytest.mark.asyncio
    async def test_sandbox_timeout_fails_node(self):
        definition = _code_workflow({"code": "function main() { while (true) {} }", "timeout": 150})
        result = await WorkflowExecutor().execute(definition, None)
        assert not result.success
        assert "JavaScript execution timed out after 150ms" in result.get("code").error

    @pytest.mark.asyncio
    async def test_empty_code_fails(self):
        result = await WorkflowExecutor().execute(_code_workflow({"code": "  "}), None)
        assert not result.success
        assert "has no code" in result.error
