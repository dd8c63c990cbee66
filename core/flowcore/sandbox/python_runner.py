"""
Python sandbox: user code runs in a short-lived subprocess.

The generated wrapper reads ``{"input": ..., "vars": ...}`` from stdin,
calls ``main(input, vars)`` and prints the JSON result between two
literal markers. The parent trusts only what sits between the markers
(whole-stdout JSON is accepted only when the markers are absent), treats
a non-zero exit as failure, kills the process on timeout and always
removes the temp script.
"""

import asyncio
import json
import logging
import os
import tempfile
import textwrap
import time
from typing import Any

from flowcore.errors import CodeExecutionError, CodeTimeoutError
from flowcore.sandbox.javascript import ScriptResult

logger = logging.getLogger(__name__)

OUTPUT_START = "<<MASTRA_OUTPUT>>"
OUTPUT_END = "<<MASTRA_OUTPUT_END>>"

_RUNNER = textwrap.dedent(
    """
    def _flowcore_runner():
        import io as _io
        import json as _json
        import sys as _sys

        _sys.stdout = _io.TextIOWrapper(_sys.stdout.buffer, encoding="utf-8")
        _sys.stderr = _io.TextIOWrapper(_sys.stderr.buffer, encoding="utf-8")
        raw = _sys.stdin.buffer.read().decode("utf-8")
        ctx = _json.loads(raw) if raw.strip() else {{"input": {{}}, "vars": {{}}}}

        entry = globals().get("main")
        if not callable(entry):
            _sys.stderr.write(
                "Execution Error: 'main' function not found. "
                "Please define 'def main(input, vars):'."
            )
            _sys.exit(1)
        try:
            res = entry(input=ctx.get("input"), vars=ctx.get("vars") or {{}})
            encoded = _json.dumps(res, ensure_ascii=False, default=str)
        except Exception as e:
            _sys.stderr.write(f"Execution Error: {{e}}")
            _sys.exit(1)
        print("{start}")
        print(encoded)
        print("{end}")
        _sys.stdout.flush()


    if __name__ == "__main__":
        _flowcore_runner()
    """
).format(start=OUTPUT_START, end=OUTPUT_END)


def build_script(code: str) -> str:
    return f"{code}\n\n{_RUNNER}"


def parse_output(stdout: str) -> Any:
    """Extract the JSON result framed by the output markers."""
    start = stdout.find(OUTPUT_START)
    if start != -1:
        end = stdout.find(OUTPUT_END, start)
        if end == -1:
            raise CodeExecutionError("Python output is missing its end marker")
        framed = stdout[start + len(OUTPUT_START) : end].strip()
        try:
            return json.loads(framed)
        except ValueError as e:
            raise CodeExecutionError(f"Python output is not valid JSON: {e}") from e

    try:
        return json.loads(stdout.strip())
    except ValueError as e:
        raise CodeExecutionError(f"Failed to parse Python output: {stdout.strip()[:200]}") from e


def _user_prints(stdout: str) -> list[str]:
    head = stdout.split(OUTPUT_START, 1)[0]
    return [line for line in head.splitlines() if line.strip()]


async def run_python(
    code: str,
    input_data: Any = None,
    variables: dict[str, Any] | None = None,
    timeout_ms: int = 5000,
    executable: str = "python3",
) -> ScriptResult:
    """
    Run user code defining ``main(input, vars)`` in a fresh interpreter.

    Raises:
        CodeTimeoutError: the process did not exit within ``timeout_ms``
        CodeExecutionError: non-zero exit (message carries stderr) or bad output
    """
    started = time.monotonic()
    fd, script_path = tempfile.mkstemp(prefix="flowcore_py_", suffix=".py")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(build_script(code))

        proc = await asyncio.create_subprocess_exec(
            executable,
            script_path,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        payload = json.dumps({"input": input_data, "vars": variables or {}}, default=str)
        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(payload.encode("utf-8")), timeout=timeout_ms / 1000
            )
        except (TimeoutError, asyncio.CancelledError):
            proc.kill()
            await proc.wait()
            raise
    except TimeoutError as e:
        raise CodeTimeoutError(timeout_ms, "Python") from e
    except FileNotFoundError as e:
        raise CodeExecutionError(f"Python interpreter not found: {executable}") from e
    finally:
        try:
            os.unlink(script_path)
        except FileNotFoundError:
            pass

    stdout = stdout_b.decode("utf-8", errors="replace")
    stderr = stderr_b.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        logger.debug(f"Python sandbox exited with {proc.returncode}: {stderr.strip()}")
        raise CodeExecutionError(f"Python execution failed: {stderr.strip()}", stderr=stderr)

    return ScriptResult(
        output=parse_output(stdout),
        logs=_user_prints(stdout),
        duration_ms=int((time.monotonic() - started) * 1000),
    )
