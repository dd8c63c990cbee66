"""
JavaScript sandbox backed by an embedded V8 isolate (mini-racer).

A fresh MiniRacer context is created for every invocation and closed
afterwards, so globals never leak between node executions. The context
only sees a console shim, timers and the ``context`` payload; there is no
``require``, ``process`` or network access inside V8.

Evaluation is blocking, so it runs off the event loop. All V8 work goes
through one long-lived thread: an isolate created on a thread that has
since exited can take the process down when the next script is terminated.
The V8 timeout stops runaway scripts; the asyncio timeout is a backstop.
"""

import asyncio
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from py_mini_racer import JSEvalException, JSPromiseError, JSTimeoutException, MiniRacer

from flowcore.errors import CodeExecutionError, CodeTimeoutError

logger = logging.getLogger(__name__)

_V8_THREAD = ThreadPoolExecutor(max_workers=1, thread_name_prefix="flowcore-v8")

# Installed before user code. Console output is collected for the node result.
_PRELUDE = """
var __logs = [];
var __fmt = function (args) {
  return Array.prototype.map.call(args, function (a) {
    if (typeof a === 'string') return a;
    try { return JSON.stringify(a); } catch (e) { return String(a); }
  }).join(' ');
};
globalThis.console = {
  log: function () { __logs.push(__fmt(arguments)); },
  info: function () { __logs.push(__fmt(arguments)); },
  warn: function () { __logs.push('[warn] ' + __fmt(arguments)); },
  error: function () { __logs.push('[error] ' + __fmt(arguments)); },
};
if (typeof setTimeout === 'undefined') {
  globalThis.setTimeout = function (fn) {
    var args = Array.prototype.slice.call(arguments, 2);
    Promise.resolve().then(function () { fn.apply(null, args); });
    return 0;
  };
  globalThis.clearTimeout = function () {};
}
"""

_WRAPPER = """
(async () => {{
  const {{ input, vars }} = context;

{code}

  if (typeof main !== 'function') {{
    throw new Error("Code must define a main function: async function main({{ input, vars }})");
  }}
  const __result = await main({{ ...vars, input, vars }});
  return JSON.stringify(__result === undefined ? null : __result);
}})()
"""


@dataclass
class ScriptResult:
    output: Any
    logs: list[str] = field(default_factory=list)
    duration_ms: int = 0


async def _on_v8_thread(fn, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_V8_THREAD, fn, *args)


def _run_main(
    code: str, input_data: Any, variables: dict[str, Any], timeout_ms: int
) -> ScriptResult:
    started = time.monotonic()
    ctx = MiniRacer()
    try:
        ctx.eval(_PRELUDE)
        payload = json.dumps({"input": input_data, "vars": variables}, default=str)
        ctx.eval(f"var context = {payload};")

        promise = ctx.eval(_WRAPPER.format(code=code), timeout_sec=timeout_ms / 1000)
        remaining = max(timeout_ms / 1000 - (time.monotonic() - started), 0.001)
        raw = promise.get(timeout=remaining)

        logs = json.loads(ctx.eval("JSON.stringify(__logs)"))
        return ScriptResult(
            output=json.loads(raw) if isinstance(raw, str) else raw,
            logs=logs,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
    finally:
        ctx.close()


async def run_javascript(
    code: str,
    input_data: Any = None,
    variables: dict[str, Any] | None = None,
    timeout_ms: int = 5000,
) -> ScriptResult:
    """
    Run user code that defines ``main`` and return its JSON-serialisable result.

    Raises:
        CodeTimeoutError: main did not settle within ``timeout_ms``
        CodeExecutionError: syntax error, thrown exception or rejected promise
    """
    try:
        return await asyncio.wait_for(
            _on_v8_thread(_run_main, code, input_data, variables or {}, timeout_ms),
            timeout=timeout_ms / 1000 + 1,
        )
    except (JSTimeoutException, TimeoutError) as e:
        raise CodeTimeoutError(timeout_ms, "JavaScript") from e
    except (JSEvalException, JSPromiseError) as e:
        raise CodeExecutionError(f"JavaScript execution failed: {e}") from e


def _evaluate(expression: str, bindings: dict[str, Any], timeout_ms: int) -> bool:
    ctx = MiniRacer()
    try:
        declarations = "".join(
            f"var {name} = {json.dumps(value, default=str)};\n"
            for name, value in bindings.items()
            if name.isidentifier()
        )
        ctx.eval(declarations)
        return bool(ctx.eval(f"!!({expression})", timeout_sec=timeout_ms / 1000))
    finally:
        ctx.close()


async def evaluate_expression(
    expression: str,
    bindings: dict[str, Any] | None = None,
    timeout_ms: int = 1000,
) -> bool:
    """
    Evaluate a boolean JS expression with ``bindings`` as globals.

    >>> await evaluate_expression("input > 5", {"input": 10})
    True
    """
    try:
        return await _on_v8_thread(_evaluate, expression, bindings or {}, timeout_ms)
    except JSTimeoutException as e:
        raise CodeTimeoutError(timeout_ms, "JavaScript expression") from e
    except (JSEvalException, JSPromiseError) as e:
        raise CodeExecutionError(f"Expression '{expression}' failed: {e}") from e
