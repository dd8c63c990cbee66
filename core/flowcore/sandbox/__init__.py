"""Isolated execution of user-supplied code for code and condition nodes."""

from flowcore.sandbox.javascript import ScriptResult, evaluate_expression, run_javascript
from flowcore.sandbox.python_runner import run_python

__all__ = ["ScriptResult", "evaluate_expression", "run_javascript", "run_python"]
