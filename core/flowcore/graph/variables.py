"""
Variable resolution against an ExecutionContext.

References:
    __input__ / input        raw trigger payload
    <name>                   variable bound by a variable_assignment node
    <nodeId>                 whole output of a completed node
    <nodeId>.<path>...       nested field; list indices are allowed

Lookups that hit nothing resolve to None, never raise. Resolution only
reads the context, so resolving twice yields the same value.
"""

import json
import re
from typing import Any

from flowcore.graph.context import ExecutionContext

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([\w][\w.\-]*)\s*\}\}")

# Keys that commonly wrap a node's payload one level deep
WRAPPER_KEYS = ("output", "data", "result")

_MISSING = object()


def decode_json(value: Any) -> Any:
    """Decode JSON-looking strings, returning anything else unchanged."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


def _walk(value: Any, parts: list[str]) -> Any:
    current = value
    for part in parts:
        current = decode_json(current)
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
    return current


def get_path(value: Any, parts: list[str]) -> Any:
    """Follow ``parts`` into ``value``, diving through one wrapper key if needed."""
    found = _walk(value, parts)
    if found is not _MISSING:
        return found

    value = decode_json(value)
    if isinstance(value, dict):
        for key in WRAPPER_KEYS:
            if key in value:
                found = _walk(value[key], parts)
                if found is not _MISSING:
                    return found
    return None


def resolve_reference(reference: str, context: ExecutionContext) -> Any:
    """Resolve a single variable reference (without braces)."""
    reference = reference.strip()
    if not reference:
        return None

    if reference in ("__input__", "input"):
        return context.input

    if reference in context.variables and not context.has_result(reference):
        return context.variables[reference]

    parts = reference.split(".")
    # Longest prefix that names a node wins, so ids may contain dots
    for split in range(len(parts), 0, -1):
        node_id = ".".join(parts[:split])
        if context.has_result(node_id):
            output = context.completed_output(node_id)
            rest = parts[split:]
            return get_path(output, rest) if rest else output

    head, rest = parts[0], parts[1:]
    if head in ("__input__", "input"):
        return get_path(context.input, rest)
    if head in context.variables:
        return get_path(context.variables[head], rest)
    return None


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, default=str)


def interpolate(template: str, context: ExecutionContext) -> str:
    """Replace every ``{{reference}}`` in ``template``; gaps become empty strings."""
    if not template:
        return template or ""
    return TEMPLATE_PATTERN.sub(
        lambda match: stringify(resolve_reference(match.group(1), context)), template
    )


def resolve_value(value: Any, context: ExecutionContext) -> Any:
    """
    Resolve a config value.

    A string consisting of exactly one ``{{ref}}`` yields the referenced
    object itself; other strings are interpolated; containers are
    resolved element-wise.
    """
    if isinstance(value, str):
        match = TEMPLATE_PATTERN.fullmatch(value.strip())
        if match:
            return resolve_reference(match.group(1), context)
        return interpolate(value, context)
    if isinstance(value, dict):
        return {k: resolve_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, context) for v in value]
    return value


def resolve_variable(selector: Any, context: ExecutionContext) -> Any:
    """
    Resolve a variable selector as written in node config: either a bare
    reference (``node1.text``) or a braced template (``{{node1.text}}``).
    """
    if selector is None:
        return None
    if not isinstance(selector, str):
        return selector
    if TEMPLATE_PATTERN.search(selector):
        return resolve_value(selector, context)
    return resolve_reference(selector, context)
