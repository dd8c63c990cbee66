"""Helpers for turning free-form model text into structured data."""

import json
import logging
import re
from typing import Any

import jsonschema

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str) -> Any | None:
    """
    Pull a JSON value out of model output.

    Tries, in order: the whole text, a fenced ```json block, then the
    outermost {...} or [...] span with Python literals repaired.
    Returns None when nothing parses.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    try:
        return json.loads(text.strip())
    except json.JSONDecodeError:
        pass

    fence = _FENCE_PATTERN.search(text)
    if fence:
        try:
            return json.loads(fence.group(1).strip())
        except json.JSONDecodeError:
            pass

    match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
    if match:
        candidate = match.group(1)
        candidate = re.sub(r"\bTrue\b", "true", candidate)
        candidate = re.sub(r"\bFalse\b", "false", candidate)
        candidate = re.sub(r"\bNone\b", "null", candidate)
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            if "'" in candidate and '"' not in candidate:
                try:
                    return json.loads(candidate.replace("'", '"'))
                except json.JSONDecodeError:
                    pass

    return None


def parse_schema(schema: Any) -> dict[str, Any] | None:
    """Accept a schema given as a dict or as JSON text; None if unusable."""
    if isinstance(schema, dict):
        return schema or None
    if isinstance(schema, str) and schema.strip():
        try:
            parsed = json.loads(schema)
        except json.JSONDecodeError:
            logger.warning("outputSchema is not valid JSON, ignoring it")
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def validate_schema(output: Any, schema: dict[str, Any]) -> list[str]:
    """Validate ``output`` against a JSON schema; returns error strings."""
    validator = jsonschema.Draft7Validator(schema)
    errors = []
    for error in validator.iter_errors(output):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors
