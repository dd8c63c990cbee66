"""Shared flowcore configuration utilities.

Centralises reading of ~/.flowcore/configuration.json so that the
executor, the step handlers and the CLI share one implementation.
Environment variables (FLOWCORE_*) take precedence over the file.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWCORE_CONFIG_FILE = Path.home() / ".flowcore" / "configuration.json"

DEFAULT_CODE_TIMEOUT_MS = 5000
DEFAULT_LLM_TIMEOUT_MS = 30000
DEFAULT_HTTP_TIMEOUT_MS = 30000


def get_flowcore_config() -> dict[str, Any]:
    """Load flowcore configuration from ~/.flowcore/configuration.json."""
    if not FLOWCORE_CONFIG_FILE.exists():
        return {}
    try:
        with open(FLOWCORE_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


def _engine_setting(key: str, env_var: str, default: Any) -> Any:
    env_value = os.environ.get(env_var)
    if env_value is not None:
        if isinstance(default, bool):
            return env_value.lower() in ("1", "true", "yes")
        if isinstance(default, int):
            try:
                return int(env_value)
            except ValueError:
                return default
        return env_value
    return get_flowcore_config().get("engine", {}).get(key, default)


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_default_model() -> str:
    """Return the configured default model string (e.g. 'openai/gpt-4o-mini')."""
    env_model = os.environ.get("FLOWCORE_MODEL")
    if env_model:
        return env_model
    llm = get_flowcore_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return "openai/gpt-4o-mini"


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    llm = get_flowcore_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base() -> str | None:
    return get_flowcore_config().get("llm", {}).get("api_base")


# ---------------------------------------------------------------------------
# EngineConfig - shared by executor and handlers
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Execution engine limits loaded from configuration and environment."""

    js_timeout_ms: int = field(
        default_factory=lambda: _engine_setting(
            "js_timeout_ms", "FLOWCORE_JS_TIMEOUT_MS", DEFAULT_CODE_TIMEOUT_MS
        )
    )
    python_timeout_ms: int = field(
        default_factory=lambda: _engine_setting(
            "python_timeout_ms", "FLOWCORE_PYTHON_TIMEOUT_MS", DEFAULT_CODE_TIMEOUT_MS
        )
    )
    python_executable: str = field(
        default_factory=lambda: _engine_setting(
            "python_executable", "FLOWCORE_PYTHON", "python3"
        )
    )
    llm_timeout_ms: int = field(
        default_factory=lambda: _engine_setting(
            "llm_timeout_ms", "FLOWCORE_LLM_TIMEOUT_MS", DEFAULT_LLM_TIMEOUT_MS
        )
    )
    http_timeout_ms: int = field(
        default_factory=lambda: _engine_setting(
            "http_timeout_ms", "FLOWCORE_HTTP_TIMEOUT_MS", DEFAULT_HTTP_TIMEOUT_MS
        )
    )
    classifier_max_attempts: int = field(
        default_factory=lambda: _engine_setting(
            "classifier_max_attempts", "FLOWCORE_CLASSIFIER_ATTEMPTS", 3
        )
    )
    iteration_parallelism: int = field(
        default_factory=lambda: _engine_setting(
            "iteration_parallelism", "FLOWCORE_ITERATION_PARALLELISM", 10
        )
    )
    default_max_loops: int = 10
    agent_max_iterations: int = 5
