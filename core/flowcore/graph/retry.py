"""
Retry/timeout wrapper around a single handler invocation.

Node data keys:
    retryCount         extra attempts after the first (default 0)
    retryInterval      ms to sleep between attempts (default 0)
    timeout            per-attempt wall-clock cap in ms
    errorHandling      fail | default_value | continue
    errorDefaultValue  fallback output for default_value (JSON text accepted)
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from flowcore.errors import NodeExecutionError, NodeTimeoutError, WorkflowCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorPolicy(StrEnum):
    FAIL = "fail"
    DEFAULT_VALUE = "default_value"
    CONTINUE = "continue"


def _as_int(value: Any, default: int) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return default


@dataclass
class RetryPolicy:
    retry_count: int = 0
    retry_interval_ms: int = 0
    timeout_ms: int | None = None
    error_handling: ErrorPolicy = ErrorPolicy.FAIL
    default_value: Any = None

    @classmethod
    def from_node_data(
        cls, data: dict[str, Any], default_timeout_ms: int | None = None
    ) -> "RetryPolicy":
        """Build a policy from node config, tolerating loose UI-provided values."""
        timeout = data.get("timeout")
        timeout_ms = _as_int(timeout, 0) if timeout not in (None, "") else default_timeout_ms

        try:
            error_handling = ErrorPolicy(data.get("errorHandling") or ErrorPolicy.FAIL)
        except ValueError:
            # Container nodes reuse errorHandling for their per-item policy
            error_handling = ErrorPolicy.FAIL

        default_value = data.get("errorDefaultValue", data.get("defaultValue"))
        if isinstance(default_value, str) and default_value.strip():
            try:
                default_value = json.loads(default_value)
            except ValueError:
                pass

        return cls(
            retry_count=_as_int(data.get("retryCount"), 0),
            retry_interval_ms=_as_int(data.get("retryInterval"), 0),
            timeout_ms=timeout_ms or None,
            error_handling=error_handling,
            default_value=default_value,
        )

    @property
    def max_attempts(self) -> int:
        return self.retry_count + 1


@dataclass
class PolicyOutcome:
    """What the wrapper hands back to the scheduler."""

    value: Any
    attempts: int
    tolerated_error: str | None = None

    @property
    def substituted(self) -> bool:
        return self.tolerated_error is not None


async def run_with_policy(
    invoke: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    node_id: str,
    on_retry: Callable[[int, str], Awaitable[None]] | None = None,
) -> PolicyOutcome:
    """
    Call ``invoke`` until it succeeds or attempts run out, then apply the
    error policy.

    Raises:
        NodeExecutionError: the policy is ``fail`` and every attempt failed
        WorkflowCancelledError: cancellation is never retried or tolerated
    """
    last_error = ""
    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.timeout_ms:
                try:
                    value = await asyncio.wait_for(invoke(), timeout=policy.timeout_ms / 1000)
                except TimeoutError as e:
                    raise NodeTimeoutError(policy.timeout_ms) from e
            else:
                value = await invoke()
            return PolicyOutcome(value=value, attempts=attempt)
        except WorkflowCancelledError:
            raise
        except Exception as e:
            last_error = str(e) or e.__class__.__name__
            if attempt < policy.max_attempts:
                logger.warning(
                    f"↻ Node {node_id} attempt {attempt}/{policy.max_attempts} failed: "
                    f"{last_error}",
                    extra={"attempt": attempt, "node_id": node_id},
                )
                if on_retry is not None:
                    await on_retry(attempt, last_error)
                if policy.retry_interval_ms:
                    await asyncio.sleep(policy.retry_interval_ms / 1000)
            else:
                logger.error(
                    f"✗ Node {node_id} failed after {attempt} attempt(s): {last_error}",
                    extra={"attempt": attempt, "node_id": node_id},
                )

    if policy.error_handling == ErrorPolicy.DEFAULT_VALUE:
        logger.info(f"   Node {node_id}: substituting configured default value")
        return PolicyOutcome(
            value=policy.default_value,
            attempts=policy.max_attempts,
            tolerated_error=last_error,
        )
    if policy.error_handling == ErrorPolicy.CONTINUE:
        logger.info(f"   Node {node_id}: continuing with empty output")
        return PolicyOutcome(value=None, attempts=policy.max_attempts, tolerated_error=last_error)

    raise NodeExecutionError(node_id, last_error)
