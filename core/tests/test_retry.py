"""
Tests for the retry/timeout wrapper and its error policies.
"""

import asyncio

import pytest

from flowcore.errors import NodeExecutionError, WorkflowCancelledError
from flowcore.graph.retry import ErrorPolicy, RetryPolicy, run_with_policy


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value="ok"):
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"attempt {self.calls} failed")
        return self.value


class TestRetryPolicyFromNodeData:
    def test_defaults(self):
        policy = RetryPolicy.from_node_data({})
        assert policy.max_attempts == 1
        assert policy.timeout_ms is None
        assert policy.error_handling == ErrorPolicy.FAIL

    def test_loose_values_from_editor(self):
        policy = RetryPolicy.from_node_data(
            {
                "retryCount": "2",
                "retryInterval": "10",
                "timeout": "1500",
                "errorHandling": "default_value",
                "errorDefaultValue": '{"status": "unknown"}',
            }
        )
        assert policy.max_attempts == 3
        assert policy.retry_interval_ms == 10
        assert policy.timeout_ms == 1500
        assert policy.error_handling == ErrorPolicy.DEFAULT_VALUE
        assert policy.default_value == {"status": "unknown"}

    def test_handler_default_timeout_applies_when_unset(self):
        assert RetryPolicy.from_node_data({}, default_timeout_ms=30000).timeout_ms == 30000
        assert RetryPolicy.from_node_data({"timeout": 200}, 30000).timeout_ms == 200

    def test_unknown_error_handling_means_fail(self):
        policy = RetryPolicy.from_node_data({"errorHandling": "remove_failed"})
        assert policy.error_handling == ErrorPolicy.FAIL

    def test_plain_text_default_value_kept(self):
        policy = RetryPolicy.from_node_data({"errorDefaultValue": "n/a"})
        assert policy.default_value == "n/a"


class TestRunWithPolicy:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        invoke = Flaky(0)
        outcome = await run_with_policy(invoke, RetryPolicy(), "n1")
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        assert not outcome.substituted

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        invoke = Flaky(2)
        retries = []

        async def on_retry(attempt, error):
            retries.append((attempt, error))

        outcome = await run_with_policy(invoke, RetryPolicy(retry_count=2), "n1", on_retry)
        assert outcome.value == "ok"
        assert outcome.attempts == 3
        assert retries == [(1, "attempt 1 failed"), (2, "attempt 2 failed")]

    @pytest.mark.asyncio
    async def test_fail_policy_raises_with_last_error(self):
        invoke = Flaky(5)
        with pytest.raises(NodeExecutionError) as exc_info:
            await run_with_policy(invoke, RetryPolicy(retry_count=1), "n1")
        assert exc_info.value.node_id == "n1"
        assert str(exc_info.value) == "attempt 2 failed"
        assert invoke.calls == 2

    @pytest.mark.asyncio
    async def test_default_value_policy(self):
        policy = RetryPolicy(error_handling=ErrorPolicy.DEFAULT_VALUE, default_value={"x": 1})
        outcome = await run_with_policy(Flaky(1), policy, "n1")
        assert outcome.value == {"x": 1}
        assert outcome.substituted
        assert outcome.tolerated_error == "attempt 1 failed"

    @pytest.mark.asyncio
    async def test_continue_policy_yields_none(self):
        policy = RetryPolicy(error_handling=ErrorPolicy.CONTINUE)
        outcome = await run_with_policy(Flaky(1), policy, "n1")
        assert outcome.value is None
        assert outcome.substituted

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(NodeExecutionError) as exc_info:
            await run_with_policy(slow, RetryPolicy(timeout_ms=20), "n1")
        assert "timed out after 20ms" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancellation_is_never_retried_or_tolerated(self):
        calls = 0

        async def cancelled():
            nonlocal calls
            calls += 1
            raise WorkflowCancelledError("stop")

        policy = RetryPolicy(retry_count=3, error_handling=ErrorPolicy.CONTINUE)
        with pytest.raises(WorkflowCancelledError):
            await run_with_policy(cancelled, policy, "n1")
        assert calls == 1
