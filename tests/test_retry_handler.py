"""
Tests for Retry Policy
Tests bounded exponential backoff and transient classification
"""

import pytest

from execution.errors import (
    TransientBackendError,
    PermanentBackendError,
    RetryExhaustedError,
)
from execution.models import ExecutionConfig
from execution.retry_handler import RetryPolicy, RetryContext, is_transient_error


class FlakyOperation:
    """Raises the scripted errors in order, then returns a value"""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def throttled():
    return TransientBackendError("Rate exceeded", code="ThrottlingException")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return RetryPolicy(base_wait=0.2, max_wait=10.0, max_retries=5, sleep=fake_sleep)


class TestBackoff:
    """Test delay computation"""

    def test_first_delay_is_base_wait(self, policy):
        assert policy.get_delay(0) == 0.2

    def test_delay_doubles_per_attempt(self, policy):
        assert [policy.get_delay(i) for i in range(4)] == [0.2, 0.4, 0.8, 1.6]

    def test_delay_capped_at_max_wait(self, policy):
        assert policy.get_delay(10) == 10.0
        assert policy.get_delay(50) == 10.0

    def test_delays_never_decrease(self, policy):
        delays = [policy.get_delay(i) for i in range(20)]
        assert delays == sorted(delays)
        assert delays[-1] == policy.max_wait

    def test_from_config(self):
        config = ExecutionConfig(base_retry_wait=0.5, retry_wait_max=3.0, retry_count_max=4)
        policy = RetryPolicy.from_config(config)

        assert policy.base_wait == 0.5
        assert policy.max_wait == 3.0
        assert policy.max_retries == 4

    def test_invalid_max_retries(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=0)


class TestExecuteWithRetry:
    """Test the retry loop"""

    @pytest.mark.asyncio
    async def test_success_without_retry(self, policy, sleeps):
        operation = FlakyOperation([])

        assert await policy.execute("submit", operation) == "ok"
        assert operation.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_transient_errors_below_cap_then_success(self, policy, sleeps):
        """k < max transient errors followed by success retries exactly k times"""
        operation = FlakyOperation([throttled() for _ in range(4)])
        contexts = []

        result = await policy.execute(
            "submit",
            operation,
            on_retry=lambda ctx: contexts.append((ctx.operation, ctx.attempt, ctx.delay))
        )

        assert result == "ok"
        assert operation.calls == 5
        assert len(contexts) == 4
        assert contexts[0] == ("submit", 0, 0.2)
        assert sleeps == [0.2, 0.4, 0.8, 1.6]

    @pytest.mark.asyncio
    async def test_transient_errors_at_cap_fail_permanently(self, policy):
        """k >= max transient errors yields a permanent failure"""
        operation = FlakyOperation([throttled() for _ in range(5)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.execute("poll", operation)

        assert operation.calls == 5
        assert exc_info.value.operation == "poll"
        assert exc_info.value.attempts == 5
        assert isinstance(exc_info.value, PermanentBackendError)
        assert isinstance(exc_info.value.__cause__, TransientBackendError)

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, policy, sleeps):
        error = PermanentBackendError("Syntax error", code="InvalidRequestException")
        operation = FlakyOperation([error])

        with pytest.raises(PermanentBackendError) as exc_info:
            await policy.execute("submit", operation)

        assert exc_info.value is error
        assert operation.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_arguments_forwarded(self, policy):
        received = {}

        async def operation(execution_id, max_results=None):
            received["args"] = (execution_id, max_results)
            return "page"

        assert await policy.execute("fetch", operation, "exec-1", max_results=10) == "page"
        assert received["args"] == ("exec-1", 10)

    @pytest.mark.asyncio
    async def test_custom_classifier(self, sleeps):
        async def fake_sleep(delay):
            sleeps.append(delay)

        policy = RetryPolicy(
            base_wait=0.1,
            max_retries=3,
            classifier=lambda e: isinstance(e, ConnectionError),
            sleep=fake_sleep
        )
        operation = FlakyOperation([ConnectionError("reset")])

        assert await policy.execute("fetch", operation) == "ok"
        assert sleeps == [0.1]


class TestTransientClassification:
    """Test which errors count as transient"""

    def test_transient_backend_error(self):
        assert is_transient_error(TransientBackendError("slow down"))

    def test_throttling_code(self):
        assert is_transient_error(PermanentBackendError("x", code="ThrottlingException"))

    def test_too_many_requests_code(self):
        assert is_transient_error(PermanentBackendError("x", code="TooManyRequestsException"))

    def test_scale_exhaustion_message(self):
        error = PermanentBackendError("Query exhausted resources at this scale factor")
        assert is_transient_error(error)

    def test_other_errors_are_permanent(self):
        assert not is_transient_error(PermanentBackendError("boom", code="InternalServerException"))
        assert not is_transient_error(ValueError("bad value"))

    def test_retry_context_defaults(self):
        context = RetryContext(operation="cancel")
        assert context.attempt == 0
        assert context.delay == 0.0
        assert context.last_error is None
