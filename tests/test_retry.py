"""Tests for the retry wrapper."""

import httpx
import pytest

from consult_assist.core.errors import (
    ConfigurationError,
    UpstreamNetworkError,
    UpstreamStatusError,
)
from consult_assist.core.retry import RetryPolicy, is_retryable, retry_async


class Flaky:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestIsRetryable:
    @pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
    def test_transient_statuses(self, status_code):
        assert is_retryable(UpstreamStatusError(status_code, "boom"))

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404])
    def test_client_errors(self, status_code):
        assert not is_retryable(UpstreamStatusError(status_code, "bad request"))

    def test_network_errors(self):
        assert is_retryable(UpstreamNetworkError("connection reset"))
        assert is_retryable(httpx.ConnectError("refused"))

    def test_message_markers(self):
        assert is_retryable(RuntimeError("Service temporarily unavailable"))
        assert is_retryable(RuntimeError("Rate limit reached"))
        assert not is_retryable(RuntimeError("invalid argument"))

    def test_configuration_error_is_fatal(self):
        assert not is_retryable(ConfigurationError("timeout while reading key"))


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_exhausts_retries_on_server_error(self, recording_sleep):
        operation = Flaky([UpstreamStatusError(500, "internal")] * 10)

        with pytest.raises(UpstreamStatusError) as exc_info:
            await retry_async(operation, RetryPolicy(max_retries=3), sleep=recording_sleep)

        assert exc_info.value.status_code == 500
        assert operation.calls == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_delays_are_capped(self, recording_sleep):
        policy = RetryPolicy(max_retries=4, initial_delay_ms=1000, max_delay_ms=3000, backoff_multiplier=2)
        operation = Flaky([UpstreamNetworkError("reset")] * 10)

        with pytest.raises(UpstreamNetworkError):
            await retry_async(operation, policy, sleep=recording_sleep)

        assert recording_sleep.delays == [1.0, 2.0, 3.0, 3.0]
        assert [policy.delay_ms(n) / 1000 for n in range(4)] == recording_sleep.delays

    @pytest.mark.asyncio
    async def test_unauthorized_fails_immediately(self, recording_sleep):
        operation = Flaky([UpstreamStatusError(401, "invalid api key")])

        with pytest.raises(UpstreamStatusError):
            await retry_async(operation, sleep=recording_sleep)

        assert operation.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, recording_sleep):
        operation = Flaky([UpstreamStatusError(503, "unavailable")], result="done")
        observed = []

        result = await retry_async(
            operation,
            on_retry=lambda attempt, error: observed.append((attempt, error.status_code)),
            sleep=recording_sleep,
        )

        assert result == "done"
        assert operation.calls == 2
        assert observed == [(1, 503)]

    @pytest.mark.asyncio
    async def test_observer_failure_is_ignored(self, recording_sleep):
        operation = Flaky([UpstreamNetworkError("reset")], result="done")

        def broken_observer(attempt, error):
            raise ValueError("observer bug")

        assert await retry_async(operation, on_retry=broken_observer, sleep=recording_sleep) == "done"
