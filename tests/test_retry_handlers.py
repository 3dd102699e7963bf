"""Tests for backoff, rate limit and delegating retry handlers."""

import asyncio
import io
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from cloudwire.http.command import CommandState, HttpCommand
from cloudwire.http.payload import FormPayload, InputStreamPayload
from cloudwire.http.protocols import HttpRequest, HttpResponse
from cloudwire.http.retry import (
    BackoffLimitedRetryHandler,
    DelegatingRetryHandler,
    RetryAfterRateLimitHandler,
    backoff_delay_ms,
    parse_retry_after,
)

ENDPOINT = "https://sts.amazonaws.com/"


def make_command(payload=None):
    if payload is None:
        payload = FormPayload([("Action", "GetCallerIdentity")])
    return HttpCommand(HttpRequest.create("POST", ENDPOINT, {"Host": "sts.amazonaws.com"}, payload))


def make_response(status, retry_after=None, payload=None):
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return HttpResponse.create(status, headers, payload)


class TestBackoffDelay:
    """Tests for backoff_delay_ms."""

    def test_grows_with_failure_count(self):
        """Test delay is period * count^pow without jitter."""
        assert backoff_delay_ms(500, 2, 1, jitter=False) == 500
        assert backoff_delay_ms(500, 2, 2, jitter=False) == 2000
        assert backoff_delay_ms(500, 2, 3, jitter=False) == 4500

    def test_capped_at_ten_periods(self):
        """Test the default ceiling is ten times the period."""
        assert backoff_delay_ms(500, 2, 4, jitter=False) == 5000
        assert backoff_delay_ms(500, 2, 10) == 5000

    def test_explicit_ceiling(self):
        """Test an explicit max period wins over the default."""
        assert backoff_delay_ms(500, 2, 3, max_period_ms=1000, jitter=False) == 1000

    def test_jitter_bounds(self):
        """Test jitter adds less than 10% of the delay."""
        for _ in range(50):
            assert 2000 <= backoff_delay_ms(500, 2, 2) < 2200

    def test_small_delays_have_no_jitter(self):
        """Test delays below 10 ms are exact."""
        assert backoff_delay_ms(1, 2, 2) == 4

    def test_zero_period(self):
        """Test a zero period means no delay."""
        assert backoff_delay_ms(0, 2, 3) == 0


class TestBackoffLimitedRetryHandler:
    """Tests for BackoffLimitedRetryHandler."""

    @pytest.fixture
    def sleep(self):
        return MagicMock()

    @pytest.fixture
    def handler(self, sleep):
        return BackoffLimitedRetryHandler(retry_count_limit=5, delay_start_ms=50, sleep=sleep)

    def test_retries_up_to_limit(self, handler, sleep):
        """Test five retries are allowed and the sixth is refused."""
        command = make_command()
        response = make_response(503)
        results = [handler.should_retry_request(command, response) for _ in range(6)]

        assert results == [True, True, True, True, True, False]
        assert command.failure_count == 6
        assert command.state is CommandState.RETRY_EXHAUSTED
        assert sleep.call_count == 5

    def test_failure_count_monotonic(self, handler):
        """Test each decision increments the failure count by one."""
        command = make_command()
        counts = []
        for _ in range(7):
            handler.should_retry_request(command, make_response(500))
            counts.append(command.failure_count)
        assert counts == [1, 2, 3, 4, 5, 6, 7]

    def test_delays_grow(self, handler, sleep):
        """Test sleep durations follow the backoff curve."""
        command = make_command()
        for _ in range(3):
            handler.should_retry_request(command, make_response(500))
        delays = [call.args[0] for call in sleep.call_args_list]
        assert 0.050 <= delays[0] < 0.055
        assert 0.200 <= delays[1] < 0.220
        assert 0.450 <= delays[2] <= 0.500

    def test_third_attempt_bounds(self, sleep):
        """Test the third failure with a 500 ms period waits between 4.5 and 5 seconds."""
        handler = BackoffLimitedRetryHandler(delay_start_ms=500, sleep=sleep)
        command = make_command()
        command.increment_failure_count()
        command.increment_failure_count()
        assert handler.should_retry_request(command, make_response(500))
        assert 4.499 <= sleep.call_args.args[0] < 5.0

    def test_second_attempt_real_wait(self):
        """Test the second failure with a 500 ms period blocks for about two seconds."""
        handler = BackoffLimitedRetryHandler(delay_start_ms=500)
        command = make_command()
        command.increment_failure_count()

        start = time.monotonic()
        assert handler.should_retry_request(command, make_response(500))
        elapsed_ms = (time.monotonic() - start) * 1000

        assert 1999 <= elapsed_ms < 4500
        assert command.state is CommandState.ACTIVE

    def test_zero_delay_does_not_sleep(self, sleep):
        """Test a zero period retries without sleeping."""
        handler = BackoffLimitedRetryHandler(delay_start_ms=0, sleep=sleep)
        assert handler.should_retry_request(make_command(), make_response(500))
        sleep.assert_not_called()

    def test_non_replayable_payload_not_retried(self, handler, sleep):
        """Test a one-shot stream body is never retried and never closed."""
        stream = io.BytesIO(b"data")
        command = make_command(InputStreamPayload(stream))

        assert handler.should_retry_request(command, make_response(500)) is False
        assert command.failure_count == 1
        assert command.state is CommandState.FAILED
        assert not stream.closed
        sleep.assert_not_called()

    def test_response_payload_untouched(self, handler):
        """Test the handler neither reads nor closes the response body."""
        body = io.BytesIO(b"<Error/>")
        response = make_response(500, payload=InputStreamPayload(body))
        handler.should_retry_request(make_command(), response)
        assert body.tell() == 0
        assert not body.closed

    def test_transport_errors_retried(self, handler, sleep):
        """Test transport errors use the same limits."""
        command = make_command()
        error = ConnectionError("reset")
        results = [handler.should_retry_on_error(command, error) for _ in range(6)]
        assert results == [True] * 5 + [False]
        assert command.state is CommandState.RETRY_EXHAUSTED

    @pytest.mark.asyncio
    async def test_async_retry(self):
        """Test the async variant waits without blocking and resets the state."""
        handler = BackoffLimitedRetryHandler(delay_start_ms=1)
        command = make_command()
        assert await handler.should_retry_request_async(command, make_response(500))
        assert command.failure_count == 1
        assert command.state is CommandState.ACTIVE

    @pytest.mark.asyncio
    async def test_async_cancellation_aborts(self):
        """Test cancelling the awaiting task marks the command aborted."""
        handler = BackoffLimitedRetryHandler(delay_start_ms=10_000)
        command = make_command()
        task = asyncio.ensure_future(handler.should_retry_request_async(command, make_response(500)))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert command.state is CommandState.ABORTED


class TestRetryAfterRateLimitHandler:
    """Tests for RetryAfterRateLimitHandler."""

    @pytest.fixture
    def handler(self):
        return RetryAfterRateLimitHandler(retry_count_limit=5, max_rate_limit_wait_ms=120_000)

    def test_immediate_retry(self, handler):
        """Test Retry-After: 0 retries at once."""
        command = make_command()
        assert handler.should_retry_request(command, make_response(429, "0")) is True
        assert command.failure_count == 1
        assert command.state is CommandState.ACTIVE

    def test_waits_server_requested_time(self, handler):
        """Test the wait equals the Retry-After seconds."""
        command = make_command()
        with patch.object(command, "wait_cancellable", return_value=False) as wait:
            assert handler.should_retry_request(command, make_response(429, "3"))
        wait.assert_called_once_with(3.0)

    def test_wait_above_ceiling_refused(self, handler):
        """Test Retry-After beyond the ceiling fails without waiting."""
        command = make_command()
        with patch.object(command, "wait_cancellable") as wait:
            assert handler.should_retry_request(command, make_response(429, "400")) is False
        wait.assert_not_called()
        assert command.failure_count == 1
        assert command.state is CommandState.FAILED

    def test_missing_retry_after_refused(self, handler):
        """Test a 429 without Retry-After is not retried."""
        command = make_command()
        assert handler.should_retry_request(command, make_response(429)) is False
        assert command.state is CommandState.FAILED

    def test_malformed_retry_after_refused(self, handler):
        """Test an unparseable Retry-After is not retried."""
        assert handler.should_retry_request(make_command(), make_response(429, "soon")) is False

    def test_other_status_refused(self, handler):
        """Test non-429 responses are not handled."""
        command = make_command()
        assert handler.should_retry_request(command, make_response(503, "0")) is False
        assert command.failure_count == 1

    def test_retry_limit(self):
        """Test the count limit applies to rate limit retries."""
        handler = RetryAfterRateLimitHandler(retry_count_limit=2)
        command = make_command()
        results = [handler.should_retry_request(command, make_response(429, "0")) for _ in range(3)]
        assert results == [True, True, False]
        assert command.state is CommandState.RETRY_EXHAUSTED

    def test_non_replayable_refused(self, handler):
        """Test a one-shot stream body is not retried."""
        stream = io.BytesIO(b"data")
        command = make_command(InputStreamPayload(stream))
        assert handler.should_retry_request(command, make_response(429, "0")) is False
        assert not stream.closed

    def test_cancel_interrupts_wait(self, handler):
        """Test cancel() from another thread ends the wait and aborts the command."""
        command = make_command()
        timer = threading.Timer(0.1, command.cancel)
        timer.start()
        try:
            start = time.monotonic()
            assert handler.should_retry_request(command, make_response(429, "5")) is False
            assert time.monotonic() - start < 4
        finally:
            timer.cancel()
        assert command.state is CommandState.ABORTED

    def test_http_date(self):
        """Test an HTTP-date Retry-After is measured from the handler's clock."""
        now = datetime(2015, 10, 21, 7, 27, 0, tzinfo=timezone.utc)
        handler = RetryAfterRateLimitHandler(clock=lambda: now)
        command = make_command()
        with patch.object(command, "wait_cancellable", return_value=False) as wait:
            assert handler.should_retry_request(command, make_response(429, "Wed, 21 Oct 2015 07:28:00 GMT"))
        wait.assert_called_once_with(60.0)

    @pytest.mark.asyncio
    async def test_async_retry(self, handler):
        """Test the async variant retries after the requested wait."""
        command = make_command()
        assert await handler.should_retry_request_async(command, make_response(429, "0")) is True
        assert command.state is CommandState.ACTIVE

    @pytest.mark.asyncio
    async def test_async_cancellation(self, handler):
        """Test cancelling the awaiting task marks the command aborted."""
        command = make_command()
        task = asyncio.ensure_future(handler.should_retry_request_async(command, make_response(429, "30")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert command.state is CommandState.ABORTED


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_seconds(self):
        """Test delta-seconds are converted to milliseconds."""
        assert parse_retry_after("120") == 120_000

    def test_past_date_is_zero(self):
        """Test a date in the past means no wait."""
        now = datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 0

    def test_future_date(self):
        """Test a future date gives the remaining time."""
        now = datetime(2015, 10, 21, 7, 28, 0, tzinfo=timezone.utc) - timedelta(seconds=5)
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 5000

    def test_missing_and_malformed(self):
        """Test missing or malformed values give None."""
        assert parse_retry_after(None) is None
        assert parse_retry_after("later") is None
        assert parse_retry_after("-5") is None


class TestDelegatingRetryHandler:
    """Tests for DelegatingRetryHandler."""

    @pytest.fixture
    def sleep(self):
        return MagicMock()

    @pytest.fixture
    def handler(self, sleep):
        return DelegatingRetryHandler(backoff_handler=BackoffLimitedRetryHandler(sleep=sleep))

    def test_rate_limit_routed(self, handler, sleep):
        """Test 429 goes to the rate limit handler."""
        command = make_command()
        assert handler.should_retry_request(command, make_response(429, "0"))
        sleep.assert_not_called()

    def test_rate_limit_without_retry_after_refused(self, handler, sleep):
        """Test a 429 without guidance is not retried with backoff instead."""
        assert handler.should_retry_request(make_command(), make_response(429)) is False
        sleep.assert_not_called()

    def test_server_error_routed_to_backoff(self, handler, sleep):
        """Test 5xx goes to the backoff handler."""
        assert handler.should_retry_request(make_command(), make_response(503))
        sleep.assert_called_once()

    def test_success_status_not_retried(self, handler):
        """Test statuses below 400 are never retried."""
        command = make_command()
        assert handler.should_retry_request(command, make_response(302)) is False
        assert command.failure_count == 1
        assert command.state is CommandState.FAILED

    def test_counts_shared_across_handlers(self, handler):
        """Test both handlers add to the same failure count."""
        command = make_command()
        handler.should_retry_request(command, make_response(503))
        handler.should_retry_request(command, make_response(429, "0"))
        handler.should_retry_on_error(command, ConnectionError("reset"))
        assert command.failure_count == 3

    @pytest.mark.asyncio
    async def test_async_routing(self):
        """Test the async variants route the same way."""
        handler = DelegatingRetryHandler(backoff_handler=BackoffLimitedRetryHandler(delay_start_ms=1))
        command = make_command()
        assert await handler.should_retry_request_async(command, make_response(429, "0"))
        assert await handler.should_retry_request_async(command, make_response(500))
        assert await handler.should_retry_on_error_async(command, ConnectionError("reset"))
        assert await handler.should_retry_request_async(command, make_response(204)) is False
        assert command.failure_count == 4
