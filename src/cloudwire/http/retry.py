"""Retry decisions for failed commands: exponential backoff and server-directed rate limits."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

from .command import HttpCommand
from .protocols import HttpResponse

logger = logging.getLogger(__name__)

DEFAULT_RETRY_COUNT_LIMIT = 5
DEFAULT_DELAY_START_MS = 50
DEFAULT_BACKOFF_POW = 2
DEFAULT_MAX_RATE_LIMIT_WAIT_MS = 2 * 60 * 1000
RATE_LIMIT_STATUS = 429


def backoff_delay_ms(
    period_ms: int,
    pow: int,
    failure_count: int,
    max_period_ms: Optional[int] = None,
    jitter: bool = True,
) -> int:
    """
    Compute the delay before retry number ``failure_count``.

    The delay grows as ``period * failure_count ** pow``. Up to 10% random
    jitter is added so that commands failing together do not retry together,
    and the result is capped at ``max_period_ms`` (``period * 10`` by default).

    Args:
        period_ms: Base delay in milliseconds
        pow: Exponent applied to the failure count
        failure_count: Failures recorded so far (1 for the first retry)
        max_period_ms: Upper bound for the delay
        jitter: Whether to add random jitter

    Returns:
        Delay in milliseconds, never negative
    """
    if max_period_ms is None:
        max_period_ms = period_ms * 10
    delay = int(period_ms * failure_count**pow)
    if jitter and delay >= 10:
        delay += random.randrange(delay // 10)
    return max(0, min(delay, max_period_ms))


class BackoffLimitedRetryHandler:
    """
    Retries generic 4xx/5xx failures and transport errors with exponential backoff.

    Each decision increments the command's failure count. Retrying is refused
    once the count exceeds ``retry_count_limit`` or when the request body
    cannot be replayed. The wait happens on the calling thread with
    ``time.sleep`` and cannot be cancelled.

    Example:
        handler = BackoffLimitedRetryHandler(retry_count_limit=5, delay_start_ms=50)
        if handler.should_retry_request(command, response):
            resend(command)
    """

    def __init__(
        self,
        retry_count_limit: int = DEFAULT_RETRY_COUNT_LIMIT,
        delay_start_ms: int = DEFAULT_DELAY_START_MS,
        backoff_pow: int = DEFAULT_BACKOFF_POW,
        max_period_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the handler.

        Args:
            retry_count_limit: Maximum number of retries for one command
            delay_start_ms: Base backoff period in milliseconds
            backoff_pow: Exponent applied to the failure count
            max_period_ms: Ceiling for a single delay (default: 10x the base period)
            sleep: Blocking sleep function taking seconds
        """
        self.retry_count_limit = retry_count_limit
        self.delay_start_ms = delay_start_ms
        self.backoff_pow = backoff_pow
        self.max_period_ms = max_period_ms
        self._sleep = sleep

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        reason = f"HTTP {response.status_code}"
        if not self._retry_allowed(command, reason):
            return False
        command.mark_retrying()
        self.impose_backoff_exponential_delay(
            self.delay_start_ms,
            self.backoff_pow,
            command.failure_count,
            self.retry_count_limit,
            f"{reason}: {command!r}",
            self.max_period_ms,
        )
        command.mark_active()
        return True

    def should_retry_on_error(self, command: HttpCommand, error: BaseException) -> bool:
        reason = f"transport error {type(error).__name__}: {error}"
        if not self._retry_allowed(command, reason):
            return False
        command.mark_retrying()
        self.impose_backoff_exponential_delay(
            self.delay_start_ms,
            self.backoff_pow,
            command.failure_count,
            self.retry_count_limit,
            f"{reason}: {command!r}",
            self.max_period_ms,
        )
        command.mark_active()
        return True

    async def should_retry_request_async(self, command: HttpCommand, response: HttpResponse) -> bool:
        reason = f"HTTP {response.status_code}"
        if not self._retry_allowed(command, reason):
            return False
        await self._backoff_async(command, reason)
        return True

    async def should_retry_on_error_async(self, command: HttpCommand, error: BaseException) -> bool:
        reason = f"transport error {type(error).__name__}: {error}"
        if not self._retry_allowed(command, reason):
            return False
        await self._backoff_async(command, reason)
        return True

    def impose_backoff_exponential_delay(
        self,
        period_ms: int,
        pow: int,
        failure_count: int,
        max_retries: int,
        description: str,
        max_period_ms: Optional[int] = None,
    ) -> None:
        """
        Block the calling thread for the backoff delay of ``failure_count``.

        Args:
            period_ms: Base delay in milliseconds
            pow: Exponent applied to the failure count
            failure_count: Failures recorded so far
            max_retries: Retry limit, used for logging only
            description: What is being retried, used for logging only
            max_period_ms: Ceiling for the delay (default: 10x ``period_ms``)
        """
        delay = backoff_delay_ms(period_ms, pow, failure_count, max_period_ms)
        logger.debug(f"Retry {failure_count}/{max_retries}: delaying for {delay} ms: {description}")
        if delay > 0:
            self._sleep(delay / 1000)

    def _retry_allowed(self, command: HttpCommand, reason: str) -> bool:
        command.increment_failure_count()
        if not command.is_replayable():
            logger.error(f"Cannot retry after {reason}, command is not replayable: {command!r}")
            command.mark_failed()
            return False
        if command.failure_count > self.retry_count_limit:
            logger.error(
                f"Cannot retry after {reason}, command has exceeded retry limit "
                f"{self.retry_count_limit}: {command!r}"
            )
            command.mark_exhausted()
            return False
        return True

    async def _backoff_async(self, command: HttpCommand, reason: str) -> None:
        delay = backoff_delay_ms(self.delay_start_ms, self.backoff_pow, command.failure_count, self.max_period_ms)
        logger.debug(
            f"Retry {command.failure_count}/{self.retry_count_limit}: delaying for {delay} ms: {reason}: {command!r}"
        )
        command.mark_retrying()
        try:
            await asyncio.sleep(delay / 1000)
        except asyncio.CancelledError:
            command.mark_aborted()
            raise
        command.mark_active()


class RateLimitRetryHandler(ABC):
    """
    Retries rate-limited (429) responses after the wait the server asks for.

    Retrying is refused when the response carries no wait information, when
    the wait exceeds ``max_rate_limit_wait_ms``, when the request body cannot
    be replayed, or when the retry limit is exceeded. The wait can be
    interrupted with ``HttpCommand.cancel()``, which marks the command
    aborted and refuses the retry.

    Subclasses decide how the wait is read from the response.
    """

    rate_limit_status = RATE_LIMIT_STATUS

    def __init__(
        self,
        retry_count_limit: int = DEFAULT_RETRY_COUNT_LIMIT,
        max_rate_limit_wait_ms: int = DEFAULT_MAX_RATE_LIMIT_WAIT_MS,
    ) -> None:
        self.retry_count_limit = retry_count_limit
        self.max_rate_limit_wait_ms = max_rate_limit_wait_ms

    @abstractmethod
    def millis_to_next_available_request(self, command: HttpCommand, response: HttpResponse) -> Optional[int]:
        """
        Return how long to wait before the next request, or None if unknown.

        Args:
            command: The command being retried
            response: The rate-limited response

        Returns:
            Milliseconds to wait, or None when the response gives no guidance
        """

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        wait_ms = self._allowed_wait(command, response)
        if wait_ms is None:
            return False
        if wait_ms > 0:
            logger.debug(f"Waiting {wait_ms / 1000:.1f} seconds before retrying, as defined by server")
            command.mark_retrying()
            if command.wait_cancellable(wait_ms / 1000):
                logger.warning(f"Rate limit wait cancelled, not retrying: {command!r}")
                command.mark_aborted()
                return False
        command.mark_active()
        return True

    async def should_retry_request_async(self, command: HttpCommand, response: HttpResponse) -> bool:
        wait_ms = self._allowed_wait(command, response)
        if wait_ms is None:
            return False
        if wait_ms > 0:
            logger.debug(f"Waiting {wait_ms / 1000:.1f} seconds before retrying, as defined by server")
            command.mark_retrying()
            try:
                await asyncio.sleep(wait_ms / 1000)
            except asyncio.CancelledError:
                command.mark_aborted()
                raise
        command.mark_active()
        return True

    def _allowed_wait(self, command: HttpCommand, response: HttpResponse) -> Optional[int]:
        command.increment_failure_count()

        # Do not retry client errors that are not rate limit errors
        if response.status_code != self.rate_limit_status:
            command.mark_failed()
            return None
        if not command.is_replayable():
            logger.error(f"Cannot retry after rate limit error, command is not replayable: {command!r}")
            command.mark_failed()
            return None
        if command.failure_count > self.retry_count_limit:
            logger.error(
                f"Cannot retry after rate limit error, command has exceeded retry limit "
                f"{self.retry_count_limit}: {command!r}"
            )
            command.mark_exhausted()
            return None

        wait_ms = self.millis_to_next_available_request(command, response)
        if wait_ms is None:
            logger.error("Cannot retry after rate limit error, no retry information provided in the response")
            command.mark_failed()
            return None
        if wait_ms > self.max_rate_limit_wait_ms:
            logger.error(
                f"Max wait for rate limited requests is {self.max_rate_limit_wait_ms / 1000:.0f} seconds "
                f"but need to wait {wait_ms / 1000:.0f} seconds, aborting"
            )
            command.mark_failed()
            return None
        return max(wait_ms, 0)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """
    Parse a Retry-After header value into milliseconds.

    Accepts delta-seconds ("120") or an HTTP-date. Dates in the past yield 0.

    Args:
        value: Raw header value
        now: Current time, for HTTP-date values (default: now, UTC)

    Returns:
        Milliseconds to wait, or None if the value is missing or malformed
    """
    if value is None:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value) * 1000
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int((when - now).total_seconds() * 1000))


class RetryAfterRateLimitHandler(RateLimitRetryHandler):
    """Rate limit handler driven by the standard ``Retry-After`` header."""

    def __init__(
        self,
        retry_count_limit: int = DEFAULT_RETRY_COUNT_LIMIT,
        max_rate_limit_wait_ms: int = DEFAULT_MAX_RATE_LIMIT_WAIT_MS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        super().__init__(retry_count_limit, max_rate_limit_wait_ms)
        self._clock = clock

    def millis_to_next_available_request(self, command: HttpCommand, response: HttpResponse) -> Optional[int]:
        return parse_retry_after(response.first_header("Retry-After"), now=self._clock())


class DelegatingRetryHandler:
    """
    Routes a retry decision by response status.

    429 goes to the rate limit handler; any other 4xx/5xx goes to the
    backoff handler. Transport errors always go to the backoff handler.
    """

    def __init__(
        self,
        backoff_handler: Optional[BackoffLimitedRetryHandler] = None,
        rate_limit_handler: Optional[RateLimitRetryHandler] = None,
    ) -> None:
        self.backoff_handler = backoff_handler or BackoffLimitedRetryHandler()
        self.rate_limit_handler = rate_limit_handler or RetryAfterRateLimitHandler()

    def _handler_for(self, response: HttpResponse):
        if response.status_code == self.rate_limit_handler.rate_limit_status:
            return self.rate_limit_handler
        if response.status_code >= 400:
            return self.backoff_handler
        return None

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        handler = self._handler_for(response)
        if handler is None:
            command.increment_failure_count()
            command.mark_failed()
            return False
        return handler.should_retry_request(command, response)

    async def should_retry_request_async(self, command: HttpCommand, response: HttpResponse) -> bool:
        handler = self._handler_for(response)
        if handler is None:
            command.increment_failure_count()
            command.mark_failed()
            return False
        return await handler.should_retry_request_async(command, response)

    def should_retry_on_error(self, command: HttpCommand, error: BaseException) -> bool:
        return self.backoff_handler.should_retry_on_error(command, error)

    async def should_retry_on_error_async(self, command: HttpCommand, error: BaseException) -> bool:
        return await self.backoff_handler.should_retry_on_error_async(command, error)
