"""Async command execution with aiohttp."""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

import aiohttp

from ..exceptions import HttpError
from .command import HttpCommand
from .executor import DEFAULT_USER_AGENT, apply_filters, command_failure, transport_headers
from .payload import ByteArrayPayload, ContentMetadata
from .protocols import HttpRequest, HttpResponse, HttpRetryHandler
from .retry import DelegatingRetryHandler

logger = logging.getLogger(__name__)


class AsyncHttpClient:
    """
    Async HTTP client that signs and retries commands.

    Features:
    - Request filters (signers) applied again before every attempt
    - Backoff and rate limit retries through a retry handler (default: DelegatingRetryHandler)
    - Content size limits to prevent memory exhaustion
    - Timeout controls

    Cancelling the task that awaits ``invoke`` while a retry wait is in
    progress marks the command aborted and propagates the cancellation.

    Example:
        client = AsyncHttpClient()

        async with client:
            response = await client.invoke(signed_request)
            print(response.content.decode())
    """

    MAX_CONTENT_SIZE = 50 * 1024 * 1024  # 50 MB

    # Exceptions that go to the retry handler
    RETRYABLE_EXCEPTIONS = (
        aiohttp.ClientError,
        asyncio.TimeoutError,
        ConnectionError,
    )

    def __init__(
        self,
        retry_handler: HttpRetryHandler | None = None,
        max_content_size: int = MAX_CONTENT_SIZE,
        user_agent: str | None = None,
        proxy: str | None = None,
        default_timeout: float = 30.0,
    ) -> None:
        """
        Initialize the HTTP client.

        Args:
            retry_handler: Decides on retries (default: DelegatingRetryHandler())
            max_content_size: Maximum response size in bytes
            user_agent: Custom User-Agent string
            proxy: Proxy URL (http:// or socks5://)
            default_timeout: Default request timeout in seconds
        """
        self._retry_handler = retry_handler or DelegatingRetryHandler()
        self._max_content_size = max_content_size
        self._proxy = proxy
        self._default_timeout = default_timeout
        self._user_agent = user_agent or DEFAULT_USER_AGENT

        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> AsyncHttpClient:
        """Enter async context and create session."""
        connector = aiohttp.TCPConnector(
            limit=100,  # Total connection limit
            limit_per_host=10,  # Per-host connection limit
            ttl_dns_cache=300,  # DNS cache TTL
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers={"User-Agent": self._user_agent},
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context and close session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def invoke(self, request: HttpRequest, *, timeout: float | None = None) -> HttpResponse:
        """
        Execute a request until it succeeds or the retry handler gives up.

        Args:
            request: The unsigned request; its filters run before each attempt
            timeout: Per-attempt timeout in seconds (uses default if None)

        Returns:
            The first response with a status below 400

        Raises:
            HttpResponseError: The server kept failing and retrying stopped
            HttpError: A transport error that was not retried
            ValueError: On content size exceeded, or a filter rejected the request
            asyncio.CancelledError: The awaiting task was cancelled
        """
        return await self.execute(HttpCommand(request), timeout=timeout)

    async def execute(self, command: HttpCommand, *, timeout: float | None = None) -> HttpResponse:
        """Execute an existing command."""
        if self._session is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        timeout_val = timeout or self._default_timeout

        while True:
            filtered = apply_filters(command.current_request)
            try:
                response = await self._send(filtered, timeout_val)
            except self.RETRYABLE_EXCEPTIONS as e:
                if await self._retry_handler.should_retry_on_error_async(command, e):
                    logger.warning(f"Error sending {filtered.method} {filtered.endpoint}: {e}, retrying")
                    continue
                logger.error(
                    f"HTTP error for {filtered.endpoint} after {command.failure_count} failures: {e}"
                )
                raise HttpError(f"error sending {filtered.method} {filtered.endpoint}: {e}", filtered) from e

            if response.status_code < 400:
                command.mark_succeeded()
                return response

            if await self._retry_handler.should_retry_request_async(command, response):
                logger.warning(
                    f"Got {response.status_code} for {filtered.endpoint}, retrying "
                    f"(failure {command.failure_count})"
                )
                continue
            raise command_failure(command, response, filtered)

    async def get(self, url: str, *, headers: dict[str, str] | None = None) -> HttpResponse:
        """
        Perform an HTTP GET request with retry logic.

        Args:
            url: The URL to fetch
            headers: Optional additional headers

        Returns:
            HttpResponse with status, payload, and headers
        """
        return await self.invoke(HttpRequest.create("GET", url, headers))

    async def _send(self, request: HttpRequest, timeout: float) -> HttpResponse:
        assert self._session is not None
        data = None
        if request.payload is not None:
            data = request.payload.read_bytes() if request.payload.is_repeatable else request.payload.open_stream()

        async with self._session.request(
            request.method,
            request.endpoint,
            data=data,
            headers=transport_headers(request),
            timeout=aiohttp.ClientTimeout(total=timeout),
            proxy=self._proxy,
            allow_redirects=False,
        ) as response:
            # Check Content-Length if available
            content_length = response.headers.get("Content-Length")
            if content_length and int(content_length) > self._max_content_size:
                raise ValueError(f"Content too large: {content_length} bytes")

            # Read content with size limit
            content = b""
            async for chunk in response.content.iter_chunked(8192):
                content += chunk
                if len(content) > self._max_content_size:
                    raise ValueError(f"Content size limit exceeded: >{self._max_content_size} bytes")

            payload = None
            if content:
                payload = ByteArrayPayload(content, ContentMetadata(content_type=response.headers.get("Content-Type")))
            return HttpResponse.create(response.status, response.headers.items(), payload, response.reason or "")
