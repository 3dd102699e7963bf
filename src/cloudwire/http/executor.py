"""Synchronous command execution: filters, send, and retry on the calling thread."""

from __future__ import annotations

import base64
import logging
from types import TracebackType
from typing import Optional

import requests

from ..exceptions import HttpError, HttpResponseError, RequestAbortedError
from .command import CommandState, HttpCommand
from .payload import ByteArrayPayload, ContentMetadata
from .protocols import HttpRequest, HttpResponse, HttpRetryHandler
from .retry import DelegatingRetryHandler

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "cloudwire/1.0"


def apply_filters(request: HttpRequest) -> HttpRequest:
    """Run a request through its filters, in order."""
    filtered = request
    for request_filter in request.filters:
        filtered = request_filter.filter(filtered)
    return filtered


def transport_headers(request: HttpRequest) -> dict[str, str]:
    """
    Flatten request headers for an HTTP library.

    Repeated headers are joined with ", ". Content-Type and Content-MD5
    fall back to the payload's metadata, so headers a signer read from the
    metadata are the headers that get sent.
    """
    headers: dict[str, str] = {}
    for name, value in request.headers.items():
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    if request.payload is None:
        return headers

    present = {name.lower() for name in headers}
    metadata = request.payload.metadata
    if metadata.content_type and "content-type" not in present:
        headers["Content-Type"] = metadata.content_type
    if metadata.content_md5 and "content-md5" not in present:
        headers["Content-MD5"] = base64.b64encode(metadata.content_md5).decode("ascii")
    return headers


def command_failure(command: HttpCommand, response: HttpResponse, request: HttpRequest) -> HttpError:
    """Build the exception reported when a failed command will not be retried."""
    if command.state is CommandState.ABORTED:
        return RequestAbortedError(
            f"{request.method} {request.endpoint} aborted while waiting to retry "
            f"(HTTP {response.status_code}, {command.failure_count} failures)",
            request,
        )
    return HttpResponseError(
        f"{request.method} {request.endpoint} failed with HTTP {response.status_code} "
        f"after {command.failure_count} failures",
        response,
        command.failure_count,
        request,
    )


class HttpCommandExecutor:
    """
    Executes requests synchronously with requests, retrying through a retry handler.

    Filters (signers) run again before every attempt, so each attempt gets a
    fresh timestamp and signature. Backoff and rate-limit waits block the
    calling thread.

    Example:
        with HttpCommandExecutor() as executor:
            request = HttpRequest.create("POST", url, {"Host": host}, form, filters=[signer])
            response = executor.invoke(request)
    """

    MAX_CONTENT_SIZE = 50 * 1024 * 1024  # 50 MB

    def __init__(
        self,
        retry_handler: Optional[HttpRetryHandler] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        max_content_size: int = MAX_CONTENT_SIZE,
    ) -> None:
        """
        Initialize the executor.

        Args:
            retry_handler: Decides on retries (default: DelegatingRetryHandler())
            session: requests session to send with (default: a new session)
            timeout: Request timeout in seconds
            user_agent: Custom User-Agent string
            max_content_size: Maximum response size in bytes
        """
        self._retry_handler = retry_handler or DelegatingRetryHandler()
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_content_size = max_content_size
        self._session.headers["User-Agent"] = user_agent or DEFAULT_USER_AGENT

    def __enter__(self) -> HttpCommandExecutor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()

    def invoke(self, request: HttpRequest) -> HttpResponse:
        """
        Execute a request until it succeeds or the retry handler gives up.

        Returns:
            The first response with a status below 400

        Raises:
            HttpResponseError: The server kept failing and retrying stopped
            RequestAbortedError: The command was cancelled while waiting
            HttpError: A transport error that was not retried
            ValueError: A filter rejected the request, or the response is too large
        """
        return self.execute(HttpCommand(request))

    def execute(self, command: HttpCommand) -> HttpResponse:
        """Execute an existing command, so callers can cancel it from another thread."""
        while True:
            filtered = apply_filters(command.current_request)
            try:
                response = self._send(filtered)
            except requests.RequestException as e:
                if self._retry_handler.should_retry_on_error(command, e):
                    logger.warning(f"Error sending {filtered.method} {filtered.endpoint}: {e}, retrying")
                    continue
                raise HttpError(f"error sending {filtered.method} {filtered.endpoint}: {e}", filtered) from e

            if response.status_code < 400:
                command.mark_succeeded()
                return response

            if self._retry_handler.should_retry_request(command, response):
                logger.warning(
                    f"Got {response.status_code} for {filtered.endpoint}, retrying "
                    f"(failure {command.failure_count})"
                )
                continue
            raise command_failure(command, response, filtered)

    def _send(self, request: HttpRequest) -> HttpResponse:
        data = None
        if request.payload is not None:
            data = request.payload.read_bytes() if request.payload.is_repeatable else request.payload.open_stream()

        response = self._session.request(
            request.method,
            request.endpoint,
            headers=transport_headers(request),
            data=data,
            timeout=self._timeout,
            allow_redirects=False,
            stream=True,
        )
        try:
            content = self._read_content(response)
        finally:
            response.close()
        payload = None
        if content:
            payload = ByteArrayPayload(content, ContentMetadata(content_type=response.headers.get("Content-Type")))
        return HttpResponse.create(response.status_code, response.headers.items(), payload, response.reason or "")

    def _read_content(self, response: requests.Response) -> bytes:
        content_length = response.headers.get("Content-Length")
        if content_length and int(content_length) > self._max_content_size:
            raise ValueError(f"Content too large: {content_length} bytes (max: {self._max_content_size})")

        content = b""
        for chunk in response.iter_content(chunk_size=8192):
            content += chunk
            if len(content) > self._max_content_size:
                raise ValueError(f"Content size limit exceeded: >{self._max_content_size} bytes")
        return content
