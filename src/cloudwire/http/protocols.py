"""Request/response values and the protocols that act on them."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional, Protocol, Union
from urllib.parse import urlsplit

from multidict import CIMultiDict, CIMultiDictProxy

from .payload import FormPayload, Payload

if TYPE_CHECKING:
    from .command import HttpCommand

HeaderInput = Union[Mapping[str, str], Iterable[tuple[str, str]], None]


def freeze_headers(headers: HeaderInput = None) -> CIMultiDictProxy[str]:
    """Build an immutable, case-insensitive header multimap."""
    if headers is None:
        return CIMultiDictProxy(CIMultiDict())
    if isinstance(headers, CIMultiDictProxy):
        return headers
    return CIMultiDictProxy(CIMultiDict(headers))


@dataclass(frozen=True)
class HttpRequest:
    """
    Immutable outbound HTTP request.

    Every modifier returns a new request; the original is never changed.

    Attributes:
        method: HTTP method (GET, POST, ...)
        endpoint: Absolute request URI
        headers: Case-insensitive header multimap
        payload: Optional request body
        filters: Filters the executor applies, in order, before each attempt
    """

    method: str
    endpoint: str
    headers: CIMultiDictProxy[str] = field(default_factory=freeze_headers)
    payload: Optional[Payload] = None
    filters: tuple[HttpRequestFilter, ...] = ()

    @classmethod
    def create(
        cls,
        method: str,
        endpoint: str,
        headers: HeaderInput = None,
        payload: Optional[Payload] = None,
        filters: Iterable[HttpRequestFilter] = (),
    ) -> HttpRequest:
        """Create a request, normalizing headers into an immutable multimap."""
        return cls(method.upper(), endpoint, freeze_headers(headers), payload, tuple(filters))

    @property
    def host(self) -> Optional[str]:
        """Host header value, or None if not set."""
        return self.headers.get("Host")

    @property
    def path(self) -> str:
        """Raw (still percent-encoded) path of the endpoint."""
        return urlsplit(self.endpoint).path

    @property
    def query(self) -> str:
        """Raw query string of the endpoint, without the leading '?'."""
        return urlsplit(self.endpoint).query

    def first_header(self, name: str) -> Optional[str]:
        """Return the first value for a header, or None."""
        return self.headers.get(name)

    def with_header(self, name: str, value: str) -> HttpRequest:
        """Return a copy where ``name`` has exactly one value."""
        headers = CIMultiDict(self.headers)
        headers[name] = value
        return replace(self, headers=CIMultiDictProxy(headers))

    def with_headers(self, values: Mapping[str, str]) -> HttpRequest:
        """Return a copy where each header in ``values`` is replaced."""
        headers = CIMultiDict(self.headers)
        for name, value in values.items():
            headers[name] = value
        return replace(self, headers=CIMultiDictProxy(headers))

    def adding_header(self, name: str, value: str) -> HttpRequest:
        """Return a copy with one more value for ``name``."""
        headers = CIMultiDict(self.headers)
        headers.add(name, value)
        return replace(self, headers=CIMultiDictProxy(headers))

    def without_header(self, name: str) -> HttpRequest:
        """Return a copy with every value of ``name`` removed."""
        if name not in self.headers:
            return self
        headers = CIMultiDict(self.headers)
        del headers[name]
        return replace(self, headers=CIMultiDictProxy(headers))

    def with_endpoint(self, endpoint: str) -> HttpRequest:
        return replace(self, endpoint=endpoint)

    def with_payload(self, payload: Optional[Payload]) -> HttpRequest:
        return replace(self, payload=payload)

    def with_form_param(self, name: str, value: str) -> HttpRequest:
        """Return a copy whose form payload has one more parameter."""
        if not isinstance(self.payload, FormPayload):
            raise ValueError(f"request does not carry a form payload: {self.payload!r}")
        return replace(self, payload=self.payload.adding_param(name, value))

    def with_filters(self, *filters: HttpRequestFilter) -> HttpRequest:
        return replace(self, filters=tuple(filters))

    def __str__(self) -> str:
        return (
            f"[method={self.method}, endpoint={self.endpoint}, "
            f"headers={len(self.headers)}, payload={self.payload!r}]"
        )


@dataclass(frozen=True)
class HttpResponse:
    """
    Immutable HTTP response.

    Attributes:
        status_code: HTTP status code (200, 404, etc.)
        headers: Case-insensitive response header multimap
        payload: Optional response body
        message: Reason phrase sent by the server
    """

    status_code: int
    headers: CIMultiDictProxy[str] = field(default_factory=freeze_headers)
    payload: Optional[Payload] = None
    message: str = ""

    @classmethod
    def create(
        cls,
        status_code: int,
        headers: HeaderInput = None,
        payload: Optional[Payload] = None,
        message: str = "",
    ) -> HttpResponse:
        return cls(status_code, freeze_headers(headers), payload, message)

    @property
    def content(self) -> bytes:
        """Response body bytes (empty if there is no payload)."""
        if self.payload is None:
            return b""
        return self.payload.read_bytes()

    def first_header(self, name: str) -> Optional[str]:
        return self.headers.get(name)


class HttpRequestFilter(Protocol):
    """
    Protocol for request filters such as signers.

    A filter must return a new request and leave its input untouched.
    """

    def filter(self, request: HttpRequest) -> HttpRequest:
        """
        Transform a request before it is sent.

        Args:
            request: The request to transform

        Returns:
            The transformed request

        Raises:
            ValueError: If the request cannot be processed by this filter
            cloudwire.exceptions.SigningError: If a cryptographic step fails
        """
        ...


class HttpRetryHandler(Protocol):
    """
    Protocol for deciding whether a failed command should be re-sent.

    Implementations increment the command's failure count on every call,
    may block the calling thread before answering True, and must not close
    or consume the response payload.
    """

    def should_retry_request(self, command: HttpCommand, response: HttpResponse) -> bool:
        """Return True if the command should be sent again."""
        ...

    async def should_retry_request_async(self, command: HttpCommand, response: HttpResponse) -> bool:
        """Async variant of ``should_retry_request``; waits without blocking the loop."""
        ...

    def should_retry_on_error(self, command: HttpCommand, error: BaseException) -> bool:
        """Return True if a transport error should be retried."""
        ...

    async def should_retry_on_error_async(self, command: HttpCommand, error: BaseException) -> bool:
        ...
