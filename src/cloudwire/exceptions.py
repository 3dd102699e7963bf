"""Exceptions raised on the request signing and execution path."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .http.protocols import HttpRequest, HttpResponse


class HttpError(Exception):
    """
    Transport-level failure for a single command.

    Attributes:
        request: The request being executed when the error occurred (if known)
    """

    def __init__(self, message: str, request: HttpRequest | None = None) -> None:
        super().__init__(message)
        self.request = request


class SigningError(HttpError):
    """A cryptographic primitive failed while signing a request. Never retried."""


class HttpResponseError(HttpError):
    """
    The server answered with a failure and no retry was (or is any longer) allowed.

    Attributes:
        response: The last response received
        status_code: Its HTTP status code
        failure_count: Number of failures recorded on the command
    """

    def __init__(
        self,
        message: str,
        response: HttpResponse,
        failure_count: int = 0,
        request: HttpRequest | None = None,
    ) -> None:
        super().__init__(message, request)
        self.response = response
        self.status_code = response.status_code
        self.failure_count = failure_count


class RequestAbortedError(HttpError):
    """The command was cancelled while waiting to retry."""


class AuthorizationError(HttpResponseError):
    """The OAuth token endpoint rejected an authorization request."""
