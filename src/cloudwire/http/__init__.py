"""Request/response values, retry handlers and executors for cloudwire."""

from .client import AsyncHttpClient
from .command import CommandState, HttpCommand
from .executor import HttpCommandExecutor
from .payload import (
    ByteArrayPayload,
    ContentMetadata,
    FormPayload,
    InputStreamPayload,
    Payload,
    StringPayload,
)
from .protocols import HttpRequest, HttpRequestFilter, HttpResponse, HttpRetryHandler
from .retry import (
    BackoffLimitedRetryHandler,
    DelegatingRetryHandler,
    RateLimitRetryHandler,
    RetryAfterRateLimitHandler,
)

__all__ = [
    "AsyncHttpClient",
    "BackoffLimitedRetryHandler",
    "ByteArrayPayload",
    "CommandState",
    "ContentMetadata",
    "DelegatingRetryHandler",
    "FormPayload",
    "HttpCommand",
    "HttpCommandExecutor",
    "HttpRequest",
    "HttpRequestFilter",
    "HttpResponse",
    "HttpRetryHandler",
    "InputStreamPayload",
    "Payload",
    "RateLimitRetryHandler",
    "RetryAfterRateLimitHandler",
    "StringPayload",
]
