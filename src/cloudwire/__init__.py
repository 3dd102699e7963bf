"""
cloudwire - Signed HTTP requests for cloud provider APIs, with retries.

Usage:
    from cloudwire import Credentials, FormSignerV4, AWSServiceAndRegion, HttpCommandExecutor
    from cloudwire import FormPayload, HttpRequest, static_credentials

    signer = FormSignerV4(
        "2010-05-08",
        static_credentials(Credentials("AKID", "secret")),
        AWSServiceAndRegion("https://iam.amazonaws.com"),
    )
    request = HttpRequest.create(
        "POST",
        "https://iam.amazonaws.com/",
        {"Host": "iam.amazonaws.com"},
        FormPayload([("Action", "ListUsers")]),
        filters=[signer],
    )

    with HttpCommandExecutor() as executor:
        response = executor.invoke(request)
"""

__version__ = "1.0.0"

from .exceptions import AuthorizationError, HttpError, HttpResponseError, RequestAbortedError, SigningError
from .http import (
    AsyncHttpClient,
    BackoffLimitedRetryHandler,
    ByteArrayPayload,
    CommandState,
    DelegatingRetryHandler,
    FormPayload,
    HttpCommand,
    HttpCommandExecutor,
    HttpRequest,
    HttpResponse,
    InputStreamPayload,
    RetryAfterRateLimitHandler,
    StringPayload,
)
from .models.config import CloudwireConfig, RetryConfig
from .signing import (
    AuthorizationApi,
    AWSServiceAndRegion,
    Aws4HeaderSigner,
    BearerTokenAuthentication,
    Credentials,
    FormSignerV4,
    HeaderSigning,
    QueryStringSigning,
    SessionCredentials,
    SharedKeyLiteAuthentication,
    static_credentials,
)

__all__ = [
    "__version__",
    # Requests
    "HttpRequest",
    "HttpResponse",
    "ByteArrayPayload",
    "FormPayload",
    "InputStreamPayload",
    "StringPayload",
    # Execution
    "AsyncHttpClient",
    "CommandState",
    "HttpCommand",
    "HttpCommandExecutor",
    # Retry
    "BackoffLimitedRetryHandler",
    "DelegatingRetryHandler",
    "RetryAfterRateLimitHandler",
    # Signing
    "AWSServiceAndRegion",
    "Aws4HeaderSigner",
    "AuthorizationApi",
    "BearerTokenAuthentication",
    "Credentials",
    "FormSignerV4",
    "HeaderSigning",
    "QueryStringSigning",
    "SessionCredentials",
    "SharedKeyLiteAuthentication",
    "static_credentials",
    # Config
    "CloudwireConfig",
    "RetryConfig",
    # Errors
    "AuthorizationError",
    "HttpError",
    "HttpResponseError",
    "RequestAbortedError",
    "SigningError",
]
