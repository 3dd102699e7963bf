"""
Azure Storage authentication: SharedKeyLite headers or Shared Access Signatures.

One filter covers both schemes. The scheme is chosen once, at construction,
by passing a ``HeaderSigning`` or ``QueryStringSigning`` mode:

- ``HeaderSigning`` computes an HMAC-SHA256 over a canonical string and sets
  ``Authorization: SharedKeyLite <account>:<signature>``.
- ``QueryStringSigning`` never sets an Authorization header. It points the
  request at the account's blob endpoint and appends the SAS token to the
  query string.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import parse_qsl, urlsplit

from ..http.protocols import HttpRequest
from ..logging_config import get_signature_logger, log_request
from .credentials import Credentials, CredentialsSupplier
from .crypto import base64_encode, sign_base64
from .timestamps import TimestampSupplier, rfc1123

logger = logging.getLogger(__name__)

FIRST_HEADERS_TO_SIGN = ("Date",)
STORAGE_URL_TEMPLATE = "https://{identity}.blob.core.windows.net/"

_NEWLINES = re.compile(r"\r?\n")


@dataclass(frozen=True)
class HeaderSigning:
    """Sign each request with a SharedKeyLite Authorization header."""


@dataclass(frozen=True)
class QueryStringSigning:
    """
    Authorize each request with a Shared Access Signature in the query string.

    Attributes:
        sas_token: SAS query fragment, with or without a leading '?'. When
            None, the credential of the supplied credentials is used.
    """

    sas_token: Optional[str] = field(default=None, repr=False)


SigningMode = Union[HeaderSigning, QueryStringSigning]


def split_container_and_blob(path: str) -> tuple[str, Optional[str]]:
    """
    Extract the container and blob names from a request path.

    ``/container`` gives ``("container", None)``; ``/container/dir/blob.txt``
    gives ``("container", "dir/blob.txt")``.

    Raises:
        ValueError: If the path names no container
    """
    segments = path.split("/")
    if len(segments) < 2 or not segments[1]:
        raise ValueError(f"there is neither ContainerName nor BlobName in the URI path: {path!r}")
    blob = "/".join(segments[2:])
    return segments[1], blob or None


def canonicalized_headers(request: HttpRequest) -> str:
    """
    The ``x-ms-*`` section of the SharedKeyLite string to sign.

    Header names are lower-cased and sorted. Multiple values are joined with
    commas after removing embedded newlines.
    """
    grouped: dict[str, list[str]] = {}
    for name, value in request.headers.items():
        lower = name.lower()
        if lower.startswith("x-ms-"):
            grouped.setdefault(lower, []).append(_NEWLINES.sub("", value))
    return "".join(f"{name}:{','.join(grouped[name])}\n" for name in sorted(grouped))


def canonicalized_resource(request: HttpRequest, identity: str) -> str:
    """
    ``/<account><path>``, followed by ``?comp=<value>`` when the query has a comp parameter.

    No other query parameter takes part in the signature.
    """
    parts = urlsplit(request.endpoint)
    resource = f"/{identity}{parts.path}"
    for param in parts.query.split("&") if parts.query else ():
        if param.split("=", 1)[0] == "comp":
            resource += "?" + param
            break
    return resource


def string_to_sign(request: HttpRequest, identity: str) -> str:
    """
    Build the SharedKeyLite string to sign.

    Layout, one item per line: method, Content-MD5, Content-Type, Date,
    then the canonicalized ``x-ms-*`` headers and the canonicalized resource.
    """
    metadata = request.payload.metadata if request.payload is not None else None
    content_md5 = base64_encode(metadata.content_md5) if metadata and metadata.content_md5 else ""
    content_type = (metadata.content_type if metadata else None) or ""

    buffer = [f"{request.method}\n", f"{content_md5}\n", f"{content_type}\n"]
    for header in FIRST_HEADERS_TO_SIGN:
        buffer.append(f"{request.first_header(header) or ''}\n")
    buffer.append(canonicalized_headers(request))
    buffer.append(canonicalized_resource(request, identity))
    return "".join(buffer)


class SharedKeyLiteAuthentication:
    """
    Azure Storage request filter.

    Example:
        # Shared key
        auth = SharedKeyLiteAuthentication(static_credentials(Credentials("myaccount", key_b64)))

        # Shared Access Signature
        auth = SharedKeyLiteAuthentication(
            static_credentials(Credentials("myaccount", "")),
            mode=QueryStringSigning("sv=2019-12-12&ss=b&sig=..."),
        )
        signed = auth.filter(request)
    """

    def __init__(
        self,
        credentials_supplier: CredentialsSupplier,
        mode: SigningMode = HeaderSigning(),
        timestamp_supplier: TimestampSupplier = rfc1123,
    ) -> None:
        self._credentials = credentials_supplier
        self.mode = mode
        self._timestamp = timestamp_supplier

    def filter(self, request: HttpRequest) -> HttpRequest:
        signature_log = get_signature_logger()
        log_request(signature_log, request, ">>")
        credentials = self._credentials()
        mode = self.mode
        if isinstance(mode, QueryStringSigning):
            signed = self._filter_sas(request, credentials, mode)
        elif isinstance(mode, HeaderSigning):
            signed = self._filter_key(request, credentials)
        else:
            raise TypeError(f"unsupported signing mode: {mode!r}")
        log_request(signature_log, signed, "<<")
        return signed

    def _filter_key(self, request: HttpRequest, credentials: Credentials) -> HttpRequest:
        request = self._replace_date_header(request)
        to_sign = self.create_string_to_sign(request, credentials.identity)
        signature = sign_base64(credentials.credential, to_sign)
        return request.with_header("Authorization", f"SharedKeyLite {credentials.identity}:{signature}")

    def _filter_sas(self, request: HttpRequest, credentials: Credentials, mode: QueryStringSigning) -> HttpRequest:
        token = mode.sas_token if mode.sas_token is not None else credentials.credential
        token = token[1:] if token.startswith("?") else token

        parts = urlsplit(request.endpoint)
        container, blob = split_container_and_blob(parts.path)
        query = f"{parts.query}&{token}" if parts.query else token

        endpoint = STORAGE_URL_TEMPLATE.format(identity=credentials.identity) + container
        if blob is not None:
            endpoint += "/" + blob
        elif "restype" not in {name for name, _ in parse_qsl(parts.query, keep_blank_values=True)}:
            query = "restype=container&" + query
        endpoint += "?" + query

        logger.debug(f"Rewrote {request.endpoint} for SAS access to container {container}")
        request = request.with_endpoint(endpoint)
        return self._replace_date_header(request).without_header("Authorization")

    def _replace_date_header(self, request: HttpRequest) -> HttpRequest:
        return request.with_headers({"Date": self._timestamp()})

    def create_string_to_sign(self, request: HttpRequest, identity: str) -> str:
        """Build the string to sign and write it to the signature trace."""
        to_sign = string_to_sign(request, identity)
        get_signature_logger().debug(f"string to sign:\n{to_sign}")
        return to_sign
