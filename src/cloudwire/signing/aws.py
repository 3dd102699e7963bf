"""
AWS Signature Version 4.

Signing a request:
    1. Build the canonical request from the method, path, query, signed
       headers and the SHA-256 of the body.
    2. Build the string to sign from the timestamp, credential scope and
       the hash of the canonical request.
    3. Derive the signing key by chaining HMAC-SHA256 over the date,
       region, service and the literal ``aws4_request``.
    4. Put the hex HMAC of the string to sign in the Authorization header.

Two signers are provided. ``FormSignerV4`` signs Query API form posts;
query parameters on its endpoint are rejected rather than silently left
out of the signature. ``Aws4HeaderSigner`` signs any request (S3 style):
it canonicalizes the endpoint's query string, signs ``x-amz-*`` headers
and sends the body hash as ``x-amz-content-sha256``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Optional, Protocol
from urllib.parse import parse_qsl, quote, unquote, urlsplit

from ..exceptions import SigningError
from ..http.payload import FormPayload, Payload
from ..http.protocols import HttpRequest
from ..logging_config import get_signature_logger, log_request, redact_canonical
from .credentials import CredentialsSupplier, SessionCredentials
from .crypto import hmac_sha256, sha256_hex
from .timestamps import TimestampSupplier, iso8601_basic

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
TERMINATOR = "aws4_request"
AMAZON_SUFFIX = ".amazonaws.com"
GLOBAL_REGION = "us-east-1"

ACTION = "Action"
VERSION = "Version"


class ServiceAndRegion(Protocol):
    """Resolves the service and region that make up a SigV4 credential scope."""

    def service(self) -> str:
        ...

    def region(self, host: str) -> str:
        ...


def parse_service_and_region(host: str) -> tuple[str, str]:
    """
    Split an AWS host into its service and region labels.

    ``sts.us-west-2.amazonaws.com`` gives ``("sts", "us-west-2")``. Global
    endpoints without a region label (``iam.amazonaws.com``) resolve to
    ``us-east-1``.

    Raises:
        ValueError: If ``host`` is not an ``amazonaws.com`` host
    """
    host = host.split(":", 1)[0].lower()
    if not host.endswith(AMAZON_SUFFIX):
        raise ValueError(f"Only AWS endpoints currently supported {host}")
    labels = host[: -len(AMAZON_SUFFIX)].split(".")
    if not labels[0]:
        raise ValueError(f"no service label in host {host}")
    region = labels[1] if len(labels) > 1 else GLOBAL_REGION
    return labels[0], region


class AWSServiceAndRegion:
    """Service fixed from the provider endpoint; region read from each request's host."""

    def __init__(self, endpoint: str) -> None:
        host = urlsplit(endpoint).hostname
        if not host:
            raise ValueError(f"endpoint has no host: {endpoint}")
        self._service = parse_service_and_region(host)[0]

    def service(self) -> str:
        return self._service

    def region(self, host: str) -> str:
        return parse_service_and_region(host)[1]


def signature_key(secret_key: str, datestamp: str, region: str, service: str) -> bytes:
    """
    Derive the SigV4 signing key.

    Each step keys an HMAC-SHA256 with the previous step's output. Nothing
    is cached; the key is recomputed on every call.

    Args:
        secret_key: The secret access key
        datestamp: Date in ``YYYYMMDD`` form
        region: Region name, e.g. ``us-east-1``
        service: Service name, e.g. ``sts``

    Returns:
        The 32-byte signing key
    """
    k_secret = ("AWS4" + secret_key).encode("utf-8")
    k_date = hmac_sha256(k_secret, datestamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, TERMINATOR)


def sign(signing_key: bytes, string_to_sign: str) -> str:
    """Hex-encoded HMAC-SHA256 signature of ``string_to_sign``."""
    return hmac_sha256(signing_key, string_to_sign).hex()


def credential_scope(datestamp: str, region: str, service: str) -> str:
    return "/".join((datestamp, region, service, TERMINATOR))


def _form_content(request: HttpRequest) -> str:
    if request.payload is None:
        raise ValueError(f"request is not ready to sign; no form payload {request}")
    raw = request.payload.raw_content
    return raw if isinstance(raw, str) else request.payload.read_bytes().decode("utf-8")


def canonical_request(request: HttpRequest, signed_headers: dict[str, str]) -> str:
    """
    Build the SigV4 canonical request.

    Headers are written in the order given by ``signed_headers``.

    Raises:
        ValueError: If the endpoint carries query parameters
    """
    parts = urlsplit(request.endpoint)
    if parts.query or request.endpoint.endswith("?"):
        raise ValueError(f"Query parameters not yet supported {request}")

    canonical = f"{request.method}\n{parts.path or '/'}\n\n"
    for name, value in signed_headers.items():
        canonical += f"{name}:{value}\n"
    canonical += "\n"
    canonical += ";".join(signed_headers) + "\n"
    canonical += sha256_hex(_form_content(request))
    return canonical


def string_to_sign(request: HttpRequest, signed_headers: dict[str, str], scope: str) -> str:
    """
    Build the SigV4 string to sign.

    ``signed_headers`` must contain ``x-amz-date``.
    """
    return _string_to_sign(canonical_request(request, signed_headers), signed_headers["x-amz-date"], scope)


def _string_to_sign(canonical: str, timestamp: str, scope: str) -> str:
    get_signature_logger().debug(f"canonical request:\n{redact_canonical(canonical)}")
    return "\n".join((ALGORITHM, timestamp, scope, sha256_hex(canonical)))


def _authorization(identity: str, scope: str, signed_headers: dict[str, str], signature: str) -> str:
    return (
        f"{ALGORITHM} Credential={identity}/{scope}, "
        f"SignedHeaders={';'.join(signed_headers)}, "
        f"Signature={signature}"
    )


class FormSignerV4:
    """
    Signs AWS Query API form requests with Signature Version 4.

    The request must already carry a ``Host`` header and a form payload with
    an ``Action`` parameter. A ``Version`` parameter is appended when the
    form has none.

    Example:
        signer = FormSignerV4(
            api_version="2011-06-15",
            credentials_supplier=static_credentials(Credentials("AKID", "secret")),
            service_and_region=AWSServiceAndRegion("https://sts.amazonaws.com"),
        )
        signed = signer.filter(request)
    """

    def __init__(
        self,
        api_version: str,
        credentials_supplier: CredentialsSupplier,
        service_and_region: ServiceAndRegion,
        timestamp_supplier: TimestampSupplier = iso8601_basic,
    ) -> None:
        self.api_version = api_version
        self._credentials = credentials_supplier
        self._timestamp = timestamp_supplier
        self._service_and_region = service_and_region

    def filter(self, request: HttpRequest) -> HttpRequest:
        host = request.first_header("Host")
        if host is None:
            raise ValueError("request is not ready to sign; host not present")
        if not isinstance(request.payload, FormPayload):
            raise ValueError(f"request is not ready to sign; no form payload {request}")
        params = request.payload.decoded_params()
        if ACTION not in params:
            raise ValueError(f"request is not ready to sign; Action not present {request.payload.raw_content}")

        signature_log = get_signature_logger()
        log_request(signature_log, request, ">>")

        timestamp = self._timestamp()
        datestamp = timestamp[:8]
        service = self._service_and_region.service()
        region = self._service_and_region.region(host)
        scope = credential_scope(datestamp, region, service)
        logger.debug(f"Signing {request.method} {request.endpoint} with scope {scope}")

        # content-type is not a required signed header, but the published examples sign it
        signed_headers = {
            "content-type": request.payload.metadata.content_type or "",
            "host": host,
            "x-amz-date": timestamp,
        }

        signed = request.without_header("Authorization").with_header("X-Amz-Date", timestamp)
        if VERSION not in params:
            signed = signed.with_form_param(VERSION, self.api_version)

        credentials = self._credentials()
        if isinstance(credentials, SessionCredentials):
            signed = signed.with_header("X-Amz-Security-Token", credentials.session_token)
            signed_headers["x-amz-security-token"] = credentials.session_token

        to_sign = string_to_sign(signed, signed_headers, scope)
        signature_log.debug(f"string to sign:\n{to_sign}")
        signature = sign(signature_key(credentials.credential, datestamp, region, service), to_sign)

        authorization = _authorization(credentials.identity, scope, signed_headers, signature)
        signed = signed.adding_header("Authorization", authorization)
        log_request(signature_log, signed, "<<")
        return signed


EMPTY_PAYLOAD_SHA256 = hashlib.sha256(b"").hexdigest()


def host_header_for(endpoint: str) -> str:
    """Host header value for an endpoint; the port is kept only when it is not the scheme default."""
    parts = urlsplit(endpoint)
    if not parts.hostname:
        raise ValueError(f"request is not ready to sign; endpoint has no host {endpoint}")
    host = parts.hostname
    port = parts.port
    if port is not None and (parts.scheme.lower(), port) not in (("http", 80), ("https", 443)):
        host += f":{port}"
    return host


def uri_encode(value: str, safe: str = "-_.~") -> str:
    """Percent-encode everything except the RFC 3986 unreserved characters (and ``safe``)."""
    return quote(value, safe=safe)


def canonical_query_string(query: str) -> str:
    """
    Canonicalize a raw query string.

    Parameters are decoded, re-encoded with RFC 3986 rules and sorted by
    name then value. ``?lifecycle`` becomes ``lifecycle=``.
    """
    pairs = parse_qsl(query, keep_blank_values=True)
    encoded = sorted((uri_encode(name), uri_encode(value)) for name, value in pairs)
    return "&".join(f"{name}={value}" for name, value in encoded)


def payload_sha256(payload: Optional[Payload]) -> str:
    """
    Hex SHA-256 of a payload's bytes.

    A non-repeatable stream is read and then rewound to where it was, so the
    bytes that are sent are the bytes that were hashed.

    Raises:
        SigningError: If a non-repeatable stream cannot be rewound
    """
    if payload is None:
        return EMPTY_PAYLOAD_SHA256
    if payload.is_repeatable:
        return sha256_hex(payload.read_bytes())
    stream = payload.open_stream()
    try:
        position = stream.tell()
        digest = hashlib.sha256(stream.read()).hexdigest()
        stream.seek(position)
    except (OSError, ValueError) as e:
        raise SigningError(f"unable to reset unrepeatable payload stream after hashing: {e}") from e
    return digest


def header_canonical_request(method: str, endpoint: str, signed_headers: dict[str, str], payload_hash: str) -> str:
    """
    Build the canonical request for header signing.

    ``signed_headers`` must already be lower-cased and sorted.
    """
    parts = urlsplit(endpoint)
    canonical = f"{method}\n{uri_encode(unquote(parts.path) or '/', safe='/-_.~')}\n"
    canonical += canonical_query_string(parts.query) + "\n"
    for name, value in signed_headers.items():
        canonical += f"{name}:{value}\n"
    canonical += "\n"
    canonical += ";".join(signed_headers) + "\n"
    canonical += payload_hash
    return canonical


class Aws4HeaderSigner:
    """
    Signs arbitrary requests with Signature Version 4 in the Authorization header.

    Signed headers are content-type, content-length and content-md5 (when
    known), host, user-agent (when present), every ``x-amz-*`` header, the
    session token, ``x-amz-content-sha256`` and ``x-amz-date``. The
    endpoint's query string is signed as is and never rewritten.

    Example:
        signer = Aws4HeaderSigner(
            credentials_supplier=static_credentials(Credentials("AKID", "secret")),
            service_and_region=AWSServiceAndRegion("https://s3.amazonaws.com"),
        )
        signed = signer.filter(HttpRequest.create("GET", "https://bucket.s3.amazonaws.com/?max-keys=2"))
    """

    def __init__(
        self,
        credentials_supplier: CredentialsSupplier,
        service_and_region: ServiceAndRegion,
        timestamp_supplier: TimestampSupplier = iso8601_basic,
        header_tag: str = "amz",
    ) -> None:
        self._credentials = credentials_supplier
        self._timestamp = timestamp_supplier
        self._service_and_region = service_and_region
        self._header_prefix = f"x-{header_tag}-"

    def filter(self, request: HttpRequest) -> HttpRequest:
        signature_log = get_signature_logger()
        log_request(signature_log, request, ">>")

        host = host_header_for(request.endpoint)
        timestamp = self._timestamp()
        datestamp = timestamp[:8]
        service = self._service_and_region.service()
        region = self._service_and_region.region(host)
        scope = credential_scope(datestamp, region, service)
        logger.debug(f"Signing {request.method} {request.endpoint} with scope {scope}")

        signed = request.without_header("Authorization").without_header("Date")
        headers: dict[str, str] = {}
        metadata = request.payload.metadata if request.payload is not None else None

        content_type = request.first_header("Content-Type")
        if metadata is not None and metadata.content_type:
            content_type = metadata.content_type
        if content_type:
            headers["Content-Type"] = content_type

        content_length = request.first_header("Content-Length")
        if metadata is not None and metadata.content_length is not None:
            content_length = str(metadata.content_length)
        if content_length:
            headers["Content-Length"] = content_length

        content_md5 = request.first_header("Content-MD5")
        if metadata is not None and metadata.content_md5:
            content_md5 = base64.b64encode(metadata.content_md5).decode("ascii")
        if content_md5:
            headers["Content-MD5"] = content_md5

        headers["Host"] = host
        user_agent = request.first_header("User-Agent")
        if user_agent is not None:
            headers["User-Agent"] = user_agent

        for name, value in request.headers.items():
            if name.lower().startswith(self._header_prefix):
                headers[name] = value

        credentials = self._credentials()
        if isinstance(credentials, SessionCredentials):
            headers[f"{self._header_prefix}security-token"] = credentials.session_token

        payload_hash = payload_sha256(request.payload)
        headers[f"{self._header_prefix}content-sha256"] = payload_hash
        headers[f"{self._header_prefix}date"] = timestamp

        # last value wins, as replacing a header does on the wire
        lower = {name.lower(): (name, value) for name, value in headers.items()}
        signed_headers = {name: lower[name][1] for name in sorted(lower)}
        signed = signed.with_headers({name: value for name, value in lower.values()})

        canonical = header_canonical_request(request.method, request.endpoint, signed_headers, payload_hash)
        to_sign = _string_to_sign(canonical, timestamp, scope)
        signature_log.debug(f"string to sign:\n{to_sign}")
        signature = sign(signature_key(credentials.credential, datestamp, region, service), to_sign)

        signed = signed.with_header(
            "Authorization", _authorization(credentials.identity, scope, signed_headers, signature)
        )
        log_request(signature_log, signed, "<<")
        return signed
