"""
OAuth2 JWT-bearer authorization.

Builds signed JWT assertions, exchanges them (or a client secret) for an
access token at the token endpoint, and authorizes requests with the
resulting bearer token.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from ..exceptions import AuthorizationError, HttpResponseError, SigningError
from ..http.payload import FORM_CONTENT_TYPE, FormPayload
from ..http.protocols import HttpRequest, HttpResponse
from ..logging_config import get_signature_logger, log_request
from .credentials import CredentialsSupplier
from .crypto import base64_encode, base64url_encode

logger = logging.getLogger(__name__)

GRANT_TYPE_JWT_BEARER = "urn:ietf:params:oauth:grant-type:jwt-bearer"
GRANT_TYPE_CLIENT_CREDENTIALS = "client_credentials"
CLIENT_ASSERTION_TYPE_JWT_BEARER = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

PemInput = Union[str, bytes]


class JwsAlgorithm(str, Enum):
    """JWS ``alg`` values supported for assertions."""

    RS256 = "RS256"
    RS384 = "RS384"
    RS512 = "RS512"
    ES256 = "ES256"
    ES384 = "ES384"
    ES512 = "ES512"
    NONE = "none"


@dataclass(frozen=True)
class JwsAlgorithmSpec:
    """
    How to produce the signature for one JWS algorithm.

    Attributes:
        key_family: "RSA", "EC" or "none"
        hash_factory: Hash algorithm class from ``cryptography``
        coordinate_size: Byte length of r and s for EC signatures
    """

    key_family: str
    hash_factory: Optional[Callable[[], hashes.HashAlgorithm]] = None
    coordinate_size: int = 0


JWS_ALGORITHMS: Mapping[JwsAlgorithm, JwsAlgorithmSpec] = MappingProxyType(
    {
        JwsAlgorithm.RS256: JwsAlgorithmSpec("RSA", hashes.SHA256),
        JwsAlgorithm.RS384: JwsAlgorithmSpec("RSA", hashes.SHA384),
        JwsAlgorithm.RS512: JwsAlgorithmSpec("RSA", hashes.SHA512),
        JwsAlgorithm.ES256: JwsAlgorithmSpec("EC", hashes.SHA256, 32),
        JwsAlgorithm.ES384: JwsAlgorithmSpec("EC", hashes.SHA384, 48),
        JwsAlgorithm.ES512: JwsAlgorithmSpec("EC", hashes.SHA512, 66),
        JwsAlgorithm.NONE: JwsAlgorithmSpec("none"),
    }
)


def _json_segment(value: Mapping[str, Any]) -> str:
    return base64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def _load_private_key(pem: PemInput):
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    try:
        return serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"cannot load private key: {e}") from e


def sign_jws(signing_input: bytes, private_key_pem: Optional[PemInput], algorithm: JwsAlgorithm) -> bytes:
    """
    Sign a JWS signing input.

    Args:
        signing_input: ``<header>.<claims>`` as bytes
        private_key_pem: PEM private key (ignored for ``none``)
        algorithm: The JWS algorithm

    Returns:
        Raw signature bytes (empty for ``none``)

    Raises:
        ValueError: If the key type does not match the algorithm
        SigningError: If the key cannot be loaded or signing fails
    """
    spec = JWS_ALGORITHMS[algorithm]
    if spec.key_family == "none":
        return b""
    if private_key_pem is None:
        raise ValueError(f"{algorithm.value} requires a private key")

    key = _load_private_key(private_key_pem)
    try:
        if spec.key_family == "RSA":
            if not isinstance(key, rsa.RSAPrivateKey):
                raise ValueError(f"{algorithm.value} requires an RSA key")
            return key.sign(signing_input, padding.PKCS1v15(), spec.hash_factory())

        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError(f"{algorithm.value} requires an EC key")
        # JWS wants r || s, not the DER sequence
        r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(spec.hash_factory())))
        return r.to_bytes(spec.coordinate_size, "big") + s.to_bytes(spec.coordinate_size, "big")
    except UnsupportedAlgorithm as e:
        raise SigningError(f"error signing assertion with {algorithm.value}: {e}") from e


def encode_jwt(
    header: Mapping[str, Any],
    claims: Mapping[str, Any],
    private_key_pem: Optional[PemInput],
    algorithm: JwsAlgorithm = JwsAlgorithm.RS256,
) -> str:
    """
    Produce a compact JWS: ``base64url(header).base64url(claims).base64url(signature)``.

    JSON is written with compact separators and in insertion order, so the
    output is deterministic for deterministic signature algorithms.
    """
    signing_input = f"{_json_segment(header)}.{_json_segment(claims)}"
    signature = sign_jws(signing_input.encode("ascii"), private_key_pem, algorithm)
    return f"{signing_input}.{base64url_encode(signature)}"


def certificate_thumbprint(certificate_pem: PemInput) -> str:
    """Base64 SHA-1 thumbprint of a PEM certificate, for the ``x5t`` header."""
    data = certificate_pem.encode("utf-8") if isinstance(certificate_pem, str) else certificate_pem
    try:
        certificate = x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise SigningError(f"cannot load certificate: {e}") from e
    return base64_encode(certificate.fingerprint(hashes.SHA1()))


@dataclass(frozen=True)
class Claims:
    """JWT-bearer grant claims (RFC 7523)."""

    iss: str
    scope: str
    aud: str
    exp: int
    iat: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClientCredentialsClaims:
    """Claims of a client assertion for the client-credentials grant."""

    iss: str
    sub: str
    aud: str
    exp: int
    nbf: int
    jti: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Token:
    """An access token issued by the token endpoint."""

    access_token: str = field(repr=False)
    token_type: str
    expires_in: int

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Token:
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            expires_in=int(data.get("expires_in", 0)),
        )


def _form(params: list[tuple[str, Optional[str]]]) -> FormPayload:
    return FormPayload([(name, value) for name, value in params if value is not None])


def jwt_bearer_form(assertion: str) -> FormPayload:
    return _form([("grant_type", GRANT_TYPE_JWT_BEARER), ("assertion", assertion)])


def client_secret_form(client_id: str, client_secret: str, resource: str, scope: Optional[str] = None) -> FormPayload:
    return _form(
        [
            ("grant_type", GRANT_TYPE_CLIENT_CREDENTIALS),
            ("client_id", client_id),
            ("client_secret", client_secret),
            ("resource", resource),
            ("scope", scope),
        ]
    )


def client_credentials_form(
    client_id: str, assertion: str, resource: str, scope: Optional[str] = None
) -> FormPayload:
    return _form(
        [
            ("grant_type", GRANT_TYPE_CLIENT_CREDENTIALS),
            ("client_assertion_type", CLIENT_ASSERTION_TYPE_JWT_BEARER),
            ("client_id", client_id),
            ("client_assertion", assertion),
            ("resource", resource),
            ("scope", scope),
        ]
    )


class CommandExecutor(Protocol):
    def invoke(self, request: HttpRequest) -> HttpResponse:
        ...


class AuthorizationApi:
    """
    Client for an OAuth2 token endpoint.

    The credentials' ``credential`` is the PEM private key used to sign
    assertions.

    Example:
        api = AuthorizationApi(
            "https://oauth2.googleapis.com/token",
            HttpCommandExecutor(),
            static_credentials(Credentials("svc@project.iam.gserviceaccount.com", private_key_pem)),
        )
        token = api.authorize(Claims(iss, scope, aud, exp, iat))
    """

    def __init__(
        self,
        endpoint: str,
        executor: CommandExecutor,
        credentials_supplier: CredentialsSupplier,
        algorithm: JwsAlgorithm = JwsAlgorithm.RS256,
        certificate_pem: Optional[PemInput] = None,
    ) -> None:
        self.endpoint = endpoint
        self._executor = executor
        self._credentials = credentials_supplier
        self.algorithm = algorithm
        self._certificate_pem = certificate_pem

    def authorize(self, claims: Claims) -> Token:
        """Exchange a signed JWT-bearer assertion for an access token."""
        header = {"alg": self.algorithm.value, "typ": "JWT"}
        assertion = encode_jwt(header, claims.to_dict(), self._credentials().credential, self.algorithm)
        return self._post(jwt_bearer_form(assertion))

    def authorize_client_secret(
        self, client_id: str, client_secret: str, resource: str, scope: Optional[str] = None
    ) -> Token:
        """Exchange a client id and secret for an access token."""
        return self._post(client_secret_form(client_id, client_secret, resource, scope))

    def authorize_client_credentials(
        self, client_id: str, claims: ClientCredentialsClaims, resource: str, scope: Optional[str] = None
    ) -> Token:
        """Exchange a certificate-backed client assertion for an access token."""
        if self._certificate_pem is None:
            raise ValueError("client credentials assertions require a certificate")
        header = {
            "alg": self.algorithm.value,
            "typ": "JWT",
            "x5t": certificate_thumbprint(self._certificate_pem),
        }
        assertion = encode_jwt(header, claims.to_dict(), self._credentials().credential, self.algorithm)
        return self._post(client_credentials_form(client_id, assertion, resource, scope))

    def _post(self, form: FormPayload) -> Token:
        request = HttpRequest.create(
            "POST",
            self.endpoint,
            {"Accept": "application/json", "Content-Type": FORM_CONTENT_TYPE},
            form,
        )
        try:
            response = self._executor.invoke(request)
        except HttpResponseError as e:
            if 400 <= e.status_code < 500:
                raise AuthorizationError(
                    f"authorization failed with HTTP {e.status_code}",
                    e.response,
                    e.failure_count,
                    request,
                ) from e
            raise
        return Token.from_json(json.loads(response.content))


class TokenSupplier:
    """
    Memoizes an access token until shortly before it expires.

    Thread-safe; at most one thread fetches a new token at a time.
    """

    def __init__(
        self,
        fetch: Callable[[], Token],
        refresh_margin_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._margin = refresh_margin_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[Token] = None
        self._expires_at = 0.0

    def __call__(self) -> Token:
        with self._lock:
            now = self._clock()
            if self._token is None or now >= self._expires_at - self._margin:
                logger.debug("Fetching a new access token")
                self._token = self._fetch()
                self._expires_at = now + self._token.expires_in
            return self._token


class BearerTokenAuthentication:
    """Request filter that sets ``Authorization: Bearer <token>``."""

    def __init__(self, token_supplier: Callable[[], Token]) -> None:
        self._token_supplier = token_supplier

    def filter(self, request: HttpRequest) -> HttpRequest:
        token = self._token_supplier()
        signed = request.with_header("Authorization", f"Bearer {token.access_token}")
        log_request(get_signature_logger(), signed, "<<")
        return signed
