"""Hashing, HMAC and encoding primitives shared by the signers."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Union

from ..exceptions import SigningError

BytesLike = Union[str, bytes]


def _to_bytes(data: BytesLike) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def hmac_sha256(key: bytes, data: BytesLike) -> bytes:
    """
    HMAC-SHA256 of ``data`` under ``key``.

    Raises:
        SigningError: If the HMAC cannot be computed
    """
    try:
        return hmac.new(key, _to_bytes(data), hashlib.sha256).digest()
    except (TypeError, ValueError) as e:
        raise SigningError(f"error computing HmacSHA256: {e}") from e


def sha256_hex(data: BytesLike) -> str:
    """Lower-case hex SHA-256 digest of ``data``."""
    return hashlib.sha256(_to_bytes(data)).hexdigest()


def base64_decode(value: str) -> bytes:
    """
    Decode standard base64.

    Raises:
        SigningError: If ``value`` is not valid base64
    """
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"shared key is not valid base64: {e}") from e
def base64_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding, as used by JWS."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")
def sign_base64(key_b64: str, text: str) -> str:
    """
    Single HMAC-SHA256 over ``text`` keyed by a base64 shared secret.

    Args:
        key_b64: Base64-encoded shared key
        text: String to sign

    Returns:
        Base64-encoded signature
    """
    return base64_encode(hmac_sha256(base64_decode(key_b64), text))
