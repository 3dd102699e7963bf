"""Credentials and the suppliers that hand them to signers."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """
    An identity and its secret.

    Attributes:
        identity: Access key id, account name or client id
        credential: Secret key, shared key, SAS token or private key PEM
    """

    identity: str
    credential: str = field(repr=False)


@dataclass(frozen=True)
class SessionCredentials(Credentials):
    """Temporary credentials that must be presented with a session token."""

    session_token: str = field(default="", repr=False)


CredentialsSupplier = Callable[[], Credentials]


def static_credentials(credentials: Credentials) -> CredentialsSupplier:
    """Return a supplier that always yields ``credentials``."""

    def supplier() -> Credentials:
        return credentials

    return supplier


class MemoizedCredentialsSupplier:
    """
    Caches credentials from a slower supplier for a fixed time.

    Safe to share between threads: the delegate is called by at most one
    thread at a time, and readers always see a complete credentials value.

    Example:
        supplier = MemoizedCredentialsSupplier(fetch_from_sts, ttl_seconds=900)
        creds = supplier()
    """

    def __init__(
        self,
        delegate: CredentialsSupplier,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._delegate = delegate
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[Credentials] = None
        self._expires_at = 0.0

    def __call__(self) -> Credentials:
        with self._lock:
            now = self._clock()
            if self._value is None or now >= self._expires_at:
                logger.debug("Refreshing memoized credentials")
                self._value = self._delegate()
                self._expires_at = now + self._ttl
            return self._value

    def invalidate(self) -> None:
        """Forget the cached value so the next call refreshes."""
        with self._lock:
            self._value = None
