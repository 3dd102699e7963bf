"""Timestamp suppliers used when signing."""

from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Callable

TimestampSupplier = Callable[[], str]


def iso8601_basic() -> str:
    """Current UTC time as ``YYYYMMDDTHHMMSSZ`` (the SigV4 ``X-Amz-Date`` format)."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def rfc1123() -> str:
    """Current UTC time as an RFC 1123 HTTP date, e.g. ``Tue, 15 Nov 1994 08:12:31 GMT``."""
    return format_datetime(datetime.now(timezone.utc), usegmt=True)


def fixed(value: str) -> TimestampSupplier:
    """Return a supplier that always yields ``value``."""
    return lambda: value
