import logging
import sys
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .http.protocols import HttpRequest

SIGNATURE_LOGGER_NAME = "cloudwire.signature"

# Headers whose values must never reach a log file
_REDACTED_HEADERS = frozenset({"authorization", "x-amz-security-token"})


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    force: bool = False,
    trace_signatures: bool = False,
) -> logging.Logger:
    """
    Set up logging configuration for cloudwire.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging output
        format_string: Optional custom format string for log messages
        force: If True, reconfigure even if handlers exist
        trace_signatures: If True, write requests and canonical strings
            seen by the signers to the signature logger

    Returns:
        Configured logger instance
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger("cloudwire")
    logger.setLevel(numeric_level)

    # Only clear and reconfigure if forced or no handlers exist
    if force or not logger.handlers:
        logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG if trace_signatures else numeric_level)
        console_formatter = logging.Formatter(format_string)
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG if trace_signatures else numeric_level)
            file_formatter = logging.Formatter(format_string)
            file_handler.setFormatter(file_formatter)
            logger.addHandler(file_handler)

    signature_logger = logging.getLogger(SIGNATURE_LOGGER_NAME)
    signature_logger.setLevel(logging.DEBUG if trace_signatures else logging.NOTSET)

    # Prevent propagation to root logger to avoid duplicate logs
    logger.propagate = False

    return logger


def get_signature_logger() -> logging.Logger:
    """Return the logger that receives signature traces."""
    return logging.getLogger(SIGNATURE_LOGGER_NAME)


def log_request(logger: logging.Logger, request: "HttpRequest", prefix: str) -> None:
    """
    Write a request to a logger at DEBUG level.

    Credentials carried in headers are redacted. Does nothing unless the
    logger is enabled for DEBUG.

    Args:
        logger: Destination logger
        request: The request to describe
        prefix: Direction marker, ">>" before signing and "<<" after
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug(f"{prefix} {request.method} {request.endpoint} HTTP/1.1")
    for name, value in request.headers.items():
        if name.lower() in _REDACTED_HEADERS:
            value = "<redacted>"
        logger.debug(f"{prefix} {name}: {value}")


def redact_canonical(text: str) -> str:
    """
    Redact credential header lines (``name:value``) in a canonical string.

    Canonical requests list signed headers one per line, so a session token
    would otherwise be written to the signature trace in clear.
    """
    lines = []
    for line in text.split("\n"):
        name, sep, _ = line.partition(":")
        if sep and name.lower() in _REDACTED_HEADERS:
            line = f"{name}:<redacted>"
        lines.append(line)
    return "\n".join(lines)
