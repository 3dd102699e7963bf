"""Shared fixtures for cloudwire tests."""

import logging

import pytest

from cloudwire.logging_config import SIGNATURE_LOGGER_NAME


class RecordingHandler(logging.Handler):
    """Logging handler that keeps formatted messages in memory."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())

    @property
    def text(self) -> str:
        return "\n".join(self.messages)


@pytest.fixture
def signature_trace():
    """Capture everything written to the signature logger."""
    signature_logger = logging.getLogger(SIGNATURE_LOGGER_NAME)
    previous_level = signature_logger.level
    handler = RecordingHandler()
    signature_logger.addHandler(handler)
    signature_logger.setLevel(logging.DEBUG)
    try:
        yield handler
    finally:
        signature_logger.removeHandler(handler)
        signature_logger.setLevel(previous_level)
