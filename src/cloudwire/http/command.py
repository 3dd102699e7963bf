"""Per-call retry state."""

from __future__ import annotations

import threading
from enum import Enum

from .protocols import HttpRequest


class CommandState(str, Enum):
    """Lifecycle of a command as seen by the retry handlers."""

    ACTIVE = "active"
    RETRYING = "retrying"

    # Terminal states
    SUCCESS = "success"
    RETRY_EXHAUSTED = "retry_exhausted"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in (CommandState.ACTIVE, CommandState.RETRYING)


class HttpCommand:
    """
    The unit of retry state for one logical API call.

    Holds the current (unfiltered) request and a failure counter that only
    ever goes up. A command belongs to a single call path and is not meant
    to be shared between threads; only ``cancel()`` may be called from
    another thread.

    Example:
        command = HttpCommand(request)
        while True:
            response = send(command.current_request)
            if response.status_code < 400:
                command.mark_succeeded()
                break
            if not handler.should_retry_request(command, response):
                raise HttpResponseError(...)
    """

    def __init__(self, request: HttpRequest) -> None:
        self.current_request = request
        self._failure_count = 0
        self.state = CommandState.ACTIVE
        self._cancelled = threading.Event()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def increment_failure_count(self) -> int:
        """Record one more failure and return the new count."""
        self._failure_count += 1
        return self._failure_count

    def is_replayable(self) -> bool:
        """True if the request body (if any) can be sent again from the start."""
        payload = self.current_request.payload
        return payload is None or payload.is_repeatable

    def cancel(self) -> None:
        """Ask any wait in progress on this command to stop. Thread-safe."""
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_cancellable(self, seconds: float) -> bool:
        """
        Block the calling thread for ``seconds`` unless the command is cancelled.

        Returns:
            True if the wait ended because of cancellation
        """
        return self._cancelled.wait(seconds)

    def mark_retrying(self) -> None:
        self.state = CommandState.RETRYING

    def mark_active(self) -> None:
        self.state = CommandState.ACTIVE

    def mark_succeeded(self) -> None:
        self.state = CommandState.SUCCESS

    def mark_exhausted(self) -> None:
        self.state = CommandState.RETRY_EXHAUSTED

    def mark_failed(self) -> None:
        self.state = CommandState.FAILED

    def mark_aborted(self) -> None:
        self.state = CommandState.ABORTED

    def __repr__(self) -> str:
        return (
            f"HttpCommand(request={self.current_request.method} {self.current_request.endpoint}, "
            f"failures={self._failure_count}, state={self.state.value})"
        )
