"""
context.py - Deadline and cancellation for remote work

A RunContext is handed to every operation that talks to GitHub. Each remote
call is preceded by check(), so a cancelled or expired context stops the next
unit of work while leaving already completed results untouched.
"""

import threading
import time
from typing import Optional

from .errors import CancelledError, DeadlineExceededError


class RunContext:
    """Carries an optional deadline and a cancellation flag"""

    def __init__(self, timeout: Optional[float] = None) -> None:
        """
        Initialize the context

        Args:
            timeout: Seconds from now until the deadline, or None for no deadline
        """
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> "RunContext":
        """Return a context that never expires"""
        return cls()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None if there is no deadline"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, operation: str = "operation") -> None:
        """
        Raise if the context no longer allows new remote calls

        Args:
            operation: Description used in the error message

        Raises:
            CancelledError: If the context was cancelled
            DeadlineExceededError: If the deadline has passed
        """
        if self._cancelled.is_set():
            raise CancelledError(f"{operation} cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceededError(f"{operation} exceeded deadline")
