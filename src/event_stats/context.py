from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import DeadlineExceeded, OperationCancelled


class RequestContext:
    """
    Deadline and cancellation signal for a single statistics call.

    The repository checks the context before every query, so a cancelled or
    expired request stops at the next query boundary and never yields a
    partial aggregate.
    """

    def __init__(self, deadline: Optional[float] = None):
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "RequestContext":
        if seconds is None or seconds <= 0:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self._cancelled.is_set():
            raise OperationCancelled("statistics request was cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceeded("statistics request deadline exceeded")
