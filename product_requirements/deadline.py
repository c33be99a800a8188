"""Per-request deadlines.

The API middleware opens a deadline scope for each request. Long-running
service code calls ``check_deadline()`` at its natural checkpoints, and the
transaction helper forwards the remaining time to the database.
"""

import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from .errors import DeadlineExceeded

_deadline: ContextVar[Optional[float]] = ContextVar("request_deadline", default=None)


@contextmanager
def deadline_scope(seconds: Optional[float]) -> Iterator[None]:
    """Bound the enclosed work to ``seconds`` from now (``None`` = unbounded)."""
    token = _deadline.set(time.monotonic() + seconds if seconds else None)
    try:
        yield
    finally:
        _deadline.reset(token)


def remaining() -> Optional[float]:
    """Seconds left before the current deadline, or None when unbounded."""
    deadline = _deadline.get()
    if deadline is None:
        return None
    return deadline - time.monotonic()


def check_deadline(operation: str = "request") -> None:
    left = remaining()
    if left is not None and left <= 0:
        raise DeadlineExceeded(operation)
