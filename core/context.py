"""
core/context.py -- Cancellation and deadlines for lifecycle operations.

Every lifecycle operation accepts an optional OperationContext. The context
is checked at each store call boundary. A lifecycle manager does not check it
by hand: it wraps each store in a Guarded proxy that runs ctx.check() before
forwarding any method call.

Because Cancelled is an ordinary LockboxError raised from inside the
operation's Compensation scope, a cancellation mid-sequence unwinds the
steps already applied before it propagates. Inverses are registered on the
raw store, not the guarded proxy, so the unwind itself is never cancelled.

The HTTP layer builds one context per request from
Settings.request_timeout_seconds; the CLI runs without a deadline.
"""

from __future__ import annotations

import threading
import time
from typing import Any

from core.errors import Cancelled


class OperationContext:
    """Deadline plus cancel flag for one operation.

    deadline is a time.monotonic() value, or None for no deadline.
    """

    def __init__(self, deadline: float | None = None) -> None:
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float | None) -> OperationContext:
        if seconds is None or seconds <= 0:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self) -> None:
        """Raise Cancelled if the operation was cancelled or its deadline passed."""
        if self._cancelled.is_set():
            raise Cancelled("operation cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise Cancelled("operation deadline exceeded")


class Guarded:
    """Store proxy that checks the operation context before every method call."""

    def __init__(self, store: Any, ctx: OperationContext) -> None:
        self._store = store
        self._ctx = ctx

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._store, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            self._ctx.check()
            return attr(*args, **kwargs)

        return call
