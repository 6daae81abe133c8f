"""
core/compensation.py -- Compensating-action scope for cross-store mutations.

The metadata store and the ciphertext store share no transaction manager, so
a multi-step mutation cannot be made atomic. Instead every step registers an
inverse -- a no-argument callable that undoes it -- and a failure at any
point replays the registered inverses newest-first.

Ordering rule: register the inverse BEFORE attempting the mutation it undoes.
A failure at step N then only has to undo steps 1..N-1, plus step N itself if
it partially applied. Inverses must therefore tolerate running when their
mutation never happened (deleting an absent row, rewriting an identical
value). For inserts whose id the store assigns, use add_insert(): the inverse
reads the id from the returned Slot and does nothing until the insert fills it.

This is best-effort compensation, not ACID. If an inverse itself fails (the
store went away mid-unwind) the two stores may disagree. That surfaces as
CompensationFailed, logged at CRITICAL, and needs an operator.

Usage:
    with Compensation("delete_secret") as scope:
        scope.add(lambda: meta.restore_secret(secret))
        meta.delete_secret(secret.id)
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from core.errors import CompensationFailed

logger = logging.getLogger("lockbox.compensation")

Inverse = Callable[[], Any]


class Slot:
    """Holds a store-assigned identifier once the insert that produces it succeeds."""

    __slots__ = ("value",)

    def __init__(self) -> None:
        self.value: Any = None

    @property
    def filled(self) -> bool:
        return self.value is not None


class Compensation:
    """Per-operation list of inverse actions.

    As a context manager: a clean exit discards the inverses (the operation
    committed); an exception exit unwinds and re-raises. The original error
    propagates unchanged when every inverse succeeded; otherwise
    CompensationFailed is raised, chained from it.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self._inverses: list[Inverse] = []

    def __len__(self) -> int:
        return len(self._inverses)

    def add(self, inverse: Inverse) -> None:
        """Register the inverse of a mutation that is about to be attempted."""
        self._inverses.append(inverse)

    def add_insert(self, undo: Callable[[Any], Any]) -> Slot:
        """Register the inverse of an insert whose id the store assigns.

        Returns a Slot for the caller to fill with the new id. At unwind time
        undo(slot.value) runs only if the slot was filled, i.e. only if the
        insert actually committed.

        Usage:
            slot = scope.add_insert(store.delete_secret)
            slot.value = store.create_secret(secret)
        """
        slot = Slot()

        def inverse() -> None:
            if slot.filled:
                undo(slot.value)

        self.add(inverse)
        return slot

    def unwind(self, cause: BaseException) -> BaseException:
        """Run every registered inverse in reverse order and return the error to raise.

        Inverse failures do not stop the unwind. Returns `cause` itself when
        every inverse succeeded, or a CompensationFailed carrying both the
        cause and the failures.
        """
        failures: list[BaseException] = []
        total = len(self._inverses)
        while self._inverses:
            inverse = self._inverses.pop()
            try:
                inverse()
            except Exception as exc:
                logger.error("%s: inverse action failed during rollback: %s", self.operation, exc)
                failures.append(exc)
        if not failures:
            logger.info("%s: rolled back %d step(s) after %s", self.operation, total, type(cause).__name__)
            return cause
        error = CompensationFailed(self.operation, cause, failures)
        logger.critical("%s: %s (%s)", self.operation, error.message, error.detail)
        return error

    def commit(self) -> None:
        """Forget every registered inverse; the operation completed."""
        self._inverses.clear()

    def __enter__(self) -> Compensation:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self.commit()
            return False
        if not isinstance(exc, Exception):
            # KeyboardInterrupt / SystemExit: still undo, but let it through untouched.
            self.unwind(exc)
            return False
        error = self.unwind(exc)
        if error is exc:
            return False
        raise error from exc
