"""
core/errors.py -- Error taxonomy for Lockbox.

Every failure the core reports is a LockboxError subclass. Each class carries
a stable machine-readable `code` and the HTTP `status_code` the API layer
maps it to, so api/main.py needs exactly one exception handler for the whole
family instead of one per route.

Propagation rule: lifecycle steps raise the most specific subclass that
applies. The compensation coordinator never replaces a cause -- it either
re-raises it unchanged or raises CompensationFailed chained from it.

Layer rule: core/ is the kernel. This module imports nothing from api/,
auth/, metadata/, or ciphertext/.
"""

from __future__ import annotations


class LockboxError(Exception):
    """Base class for all errors raised by the Lockbox core."""

    code = "lockbox_error"
    status_code = 500

    def __init__(self, message: str = "", detail: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.detail = detail


class InvalidInput(LockboxError):
    """Malformed identifier or payload. Local, never retried."""

    code = "invalid_input"
    status_code = 400


class NotFound(LockboxError):
    code = "not_found"
    status_code = 404


class AlreadyExists(LockboxError):
    """Uniqueness violation on create (also the losing side of a concurrent create)."""

    code = "already_exists"
    status_code = 409


class Unauthorized(LockboxError):
    """Missing, invalid, or expired credentials."""

    code = "unauthorized"
    status_code = 401


class InvalidToken(Unauthorized):
    code = "invalid_token"


class TokenExpired(Unauthorized):
    code = "token_expired"


class Forbidden(LockboxError):
    """Valid identity, but the caller does not own the target."""

    code = "forbidden"
    status_code = 403


class NotShared(LockboxError):
    """The caller is not a live target of the requested share.

    Reported as 404 so a caller cannot probe which secrets exist under
    another user's handle.
    """

    code = "not_shared"
    status_code = 404


class InvalidCiphertext(LockboxError):
    """Ciphertext too short or failed authentication."""

    code = "invalid_ciphertext"
    status_code = 500


class StoreError(LockboxError):
    """A backing store call failed. The driver exception is chained as __cause__."""

    code = "store_error"
    status_code = 503


class Cancelled(LockboxError):
    """The operation's deadline passed or it was cancelled at a store call boundary."""

    code = "cancelled"
    status_code = 504


class CompensationFailed(LockboxError):
    """An inverse action failed while unwinding a partially applied operation.

    This is the one fatal condition in the core: the two stores may now
    disagree and an operator has to reconcile them by hand. `cause` is the
    error that triggered the unwind; `failures` lists every inverse that
    raised, in the order they ran.
    """

    code = "compensation_failed"
    status_code = 500

    def __init__(self, operation: str, cause: BaseException, failures: list[BaseException]) -> None:
        summary = "; ".join(f"{type(f).__name__}: {f}" for f in failures)
        super().__init__(
            f"{operation}: rollback incomplete after {type(cause).__name__}: {cause}",
            detail=f"{len(failures)} inverse action(s) failed: {summary}",
        )
        self.operation = operation
        self.cause = cause
        self.failures = failures
