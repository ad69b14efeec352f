# Overview: Error taxonomy shared by services and routes.

"""
Ledger error taxonomy.

Every failure a workflow can report is a LedgerError subclass, so callers
(routes, CLI, collaborators) can catch one type and render a structured
failure result from `code`, `message` and `details`.

- Unauthenticated      -> 401, no signed-in caller
- ValidationError      -> 400, detected in the read phase, nothing written
- NotFoundError        -> 404, order/demo/asset missing
- ConcurrencyConflict  -> 409, a conditional write lost a race
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger/workflow failures."""

    code = "LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class Unauthenticated(LedgerError):
    """No signed-in caller."""

    code = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "User not authenticated.", details: dict | None = None):
        super().__init__(message, details)


class ValidationError(LedgerError, ValueError):
    """400-level input or business-rule problem."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(LedgerError, LookupError):
    code = "NOT_FOUND"
    http_status = 404


class ConcurrencyConflict(LedgerError):
    """
    A conditional write observed state that changed after the read phase.

    The whole unit of work was rolled back; the caller may re-read and retry.
    """

    code = "CONCURRENCY_CONFLICT"
    http_status = 409


def require_actor(user_id: int | None) -> int:
    """Fail with Unauthenticated when there is no signed-in caller."""
    if user_id is None:
        raise Unauthenticated()
    return user_id
