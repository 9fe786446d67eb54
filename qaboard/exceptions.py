"""
qaboard.exceptions — Error Taxonomy
====================================

Every store raises these and only these, so callers can tell a missing
entity from a rejected mutation from a flaky backend without knowing which
backend is in use.
"""

from __future__ import annotations

from typing import Any


class QABoardError(Exception):
    """Base error with structured information for the caller."""

    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dict for notifications and logs."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(QABoardError):
    """A referenced room, question or answer does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "id": entity_id},
        )


class PermissionDeniedError(QABoardError, PermissionError):
    """An ownership/role check failed or the backend rejected the mutation.

    Also a built-in :class:`PermissionError`, so ``except PermissionError``
    catches it.
    """

    error_code = "PERMISSION_DENIED"


class ValidationError(QABoardError):
    """Caller-supplied data violates a precondition."""

    error_code = "VALIDATION_ERROR"


class TransientBackendError(QABoardError):
    """Network, timeout or unexpected backend fault.  Not retried here."""

    error_code = "BACKEND_UNAVAILABLE"


class ConflictError(QABoardError):
    """Reaction uniqueness violation.  Resolved to a no-op inside the store."""

    error_code = "CONFLICT"
