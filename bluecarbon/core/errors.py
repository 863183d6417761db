"""
Typed failures raised by the ledger core.

Routes translate these into HTTP responses using ``status_code``.
"""

from fastapi import status


class LedgerError(Exception):
    """Base class for all ledger core failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False


class NotFound(LedgerError):
    """Unknown party, project, transaction or certificate."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidState(LedgerError):
    """Entity is in the wrong lifecycle stage for the requested action."""

    status_code = status.HTTP_409_CONFLICT


class InsufficientCredits(LedgerError):
    """Purchase exceeds the project's available credits."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, project_id: str, requested: float, available: float | None = None):
        self.project_id = project_id
        self.requested = requested
        self.available = available
        message = f"Insufficient credits available on project {project_id}: requested {requested}"
        if available is not None:
            message += f", available {available}"
        super().__init__(message)


class Forbidden(LedgerError):
    """Action is administratively disabled or would be self-dealing."""

    status_code = status.HTTP_403_FORBIDDEN


class DuplicateRequest(LedgerError):
    """Idempotency key reused with different request parameters."""

    status_code = status.HTTP_409_CONFLICT


class ValidationFailed(LedgerError):
    """Request input violates a ledger precondition."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT


class StorageUnavailable(LedgerError):
    """Durable store failed; the operation left no partial state and may be retried."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
