"""
Error taxonomy for the Annota API.

Every error is an HTTPException so services and routers can raise them
directly and FastAPI renders them as {"detail": ...}.

Security-relevant misses (ownership mismatch, inactive link, dead token)
all use NotFoundError with the same generic detail so callers cannot tell
which condition triggered it.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code_default: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail_default: str = "Internal server error"

    def __init__(self, detail: Optional[Any] = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail if detail is not None else self.detail_default,
        )


class ValidationError(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Invalid request"


class UnauthorizedError(AppError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    detail_default = "Missing x-owner-email header"


class NotFoundError(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND
    detail_default = "Not found"


class ConflictError(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Conflicting state"


class ForbiddenError(AppError):
    status_code_default = status.HTTP_403_FORBIDDEN
    detail_default = "Forbidden"


class InvalidPinError(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    detail_default = "Invalid PIN"


class TooManyAttemptsError(AppError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    detail_default = "Too many failed attempts, try again later"


class EmailDeliveryError(AppError):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail_default = "Failed to send email. Check server logs."


class InvariantViolation(RuntimeError):
    """
    Raised when a transactional write would leave Project and
    ApprovalRequest out of step. Never handled in-band.
    """
