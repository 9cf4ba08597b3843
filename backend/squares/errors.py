"""Typed errors returned by the engine's operations.

Every expected failure is a ``SquaresError`` subclass carrying an
``ErrorKind`` and the HTTP status the API layer maps it to. Storage-layer
connection failures are translated into ``StorageUnavailableError`` so
callers can tell a retryable outage from a business rejection.
"""

from enum import StrEnum

from fastapi import status


class ErrorKind(StrEnum):
    NOT_FOUND = "NotFound"
    ALREADY_OWNED = "AlreadyOwned"
    ALREADY_ASSIGNED = "AlreadyAssigned"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    LIMIT_EXCEEDED = "LimitExceeded"
    INVALID_STATE = "InvalidState"
    DAILY_LIMIT_EXCEEDED = "DailyLimitExceeded"
    VALIDATION_ERROR = "ValidationError"
    STORAGE_UNAVAILABLE = "StorageUnavailable"


class SquaresError(Exception):
    """Base class for all expected, recoverable engine errors."""

    kind: ErrorKind
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": str(self.kind), "detail": self.detail}


class NotFoundError(SquaresError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class AlreadyOwnedError(SquaresError):
    kind = ErrorKind.ALREADY_OWNED
    status_code = status.HTTP_409_CONFLICT


class AlreadyAssignedError(SquaresError):
    kind = ErrorKind.ALREADY_ASSIGNED
    status_code = status.HTTP_409_CONFLICT


class InsufficientFundsError(SquaresError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class LimitExceededError(SquaresError):
    kind = ErrorKind.LIMIT_EXCEEDED
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(SquaresError):
    kind = ErrorKind.INVALID_STATE
    status_code = status.HTTP_409_CONFLICT


class DailyLimitExceededError(SquaresError):
    kind = ErrorKind.DAILY_LIMIT_EXCEEDED
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InputValidationError(SquaresError):
    kind = ErrorKind.VALIDATION_ERROR
    status_code = 422


class StorageUnavailableError(SquaresError):
    kind = ErrorKind.STORAGE_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
