"""Domain errors raised by the service layer.

Controllers translate them into ``HTTPException`` via
``app.dependencies.http_error``.
"""
from __future__ import annotations

from app.models import ErrorCode


class ServiceError(Exception):
    code: ErrorCode = ErrorCode.BAD_REQUEST
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(ServiceError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class Forbidden(ServiceError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class NotFound(ServiceError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class QuotaExceeded(ServiceError):
    code = ErrorCode.QUOTA_EXCEEDED
    status_code = 402

    def __init__(self, message: str, *, role: str, limit: int) -> None:
        super().__init__(message)
        self.role = role
        self.limit = limit


class InvalidInput(ServiceError):
    code = ErrorCode.BAD_REQUEST
    status_code = 400


class StorageUnavailable(ServiceError):
    code = ErrorCode.STORAGE_UNAVAILABLE
    status_code = 503


__all__ = [
    "ServiceError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "QuotaExceeded",
    "InvalidInput",
    "StorageUnavailable",
]
