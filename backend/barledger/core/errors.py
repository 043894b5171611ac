"""Structured application errors with stable machine-readable codes."""

from enum import Enum
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    BAD_REQUEST = "BAD_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    INTEGRATION_ERROR = "INTEGRATION_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


DEFAULT_STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ORGANIZATION_NOT_FOUND: 404,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.INTEGRATION_ERROR: 502,
}


class AppError(Exception):
    """Raised for run-level failures that must reach the caller as a coded error."""

    def __init__(self, code: ErrorCode, message: str, status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.status_code = status_code or DEFAULT_STATUS_CODES.get(code, 500)
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code.value}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
