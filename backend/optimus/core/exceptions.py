"""Custom exceptions and the HTTP exception handler."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from .logging import get_logger, new_trace_id

logger = get_logger(__name__)


class OptimusError(Exception):
    """Base exception for the portfolio analyzer."""

    error_code = "UNKNOWN_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None
    ):
        self.message = message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        self.trace_id = trace_id or new_trace_id()
        super().__init__(self.message)


class InvalidWalletError(OptimusError):
    """Raised when a wallet identifier is malformed."""

    error_code = "INVALID_WALLET"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTargetError(OptimusError):
    """Raised when a target allocation is not usable."""

    error_code = "INVALID_TARGET"
    status_code = status.HTTP_400_BAD_REQUEST


class SourceUnavailableError(OptimusError):
    """Raised when the holdings source cannot be reached."""

    error_code = "SOURCE_UNAVAILABLE"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that creates structured error responses.

    Args:
        request: FastAPI request object
        exc: Exception that was raised

    Returns:
        JSON response with error details and trace ID
    """
    method = request.method
    url = str(request.url)

    if isinstance(exc, OptimusError):
        status_code = exc.status_code
        error_response = {
            "error": True,
            "error_code": exc.error_code,
            "message": exc.message,
            "trace_id": exc.trace_id,
            "details": exc.details,
        }
        log = logger.warning if status_code < 500 else logger.error
        log(
            f"Application error: {exc.message}",
            extra={
                "extra_data": {
                    "error_code": exc.error_code,
                    "trace_id": exc.trace_id,
                    "method": method,
                    "url": url,
                }
            },
        )
    else:
        trace_id = new_trace_id()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        error_response = {
            "error": True,
            "error_code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
            "trace_id": trace_id,
        }
        logger.error(
            f"Unexpected error: {exc}",
            exc_info=exc,
            extra={
                "extra_data": {
                    "exception_type": type(exc).__name__,
                    "trace_id": trace_id,
                    "method": method,
                    "url": url,
                }
            },
        )

    return JSONResponse(status_code=status_code, content=error_response)
