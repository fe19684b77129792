"""Centralized error handling for the market data API."""

from concurrent.futures import CancelledError
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from market_feed.services.errors import AggregatorNotRunningError, UnknownSourceError


class MarketDataErrorCode:
    """Standard error codes returned by the API."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_SOURCE = "UNKNOWN_SOURCE"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    REFRESH_TIMEOUT = "REFRESH_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse:
    """Standardized error response format."""

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | list[str] | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
    ):
        """
        Initialize error response.

        Args:
            error_code: Code from MarketDataErrorCode
            message: Human-readable error message
            details: Additional error details
            status_code: HTTP status code
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        response = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response

    def to_http_exception(self) -> HTTPException:
        """Convert to FastAPI HTTPException."""
        return HTTPException(status_code=self.status_code, detail=self.to_dict())

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


def create_validation_error_response(errors: list[dict[str, Any]]) -> ErrorResponse:
    """
    Create standardized validation error response from request validation errors.

    Args:
        errors: List of validation errors from Pydantic

    Returns:
        ErrorResponse with field-specific validation errors
    """
    field_errors = {}
    for error in errors:
        field_path = ".".join(str(loc) for loc in error["loc"])
        field_errors[field_path] = error["msg"]

    return ErrorResponse(
        error_code=MarketDataErrorCode.VALIDATION_ERROR,
        message="Validation failed for one or more fields",
        details=field_errors,
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def create_refresh_timeout_error(timeout: float) -> ErrorResponse:
    return ErrorResponse(
        error_code=MarketDataErrorCode.REFRESH_TIMEOUT,
        message=f"Refresh did not complete within {timeout} seconds",
        status_code=status.HTTP_504_GATEWAY_TIMEOUT,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI validation errors with the standard envelope."""
    return create_validation_error_response(exc.errors()).to_json_response()


async def unknown_source_handler(request: Request, exc: UnknownSourceError) -> JSONResponse:
    """Map an unregistered source name to 404."""
    return ErrorResponse(
        error_code=MarketDataErrorCode.UNKNOWN_SOURCE,
        message=str(exc),
        details={"source": exc.source},
        status_code=status.HTTP_404_NOT_FOUND,
    ).to_json_response()


async def not_running_handler(request: Request, exc: AggregatorNotRunningError) -> JSONResponse:
    """Map a refresh against a stopped engine to 503."""
    return ErrorResponse(
        error_code=MarketDataErrorCode.SERVICE_UNAVAILABLE,
        message=str(exc),
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    ).to_json_response()


async def refresh_cancelled_handler(request: Request, exc: CancelledError) -> JSONResponse:
    """Map a queued refresh cancelled by engine shutdown to 503."""
    return ErrorResponse(
        error_code=MarketDataErrorCode.SERVICE_UNAVAILABLE,
        message="Refresh was cancelled because the market data engine is stopping",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    ).to_json_response()


def register_error_handlers(app: FastAPI) -> None:
    """Install the handlers above on ``app``."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(UnknownSourceError, unknown_source_handler)
    app.add_exception_handler(AggregatorNotRunningError, not_running_handler)
    app.add_exception_handler(CancelledError, refresh_cancelled_handler)
