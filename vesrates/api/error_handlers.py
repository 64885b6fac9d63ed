"""Centralized error handling for the rates API."""

from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vesrates.services.errors import (
    ExtractionError,
    RateServiceError,
    TransientStorageError,
    UnavailableError,
    ValidationError,
)
from vesrates.utils.logger import StructuredLogger

logger = StructuredLogger("ErrorHandler")


class RatesError:
    """Standard error codes for the rates API."""

    RATES_UNAVAILABLE = "RATES_UNAVAILABLE"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class ErrorResponse:
    """Body and status of an API error: {"error": code, "message": ..., "details"?: ...}."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None
    status_code: int = status.HTTP_400_BAD_REQUEST

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


def create_not_found_error(message: str) -> ErrorResponse:
    return ErrorResponse(RatesError.NOT_FOUND, message, status_code=status.HTTP_404_NOT_FOUND)


# (exception type, error code, HTTP status, fixed message or None to echo the error)
_ERROR_MAP: list[tuple[tuple[type[Exception], ...], str, int, str | None]] = [
    (
        (UnavailableError,),
        RatesError.RATES_UNAVAILABLE,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Unable to fetch exchange rates. Please try again later.",
    ),
    ((ExtractionError,), RatesError.EXTRACTION_FAILED, status.HTTP_502_BAD_GATEWAY, None),
    (
        (TransientStorageError,),
        RatesError.STORAGE_UNAVAILABLE,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Storage temporarily unavailable",
    ),
    ((ValidationError,), RatesError.VALIDATION_ERROR, status.HTTP_400_BAD_REQUEST, None),
]


def handle_service_error(error: Exception) -> ErrorResponse:
    """
    Map an exception raised below the API layer to an error response.

    Unknown exceptions become a generic 500 that does not echo the error text.
    """
    for types, code, status_code, message in _ERROR_MAP:
        if isinstance(error, types):
            return ErrorResponse(code, message or str(error), status_code=status_code)
    return ErrorResponse(
        RatesError.INTERNAL_ERROR,
        "An unexpected error occurred",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def rate_service_exception_handler(request: Request, exc: RateServiceError) -> JSONResponse:
    logger.error(
        "Request failed",
        context={"path": request.url.path, "method": request.method},
        exception=exc,
    )
    return handle_service_error(exc).to_json_response()


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report query and body validation failures per field, in the standard format."""
    details = {".".join(str(part) for part in err["loc"]): err["msg"] for err in exc.errors()}
    return ErrorResponse(
        RatesError.VALIDATION_ERROR,
        "Validation failed for one or more fields",
        details=details,
    ).to_json_response()
