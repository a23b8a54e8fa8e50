"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Trip integrity rejections carry the structured findings that caused them
so callers can correct the input without re-deriving the computation.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List, Optional, Sequence

from fleet_backend.app.models.trip_enums import AuditSeverity

logger = logging.getLogger("fleet_backend.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InsufficientDataError(AppException):
    """Raised when an out-of-band computation lacks enough samples."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INSUFFICIENT_DATA_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class AuditTrailImmutableError(AppException):
    """Raised on any attempt to modify or remove a written audit entry."""

    def __init__(self, operation: str):
        super().__init__(
            message=f"Audit trail entries are append-only; {operation} is not permitted",
            error_code="ERR_AUDIT_IMMUTABLE_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"operation": operation}
        )


class StorageError(AppException):
    """
    Storage or transport failure underneath the integrity engine.

    Never retried by the engine; the caller owns retry policy.
    """

    def __init__(self, message: str = "Storage operation failed", cause: Optional[BaseException] = None):
        details = {}
        if cause is not None:
            details["cause"] = type(cause).__name__
        super().__init__(
            message=message,
            error_code="ERR_STORAGE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


# Trip integrity rejections

class TripValidationError(AppException):
    """
    Base class for every hard rejection raised by the trip write path.

    Args:
        findings: Finding objects (anything exposing ``to_dict()`` and ``message``)
    """

    def __init__(
        self,
        findings: Sequence[Any],
        error_code: str,
        status_code: int,
        details: Dict[str, Any] = None,
        message: Optional[str] = None,
    ):
        self.findings = list(findings)
        payload = dict(details or {})
        payload["findings"] = [finding.to_dict() for finding in self.findings]
        if message is None:
            blocking = [f for f in self.findings if f.severity.rank >= AuditSeverity.ERROR.rank]
            message = "; ".join(f.message for f in blocking) or "Trip rejected"
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=payload
        )


class CorrectnessViolation(TripValidationError):
    """Negative distance, end before start, negative odometer gap."""

    def __init__(self, findings: Sequence[Any], details: Dict[str, Any] = None):
        super().__init__(
            findings,
            error_code="ERR_TRIP_CORRECTNESS_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ValueRangeViolation(TripValidationError):
    """A value is outside an absolute bound that no edge case can relax."""

    def __init__(self, findings: Sequence[Any], details: Dict[str, Any] = None):
        super().__init__(
            findings,
            error_code="ERR_TRIP_RANGE_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ConflictError(TripValidationError):
    """Temporal overlap with another trip of the same vehicle or driver."""

    error_code = "ERR_TRIP_CONFLICT_001"

    def __init__(self, findings: Sequence[Any], conflicts: List[Dict[str, Any]]):
        self.conflicts = conflicts
        super().__init__(
            findings,
            error_code=self.error_code,
            status_code=status.HTTP_409_CONFLICT,
            details={"conflicts": conflicts}
        )


class VehicleConflictError(ConflictError):
    error_code = "ERR_TRIP_CONFLICT_VEHICLE"


class DriverConflictError(ConflictError):
    error_code = "ERR_TRIP_CONFLICT_DRIVER"


class DuplicateSerialError(TripValidationError):
    """Trip serial number already used within the organization."""

    def __init__(self, findings: Sequence[Any], serial_number: str):
        super().__init__(
            findings,
            error_code="ERR_TRIP_SERIAL_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_serial_number": serial_number}
        )


class DependentDataError(TripValidationError):
    """Removal blocked because downstream trips depend on the refuel boundary."""

    def __init__(self, findings: Sequence[Any], trip_id: int, dependent_trip_ids: List[int]):
        self.trip_id = trip_id
        self.dependent_trip_ids = dependent_trip_ids
        super().__init__(
            findings,
            error_code="ERR_TRIP_DEPENDENTS_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id, "dependent_trip_ids": dependent_trip_ids}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
                    for error in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exception_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
