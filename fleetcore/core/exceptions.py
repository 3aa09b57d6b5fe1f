"""
Custom exceptions and error handlers for consistent error responses.

Every core operation reports failures through the typed errors below.
The global handlers render them as {"error_code", "message", "details"}.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class Unauthenticated(AppException):
    """Raised when the caller cannot be resolved to an active user."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class Forbidden(AppException):
    """Raised when the caller's role does not permit the operation."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class QuotaExceeded(AppException):
    """Raised when creating a resource would exceed the tenant's plan."""

    def __init__(self, resource_class: str, limit: int, current: int):
        super().__init__(
            message=f"Your plan allows {limit} {resource_class.lower()} resources. Upgrade your subscription to add more.",
            error_code="ERR_QUOTA_001",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "resource_class": resource_class,
                "limit": limit,
                "current": current,
                "upgrade_required": True
            }
        )


class NotFound(AppException):
    """Raised when a referenced entity is missing."""

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


class AlreadyAssigned(AppException):
    """Raised when a vehicle (or technician) already holds an open assignment."""

    def __init__(self, message: str = "Vehicle is already assigned", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_ASSIGN_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class AssignmentClosed(AppException):
    """Raised on any attempt to mutate a closed assignment."""

    def __init__(self, assignment_id: str):
        super().__init__(
            message=f"Assignment {assignment_id} is closed and can no longer be changed",
            error_code="ERR_ASSIGN_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"assignment_id": assignment_id}
        )


class InvalidAssignment(AppException):
    """Raised for invalid assignment dates or non-assignable users."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_ASSIGN_003",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class InsufficientStock(AppException):
    """Raised when a transfer would drive the source below zero."""

    def __init__(self, location: str, item_id: str, available: int, requested: int):
        super().__init__(
            message=f"Insufficient stock at {location}: {available} available, {requested} requested",
            error_code="ERR_STOCK_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "location": location,
                "item_id": item_id,
                "available": available,
                "requested": requested
            }
        )


class InvalidStockBounds(AppException):
    """Raised when minimum/maximum stock levels are inconsistent."""

    def __init__(self, minimum: int, maximum: Optional[int]):
        super().__init__(
            message="Maximum stock level must be greater than or equal to the minimum, and the minimum must not be negative",
            error_code="ERR_STOCK_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"minimum": minimum, "maximum": maximum}
        )


class InvalidQuantity(AppException):
    """Raised for negative quantities or non-positive transfer amounts."""

    def __init__(self, quantity: int, message: str = "Quantity must not be negative"):
        super().__init__(
            message=message,
            error_code="ERR_STOCK_003",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"quantity": quantity}
        )


class InvalidLocation(AppException):
    """Raised for malformed or self-referencing stock locations."""

    def __init__(self, message: str, location: Any = None):
        super().__init__(
            message=message,
            error_code="ERR_STOCK_004",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"location": location}
        )


class TransferNotPending(AppException):
    """Raised when a transfer request was already accepted or rejected."""

    def __init__(self, transfer_id: str, current_status: str):
        super().__init__(
            message=f"Transfer request {transfer_id} is already {current_status}",
            error_code="ERR_STOCK_005",
            status_code=status.HTTP_409_CONFLICT,
            details={"transfer_id": transfer_id, "status": current_status}
        )


class InvalidTelemetry(AppException):
    """Raised for telemetry readings that cannot be applied to a vehicle."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VEHICLE_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class StorageUnavailable(AppException):
    """Transient persistence failure. Nothing was applied; the caller may retry."""

    def __init__(self, message: str = "Storage is temporarily unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_STORAGE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True}
        )


class IntegrityViolation(AppException):
    """Surfaced only by the Integrity Auditor when stored data breaks an invariant."""

    def __init__(self, findings: List[Dict[str, Any]]):
        super().__init__(
            message=f"{len(findings)} integrity violation(s) detected",
            error_code="ERR_INTEGRITY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"findings": findings}
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
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )


def jsonable_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # pydantic v2 puts the raw exception object under "ctx"
    cleaned = []
    for error in errors:
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        cleaned.append(error)
    return cleaned
