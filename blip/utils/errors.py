"""
Centralized Error Handling Utilities

Provides user-friendly error messages and consistent error response format.
"""

from typing import Optional, Dict, Any
from enum import Enum
import structlog
from fastapi import HTTPException, status

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for consistent API responses"""
    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Authentication/Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resource-specific errors
    INVALID_CONTRACT_ID = "INVALID_CONTRACT_ID"
    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"
    CONTRACT_ALREADY_SAVED = "CONTRACT_ALREADY_SAVED"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Upstream integration errors
    WAREHOUSE_ERROR = "WAREHOUSE_ERROR"
    IDENTITY_PROVIDER_ERROR = "IDENTITY_PROVIDER_ERROR"

    # Database errors
    DATABASE_ERROR = "DATABASE_ERROR"
    DATABASE_CONNECTION_ERROR = "DATABASE_CONNECTION_ERROR"


# User-friendly error messages (do not expose internal details)
USER_FRIENDLY_MESSAGES = {
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again later.",
    ErrorCode.VALIDATION_ERROR: "The request contains invalid data. Please check your input.",
    ErrorCode.NOT_FOUND: "The requested resource was not found.",
    ErrorCode.CONFLICT: "The operation conflicts with the current state of the resource.",

    ErrorCode.UNAUTHORIZED: "Authentication is required to access this resource.",
    ErrorCode.FORBIDDEN: "You don't have permission to perform this action.",

    ErrorCode.INVALID_CONTRACT_ID: "Invalid Soroban contract ID",
    ErrorCode.CONTRACT_NOT_FOUND: "The saved contract was not found.",
    ErrorCode.CONTRACT_ALREADY_SAVED: "This contract is already saved.",
    ErrorCode.USER_NOT_FOUND: "The user was not found.",

    ErrorCode.WAREHOUSE_ERROR: "Unable to retrieve contract data. Please try again later.",
    ErrorCode.IDENTITY_PROVIDER_ERROR: "Unable to reach the identity provider. Please try again later.",

    ErrorCode.DATABASE_ERROR: "A database error occurred. Please try again later.",
    ErrorCode.DATABASE_CONNECTION_ERROR: "Unable to connect to the database. Please try again later.",
}


def create_error_response(
    code: ErrorCode,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a standardized error response.

    Args:
        code: Error code enum
        message: Optional custom message (defaults to user-friendly message)
        details: Optional additional details (be careful not to expose sensitive info)

    Returns:
        Standardized error response dict
    """
    return {
        "error": {
            "code": code.value,
            "message": message or USER_FRIENDLY_MESSAGES.get(code, USER_FRIENDLY_MESSAGES[ErrorCode.INTERNAL_ERROR]),
            **({"details": details} if details else {}),
        }
    }


def raise_not_found(
    resource_type: str = "resource",
    resource_id: Optional[str] = None,
    code: ErrorCode = ErrorCode.NOT_FOUND,
) -> None:
    """
    Raise a 404 Not Found error with user-friendly message.

    Args:
        resource_type: Type of resource (e.g., "saved contract", "user")
        resource_id: Optional resource identifier
        code: Error code to report
    """
    message = f"The {resource_type} was not found."
    if resource_id:
        message = f"The {resource_type} with ID '{resource_id}' was not found."

    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=create_error_response(code, message),
    )


def raise_validation_error(
    message: str,
    field: Optional[str] = None,
    code: ErrorCode = ErrorCode.VALIDATION_ERROR,
) -> None:
    """
    Raise a 400 Validation error with user-friendly message.

    Args:
        message: Description of what's invalid
        field: Optional field name that has the error
        code: Error code to report
    """
    details = {"field": field} if field else None

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=create_error_response(code, message, details),
    )


def raise_conflict(
    message: str,
    code: ErrorCode = ErrorCode.CONFLICT,
) -> None:
    """Raise a 409 Conflict error."""
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=create_error_response(code, message),
    )


def raise_warehouse_error(
    operation: str,
    exception: Optional[Exception] = None,
) -> None:
    """
    Raise a 500 error for analytics warehouse failures.

    Query text and Athena state-change reasons stay in the logs.

    Args:
        operation: Operation that failed (e.g., "fetch tx volume")
        exception: Optional exception to log
    """
    log_message = f"Warehouse error during {operation}"
    if exception:
        logger.error(log_message, error=str(exception), exc_info=True)
    else:
        logger.error(log_message)

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=create_error_response(ErrorCode.WAREHOUSE_ERROR),
    )


def raise_upstream_error(
    service: str,
    operation: str,
    exception: Optional[Exception] = None,
) -> None:
    """
    Raise a 502 error for identity provider failures.

    Args:
        service: Upstream service name
        operation: Operation that failed (e.g., "fetch user")
        exception: Optional exception to log
    """
    log_message = f"{service} error during {operation}"
    if exception:
        logger.error(log_message, error=str(exception), exc_info=True)

    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=create_error_response(ErrorCode.IDENTITY_PROVIDER_ERROR),
    )


def raise_database_error(
    operation: str,
    exception: Optional[Exception] = None,
) -> None:
    """
    Raise an error for database failures with user-friendly message.

    Args:
        operation: Operation that failed (e.g., "saving contract")
        exception: Optional exception to log
    """
    log_message = f"Database error during {operation}"
    if exception:
        logger.error(log_message, error=str(exception), exc_info=True)

    error_str = str(exception).lower() if exception else ""

    if "connection" in error_str or "connect" in error_str:
        code = ErrorCode.DATABASE_CONNECTION_ERROR
    else:
        code = ErrorCode.DATABASE_ERROR

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=create_error_response(code),
    )
