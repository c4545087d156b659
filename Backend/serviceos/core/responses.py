"""
Standardized API Response Module

Provides consistent response formatting across all API endpoints.

RESPONSE FORMAT:
    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

Data-access errors raised by the tenancy layer are always rendered with the
error envelope, never as a success payload.
"""

from typing import Any, Optional


class ErrorCodes:
    """Standard error codes for API responses."""

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Tenancy errors (403)
    TENANT_CONTEXT_REQUIRED = "TENANT_CONTEXT_REQUIRED"
    CROSS_TENANT_ACCESS = "CROSS_TENANT_ACCESS"
    HARD_DELETE_NOT_PERMITTED = "HARD_DELETE_NOT_PERMITTED"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """
    Create a standardized error response dict.
    """
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
