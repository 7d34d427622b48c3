"""
Structured Error Utilities

Standardized error bodies so callers can tell validation problems,
reconciliation rule violations and connectivity issues apart.

Error Response Format:
{
    "error": "invalid_parameter" | "not_found" | "conflict" | ...,
    "entity": "transaction",
    "id": "<offending id>",
    "message": "Transaction not found: ..."
}
"""

from fastapi import HTTPException, status
from typing import Optional, Any

from reconciliation.exceptions import (
    ReconciliationError,
    DuplicateImportError,
    NotFoundError,
    InvalidStateError,
    ConflictError,
)


# Most specific class first
ERROR_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateImportError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST),
)


class ErrorResponse:
    """Structured error response builder."""

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)
        """
        response = {
            "error": "invalid_parameter",
            "entity": parameter,
            "id": None,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def reconciliation_error(error: ReconciliationError) -> dict:
        return error.to_dict()


def status_code_for(error: ReconciliationError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None):
    """
    Raise HTTPException with structured invalid parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ErrorResponse.invalid_parameter(parameter, message, value)
    )


def raise_reconciliation_error(error: ReconciliationError):
    """
    Raise HTTPException carrying the error kind and offending identifier.

    Raises:
        HTTPException with 404/409/400 status and structured error body
    """
    raise HTTPException(
        status_code=status_code_for(error),
        detail=ErrorResponse.reconciliation_error(error)
    ) from error
