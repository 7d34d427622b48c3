"""
Utils Package

Provides utility modules for:
- validation_errors: Structured HTTP error bodies
"""

from .validation_errors import (
    ErrorResponse,
    raise_invalid_parameter,
    raise_reconciliation_error,
    status_code_for,
)

__all__ = [
    'ErrorResponse',
    'raise_invalid_parameter',
    'raise_reconciliation_error',
    'status_code_for',
]
