"""Error handling framework for printsync.

This package provides the error code registry with E-XXXX format codes
shared by the fulfillment exceptions and the result models returned from
inbound operations.

Error categories:
- E-1xxx: Lookup errors
- E-2xxx: State errors
- E-3xxx: Fulfillment provider API errors
- E-4xxx: System/storage errors
- E-5xxx: Configuration and authentication errors
"""

from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
]
