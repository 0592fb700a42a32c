"""Data gate API support modules.

This package provides the error taxonomy, error sanitization and the
connection pool helpers shared by every gate component. The FastAPI router
and application live in ``router`` and ``app`` and are imported directly.

Exceptions:
    DataGateError: Base exception for all gate errors
    ConfigurationError: Invalid matrix, registry or catalog setup
    PermissionDeniedError: Role lacks the required level (403)
    NotFoundError: Record or function absent (404)
    BadRequestError: Invalid input (400)
    SQLPolicyViolation: Raw SQL rejected by the guard (400)
    InternalStorageError: Storage driver failure (500)
    ConnectionPoolError: Pool missing or exhausted (500)
    FunctionExecutionError: Unrecognized failure inside a function (500)
"""
from .database import (
    check_database_health,
    close_pool,
    convert_db_exception,
    create_pool,
    database_connection,
)
from .error_sanitizer import ErrorSanitizer, sanitize_error_message
from .exceptions import (
    BadRequestError,
    ConfigurationError,
    ConnectionPoolError,
    DataGateError,
    FunctionExecutionError,
    InternalStorageError,
    NotFoundError,
    PermissionDeniedError,
    SQLPolicyViolation,
)

__all__ = [
    # Database
    "check_database_health",
    "close_pool",
    "convert_db_exception",
    "create_pool",
    "database_connection",
    # Sanitization
    "ErrorSanitizer",
    "sanitize_error_message",
    # Exceptions
    "BadRequestError",
    "ConfigurationError",
    "ConnectionPoolError",
    "DataGateError",
    "FunctionExecutionError",
    "InternalStorageError",
    "NotFoundError",
    "PermissionDeniedError",
    "SQLPolicyViolation",
]
