#!/usr/bin/env python3
"""Exception Hierarchy for the Data Access Gate.

This module provides the structured exception hierarchy raised by the
permission-gated data access layer: permission checks, input validation,
raw SQL policy enforcement, and storage failures.

Design Principles:
    - All exceptions inherit from DataGateError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Every exception carries the HTTP-style status a caller should surface
    - Storage failures keep the driver error as ``cause`` but expose only a
      generic public message

Exception Hierarchy:
    DataGateError (base)
    ├── ConfigurationError (unrecoverable - fix matrix/registry setup)
    ├── PermissionDeniedError (403)
    ├── NotFoundError (404)
    ├── BadRequestError (400)
    │   └── SQLPolicyViolation
    ├── InternalStorageError (500)
    │   └── ConnectionPoolError
    └── FunctionExecutionError (500)

Author: Energy Dashboard Team
"""
from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class DataGateError(Exception):
    """Base exception for all data gate errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "PERMISSION_DENIED")
        status_code: HTTP-style status the caller should surface
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether the caller might succeed by adjusting input
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        self.cause = cause
        self.recoverable = recoverable
        if status_code is not None:
            self.status_code = status_code

        # Chain the original exception if provided
        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"status_code={self.status_code}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a JSON-serializable dict for the caller.

        The ``cause`` is deliberately reduced to its type name so driver
        internals never reach the agent.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": type(self.cause).__name__ if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(DataGateError):
    """Raised when the permission matrix, entity registry or function
    registry is constructed with inconsistent data.

    These errors surface at process start, never per request.
    """

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            status_code=500,
            **kwargs,
        )


# ============================================
# Access Errors
# ============================================

class PermissionDeniedError(DataGateError):
    """Raised when a role lacks the required level on an entity (HTTP 403)."""

    status_code = 403

    def __init__(
        self,
        role: str,
        action: str,
        target: str,
        **kwargs,
    ):
        message = f"Permission denied for {role} to {action} {target}"
        details = kwargs.pop("details", {})
        details["role"] = role
        details["action"] = action
        details["target"] = target
        super().__init__(
            message,
            code="PERMISSION_DENIED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.role = role
        self.action = action
        self.target = target


class NotFoundError(DataGateError):
    """Raised when a record or a function name does not exist (HTTP 404)."""

    status_code = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} '{resource_id}' not found"

        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id is not None:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class BadRequestError(DataGateError):
    """Raised when input fails validation (HTTP 400).

    Covers unmapped entity types, empty update payloads, unknown columns,
    and aggregation types or intervals outside their closed sets.
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        kwargs.setdefault("code", "BAD_REQUEST")
        super().__init__(
            message,
            details=details,
            recoverable=True,  # Caller can correct the input
            **kwargs,
        )
        self.field = field


class SQLPolicyViolation(BadRequestError):
    """Raised by the raw SQL guard before a statement reaches the driver.

    Attributes:
        rule: Name of the rule that rejected the statement
        role: Role that submitted the statement
    """

    def __init__(
        self,
        message: str,
        rule: str,
        role: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["rule"] = rule
        if role is not None:
            details["role"] = role
        super().__init__(
            message,
            code="SQL_POLICY_VIOLATION",
            details=details,
            **kwargs,
        )
        self.rule = rule
        self.role = role


# ============================================
# Storage Errors
# ============================================

class InternalStorageError(DataGateError):
    """Raised when the storage driver fails (HTTP 500).

    The public message is generic. The driver exception is kept as
    ``cause`` for server-side logging only.
    """

    status_code = 500

    def __init__(
        self,
        message: str = "Database operation failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        kwargs.setdefault("code", "INTERNAL_STORAGE_ERROR")
        kwargs.setdefault("recoverable", True)
        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.operation = operation


class ConnectionPoolError(InternalStorageError):
    """Raised when the connection pool is missing or cannot hand out a connection."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


# ============================================
# Dispatch Errors
# ============================================

class FunctionExecutionError(DataGateError):
    """Uniform 500-shaped error for unrecognized failures inside a function."""

    status_code = 500

    def __init__(
        self,
        function_name: str,
        message: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["function"] = function_name
        super().__init__(
            message or f"Error executing function '{function_name}'",
            code="FUNCTION_EXECUTION_ERROR",
            details=details,
            **kwargs,
        )
        self.function_name = function_name


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "DataGateError",
    # Configuration
    "ConfigurationError",
    # Access
    "PermissionDeniedError",
    "NotFoundError",
    "BadRequestError",
    "SQLPolicyViolation",
    # Storage
    "InternalStorageError",
    "ConnectionPoolError",
    # Dispatch
    "FunctionExecutionError",
]
