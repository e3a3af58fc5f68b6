"""
Exception classes for auditsync.
"""

from typing import Any, Dict, Optional


class AuditSyncError(Exception):
    """Base exception for all auditsync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(AuditSyncError):
    """Raised when the audit configuration is missing or invalid."""

    pass


class DatabaseError(AuditSyncError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class CatalogReadError(DatabaseError):
    """Raised when schema metadata cannot be read from information_schema."""

    def __init__(
        self,
        message: str,
        schema: Optional[str] = None,
        table: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if schema:
            details["schema"] = schema
        if table:
            details["table"] = table

        super().__init__(message, details, cause)
        self.schema = schema
        self.table = table


class DdlExecutionError(DatabaseError):
    """Raised when the server rejects a CREATE, ALTER or trigger statement."""

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        table: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if table:
            details["table"] = table

        super().__init__(message, details, cause)
        self.sql = sql
        self.table = table


class LockTimeoutError(DatabaseError):
    """Raised when a table lock could not be acquired in time."""

    def __init__(
        self,
        table: str,
        timeout_seconds: Optional[int] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        message = f"Could not lock table {table}"
        if timeout_seconds:
            message += f" (lock_wait_timeout: {timeout_seconds}s)"

        super().__init__(message, cause=cause)
        self.table = table
        self.timeout_seconds = timeout_seconds
