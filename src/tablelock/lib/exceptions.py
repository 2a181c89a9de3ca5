"""Exceptions raised by the table lock engine.

Ordinary lock contention is never an error: ``acquire`` returns ``None`` and
``release`` returns ``False``. The classes below cover the remaining cases.
"""
from __future__ import annotations

from typing import Optional


class TableLockError(Exception):
    """Base exception for all table lock errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(TableLockError):
    """Raised when the lock table or the settings cannot be used.

    Examples:
        - lock table cannot be created or verified
        - dead-host sweep fails at construction
        - invalid value in config.json
    """

    def __init__(
        self,
        message: str,
        config_file: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[str] = None,
    ):
        self.config_file = config_file
        self.field = field
        super().__init__(message, details)


class TransientStorageError(TableLockError):
    """Raised by the lock store when a statement fails.

    Wraps the underlying SQLAlchemy error together with the name of the
    operation that was running.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.original_error = original_error
        details = str(original_error) if original_error is not None else None
        super().__init__(message, details)


class UseAfterCloseError(TableLockError, RuntimeError):
    """Raised when a closed lock manager is used."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Lock manager for table '{table_name}' has been closed")


class LockAcquisitionError(TableLockError):
    """Raised by ``LockManager.hold`` when no lease is obtained in time."""

    def __init__(self, target: str, reason: str, timeout_ms: Optional[int] = None):
        self.target = target
        self.reason = reason
        self.timeout_ms = timeout_ms
        super().__init__(f"Failed to acquire lock '{target}'", reason)


class LeaseLostWarning(UserWarning):
    """Issued when the renewer finds that a held lease row has vanished."""
