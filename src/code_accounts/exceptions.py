"""Consolidated exception hierarchy for code-accounts.

All exceptions use proper exception chaining with the `from` keyword.
Error types use StrEnum for type safety and autocompletion.
"""

from enum import StrEnum
from pathlib import Path
from typing import Any


class ErrorType(StrEnum):
    """Error type codes attached to every raised error."""

    STORAGE = "storage_error"
    MALFORMED_FILE = "malformed_file_error"
    STORAGE_WRITE = "storage_write_error"
    INVALID_CREDENTIAL = "invalid_credential_error"
    INTERNAL = "internal_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class CodeAccountsError(Exception):
    """Base exception for all code-accounts errors.

    All exceptions inherit from this base class for easy catching.
    Supports structured error details.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.details = details or {}


# ============================================================================
# Storage Errors
# ============================================================================


class StorageError(CodeAccountsError):
    """A persisted file exists but could not be read."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        error_type: ErrorType = ErrorType.STORAGE,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if path is not None:
            details["path"] = str(path)
        super().__init__(message, error_type=error_type, details=details)
        self.path = path


class MalformedFileError(StorageError):
    """A persisted file is present but does not match its schema."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(
            f"Malformed file {path}: {reason}",
            path=path,
            error_type=ErrorType.MALFORMED_FILE,
            details={"reason": reason},
        )


class StorageWriteError(StorageError):
    """Persisting a file failed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(
            f"Failed to write {path}: {reason}",
            path=path,
            error_type=ErrorType.STORAGE_WRITE,
            details={"reason": reason},
        )


# ============================================================================
# Credential Errors
# ============================================================================


class InvalidCredentialError(CodeAccountsError, ValueError):
    """Credential material handed to the store is unusable."""

    def __init__(self, message: str = "Invalid credential") -> None:
        super().__init__(message, error_type=ErrorType.INVALID_CREDENTIAL)


__all__ = [
    "CodeAccountsError",
    "ErrorType",
    "InvalidCredentialError",
    "MalformedFileError",
    "StorageError",
    "StorageWriteError",
]
