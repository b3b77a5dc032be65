"""
Error types for the tablecat SDK.

This module defines all exception types raised by the SDK:
- TableCatError: Base exception
- InvalidFormatError: Malformed schema construction or serialized metadata
- SqlParseError: SQL text does not parse under the target dialect
- CommitConflictError: A commit requirement no longer holds
- TransportError: Catalog communication failure
- NotFoundError: Table or namespace does not exist
- AlreadyExistsError: Table or namespace already exists

CompatibilityError (in compat) also derives from TableCatError.

Invariants:
    - All errors inherit from TableCatError
    - Errors include context for debugging
    - CommitConflictError is converted to a CommitResult by the client;
      it only escapes from the transport layer
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TableCatError(Exception):
    """Base exception for all tablecat errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TABLECAT_ERROR"
        self.details = details or {}


class InvalidFormatError(TableCatError):
    """Malformed schema or metadata.

    Raised when:
    - SchemaBuilder.build() is called without fields
    - A serialized type tag is unknown
    - A metadata update cannot be applied to the current metadata
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_FORMAT",
            details={"path": path},
        )
        self.path = path


class SqlParseError(TableCatError):
    """SQL text could not be parsed.

    Attributes:
        sql: The offending statement text
    """

    def __init__(self, message: str, sql: str) -> None:
        super().__init__(
            message,
            code="SQL_PARSE_ERROR",
            details={"sql": sql},
        )
        self.sql = sql


class CommitConflictError(TableCatError):
    """A commit requirement failed against the catalog's current state.

    Raised when:
    - The table was changed by another writer since it was loaded
    - The table already exists on an assert-create commit

    Attributes:
        requirement: Type of the failed requirement (e.g. "assert-current-schema-id")
    """

    def __init__(self, message: str, requirement: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="COMMIT_CONFLICT",
            details={"requirement": requirement},
        )
        self.requirement = requirement


class TransportError(TableCatError):
    """Communication with the catalog failed.

    Raised when:
    - The catalog is unreachable
    - The request timed out
    - The catalog answered with an unexpected status
    """

    def __init__(
        self,
        message: str,
        uri: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSPORT_ERROR",
            details={"uri": uri, "status_code": status_code},
        )
        self.uri = uri
        self.status_code = status_code


class _ResourceError(TableCatError):
    """Error about a named catalog resource."""

    code = "RESOURCE_ERROR"

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            code=self.code,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class NotFoundError(_ResourceError):
    """Resource not found.

    Raised when:
    - Table doesn't exist
    - Namespace doesn't exist
    - A metadata location was never written
    """

    code = "NOT_FOUND"


class AlreadyExistsError(_ResourceError):
    """Resource already exists."""

    code = "ALREADY_EXISTS"
