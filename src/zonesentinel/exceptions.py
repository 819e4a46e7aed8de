"""
ZoneSentinel Exceptions

Error taxonomy for the risk zone subsystem:
    - Input errors: invalid cell identifiers, malformed batch requests
    - Collaborator errors: store and geocoding failures, with context
      (which cell, which operation) so callers can retry or report

Partial-batch errors are not exceptions; the batch service records them
as CellError entries instead of raising.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Stable error codes for callers at the batch trigger boundary."""
    INTERNAL_ERROR = "E1000"
    INVALID_INPUT = "E1001"
    INVALID_CELL = "E1002"
    NOT_FOUND = "E1003"
    STORE_ERROR = "E5000"
    GEOCODING_ERROR = "E5001"


class ZoneSentinelError(Exception):
    """Base exception for ZoneSentinel."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code.value,
            "type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(ZoneSentinelError, ValueError):
    """Request rejected before any work was done."""

    code = ErrorCode.INVALID_INPUT


class InvalidCellError(InvalidInputError):
    """Empty or malformed H3 cell identifier."""

    code = ErrorCode.INVALID_CELL

    def __init__(self, cell_id: Any, reason: str):
        super().__init__(
            f"Invalid cell identifier {cell_id!r}: {reason}",
            details={"cell_id": cell_id, "reason": reason},
        )
        self.cell_id = cell_id
        self.reason = reason


class StoreError(ZoneSentinelError):
    """A read or write against the risk zone store failed."""

    code = ErrorCode.STORE_ERROR

    def __init__(
        self,
        operation: str,
        cell_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        target = f" for cell {cell_id}" if cell_id else ""
        reason = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Store operation '{operation}' failed{target}{reason}",
            details={"operation": operation, "cell_id": cell_id},
        )
        self.operation = operation
        self.cell_id = cell_id


class AdjustmentNotFoundError(ZoneSentinelError):
    """Manual adjustment does not exist for the given cell."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, cell_id: str, adjustment_id: str):
        super().__init__(
            f"Adjustment {adjustment_id} not found for cell {cell_id}",
            details={"cell_id": cell_id, "adjustment_id": adjustment_id},
        )
        self.cell_id = cell_id
        self.adjustment_id = adjustment_id


class GeocodingError(ZoneSentinelError):
    """The geocoding collaborator failed or returned unusable data."""

    code = ErrorCode.GEOCODING_ERROR

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(
            f"Geocoding failed: {message}",
            details={"query": query} if query else {},
        )
        self.query = query
