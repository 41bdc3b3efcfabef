"""
Engine Error Types
==================

Typed failures shared by the store, the tracker and client implementations.

Placed in a separate module so client implementations and tests can import
the same exception classes without pulling in the store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced to the UI"""
    VALIDATION = "validation"
    CONCURRENT_OPERATION = "concurrent_operation"
    TRANSPORT = "transport"
    SERVER = "server"
    NOT_FOUND = "not_found"
    STALE = "stale"


class EngineError(Exception):
    """Base exception for all engine failures"""
    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Request rejected before any network call"""
    kind = ErrorKind.VALIDATION


class ConcurrentOperationError(EngineError):
    """A guard for the same entity is already held"""
    kind = ErrorKind.CONCURRENT_OPERATION


class TransportError(EngineError):
    """The analysis service could not be reached"""
    kind = ErrorKind.TRANSPORT


class ServerError(EngineError):
    """The analysis service reported a failure"""
    kind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ServerError):
    """The session no longer exists server-side"""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class StaleOperationError(EngineError):
    """Result arrived for an attempt that was superseded or cleared"""
    kind = ErrorKind.STALE


@dataclass
class OperationResult:
    """Outcome of a store operation"""
    success: bool
    value: Any = None
    error: Optional[EngineError] = None

    @classmethod
    def ok(cls, value: Any = None) -> "OperationResult":
        return cls(success=True, value=value)

    @classmethod
    def failed(cls, error: EngineError) -> "OperationResult":
        return cls(success=False, error=error)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None
