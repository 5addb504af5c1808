# bdfstore/core/exceptions.py
from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Numeric error taxonomy shared by every container operation."""

    NO_ERROR = 0
    RESOURCE = 1
    ARGUMENT = 2
    INVALID_HANDLE = 3
    INTERNAL = 4


class BdfError(Exception):
    """Base error for all container exceptions."""

    code: ErrorCode = ErrorCode.INTERNAL


# ---- Resource exhaustion (disk full, rename failure, ...) ----
class ResourceError(BdfError, OSError):
    """Raised when storage cannot be allocated, written or promoted."""

    code = ErrorCode.RESOURCE


# ---- Caller mistakes ----
class ArgumentError(BdfError, ValueError):
    """Raised when a caller-supplied value violates a precondition."""

    code = ErrorCode.ARGUMENT


class InvalidFileError(ArgumentError):
    """Raised when a file is not a finished, well-formed container."""


class InvalidTimeSeries(ArgumentError):
    """Raised when a TimeSeries is constructed with invalid inputs."""


class InvalidHandleError(BdfError, LookupError):
    """Raised when a handle is unknown, stale, or in the wrong state."""

    code = ErrorCode.INVALID_HANDLE


# ---- Engine defects ----
class InternalError(BdfError):
    """
    Raised on an invariant violation inside the engine.

    A fatal internal error marks the owning container as faulted.
    """

    code = ErrorCode.INTERNAL
    fatal: bool = True


class AttributesSealedError(InternalError):
    """Raised when an attribute is set after the store was sealed."""

    fatal = False
