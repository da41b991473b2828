"""Exception hierarchy for the package database.

Every failure carries an ErrorCode so callers can branch on the category
without matching exception types.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Error taxonomy shared by validators and exceptions."""

    SUCCESS = 0
    NULL_ARGUMENT = -1
    INVALID_SIZE = -2
    ALLOCATION_FAILURE = -3
    BUFFER_OVERFLOW = -4
    INVALID_INPUT = -5
    SIZE_LIMIT = -6
    IO_FAILURE = -7
    CORRUPT_FORMAT = -8


class RunepkgError(Exception):
    """Base exception for all package database errors."""

    code: ErrorCode = ErrorCode.INVALID_INPUT


class NullArgumentError(RunepkgError):
    """Raised when a required argument is None."""

    code = ErrorCode.NULL_ARGUMENT


class InvalidSizeError(RunepkgError):
    """Raised for zero, negative or overflowing sizes."""

    code = ErrorCode.INVALID_SIZE


class AllocationError(RunepkgError):
    """Raised when the interpreter cannot satisfy an allocation."""

    code = ErrorCode.ALLOCATION_FAILURE


class BufferOverflowError(RunepkgError):
    """Raised when data does not fit the destination buffer."""

    code = ErrorCode.BUFFER_OVERFLOW


class PathTooLongError(BufferOverflowError):
    """Raised when a constructed path exceeds the path-length ceiling."""


class InvalidInputError(RunepkgError):
    """Raised for malformed arguments (empty names, negative counts, ...)."""

    code = ErrorCode.INVALID_INPUT


class PathTraversalError(InvalidInputError):
    """Raised when a path component would escape its base directory."""


class SizeLimitError(RunepkgError):
    """Raised when a value exceeds a configured ceiling."""

    code = ErrorCode.SIZE_LIMIT


class StorageIOError(RunepkgError):
    """Raised when an open/read/write/seek on the database fails."""

    code = ErrorCode.IO_FAILURE


class LockTimeoutError(StorageIOError):
    """Raised when the database lock cannot be acquired in time."""


class CorruptFormatError(RunepkgError):
    """Raised when persisted data does not match its binary layout."""

    code = ErrorCode.CORRUPT_FORMAT


class CorruptRecordError(CorruptFormatError):
    """Raised when an info.bin / files.list pair cannot be decoded."""


class CorruptIndexError(CorruptFormatError):
    """Raised when the prefix-search index file is malformed."""


class PackageNotFoundError(RunepkgError):
    """Raised when a lookup finds no installed package."""

    code = ErrorCode.INVALID_INPUT


class AmbiguousPackageError(RunepkgError):
    """Raised when a bare package name matches several installed versions."""

    code = ErrorCode.INVALID_INPUT


class ConfigError(RunepkgError):
    """Raised when a configuration file is unreadable or invalid."""

    code = ErrorCode.INVALID_INPUT


_EXCEPTIONS: dict[ErrorCode, type[RunepkgError]] = {
    ErrorCode.NULL_ARGUMENT: NullArgumentError,
    ErrorCode.INVALID_SIZE: InvalidSizeError,
    ErrorCode.ALLOCATION_FAILURE: AllocationError,
    ErrorCode.BUFFER_OVERFLOW: BufferOverflowError,
    ErrorCode.INVALID_INPUT: InvalidInputError,
    ErrorCode.SIZE_LIMIT: SizeLimitError,
    ErrorCode.IO_FAILURE: StorageIOError,
    ErrorCode.CORRUPT_FORMAT: CorruptFormatError,
}

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.SUCCESS: "Success",
    ErrorCode.NULL_ARGUMENT: "Null argument error",
    ErrorCode.INVALID_SIZE: "Invalid size error",
    ErrorCode.ALLOCATION_FAILURE: "Memory allocation error",
    ErrorCode.BUFFER_OVERFLOW: "Buffer overflow error",
    ErrorCode.INVALID_INPUT: "Invalid input error",
    ErrorCode.SIZE_LIMIT: "Size limit exceeded error",
    ErrorCode.IO_FAILURE: "I/O error",
    ErrorCode.CORRUPT_FORMAT: "Corrupt data format error",
}


def error_string(code: ErrorCode) -> str:
    """Return a human-readable description of an error code."""
    return _MESSAGES.get(code, "Unknown error")


def exception_for(code: ErrorCode) -> type[RunepkgError]:
    """Return the exception class raised for a non-success code."""
    if code is ErrorCode.SUCCESS:
        raise ValueError("SUCCESS has no exception class")
    return _EXCEPTIONS[code]
