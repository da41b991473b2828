"""Defensive allocation, string and path helpers.

Every helper validates its arguments before touching the allocator or the
filesystem and raises a typed RunepkgError instead of degrading silently.
The validate_* predicates return an ErrorCode and never raise; ensure()
turns a non-success code into the matching exception at a component
boundary.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from .errors import (
    AllocationError,
    BufferOverflowError,
    ErrorCode,
    InvalidInputError,
    InvalidSizeError,
    NullArgumentError,
    PathTooLongError,
    PathTraversalError,
    SizeLimitError,
    StorageIOError,
    exception_for,
)

logger = logging.getLogger(__name__)

MAX_ALLOC = 256 * 1024 * 1024  # 256 MiB
MAX_STRING = 1024 * 1024  # 1 MiB
MAX_PATH = 4096
MAX_FILE_COUNT = 100_000
SIZE_MAX = sys.maxsize

SEP = "/"


# --- Validation predicates ---


def validate_pointer(obj: object, name: str = "argument") -> ErrorCode:
    """Return NULL_ARGUMENT if obj is None."""
    if obj is None:
        return ErrorCode.NULL_ARGUMENT
    return ErrorCode.SUCCESS


def utf8_len(s: str) -> int:
    """Encoded length of s in bytes; -1 if s cannot be encoded."""
    try:
        return len(s.encode("utf-8"))
    except UnicodeEncodeError:
        return -1


def validate_string(s: object, max_len: int = MAX_STRING, name: str = "string") -> ErrorCode:
    """Check that s is a string of at most max_len UTF-8 bytes."""
    code = validate_pointer(s, name)
    if code is not ErrorCode.SUCCESS:
        return code
    if not isinstance(s, str):
        return ErrorCode.INVALID_INPUT
    size = utf8_len(s)
    if size < 0:
        return ErrorCode.INVALID_INPUT
    if size > max_len:
        return ErrorCode.SIZE_LIMIT
    return ErrorCode.SUCCESS


def validate_size(size: object, max_size: int, name: str = "size") -> ErrorCode:
    """Check that size is a non-negative int no larger than max_size."""
    if size is None:
        return ErrorCode.NULL_ARGUMENT
    if not isinstance(size, int) or isinstance(size, bool) or size < 0:
        return ErrorCode.INVALID_SIZE
    if size > max_size:
        return ErrorCode.SIZE_LIMIT
    return ErrorCode.SUCCESS


def validate_file_count(count: object) -> ErrorCode:
    """Check a manifest length against MAX_FILE_COUNT."""
    if count is None:
        return ErrorCode.NULL_ARGUMENT
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        return ErrorCode.INVALID_INPUT
    if count > MAX_FILE_COUNT:
        return ErrorCode.SIZE_LIMIT
    return ErrorCode.SUCCESS


def validate_path(path: object) -> ErrorCode:
    """Reject missing, over-long or parent-traversing paths."""
    code = validate_string(path, MAX_PATH, "path")
    if code is not ErrorCode.SUCCESS:
        return code
    if "\0" in path or ".." in path.split(SEP):
        return ErrorCode.INVALID_INPUT
    return ErrorCode.SUCCESS


def ensure(code: ErrorCode, what: str) -> None:
    """Raise the exception matching code unless it is SUCCESS."""
    if code is not ErrorCode.SUCCESS:
        raise exception_for(code)(f"invalid {what}")


# --- Buffers ---


def secure_alloc(size: int) -> bytearray:
    """Allocate a zero-filled buffer of size bytes.

    Raises:
        InvalidSizeError: size is zero, negative or not an int
        SizeLimitError: size exceeds MAX_ALLOC
        AllocationError: the interpreter is out of memory
    """
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise InvalidSizeError(f"Cannot allocate {size!r} bytes")
    if size > MAX_ALLOC:
        raise SizeLimitError(f"Allocation size {size} exceeds maximum {MAX_ALLOC} bytes")
    try:
        return bytearray(size)
    except MemoryError as e:
        raise AllocationError(f"Failed to allocate {size} bytes") from e


def secure_alloc_array(count: int, elem_size: int) -> bytearray:
    """Allocate count * elem_size zeroed bytes, rejecting overflow up front."""
    for value, label in ((count, "count"), (elem_size, "element size")):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise InvalidSizeError(f"Invalid {label}: {value!r}")
    if count > 0 and elem_size > SIZE_MAX // count:
        raise InvalidSizeError(f"Integer overflow in array allocation: {count} * {elem_size}")
    return secure_alloc(count * elem_size)


def secure_realloc(buf: bytearray | None, new_size: int) -> bytearray:
    """Return a new buffer of new_size bytes holding buf's leading bytes.

    buf itself is never modified, so it stays valid when this raises.
    """
    new_buf = secure_alloc(new_size)
    if buf is not None:
        keep = min(len(buf), new_size)
        new_buf[:keep] = buf[:keep]
    return new_buf


def secure_free(buf: bytearray | memoryview | None, size: int = 0) -> None:
    """Wipe the first size bytes of buf and return None.

    Callers rebind their handle to the result: ``buf = secure_free(buf, n)``.
    """
    if buf is None:
        return None
    if size > 0:
        size = min(size, len(buf))
        buf[:size] = bytes(size)
    return None


# --- Strings ---


def _checked_utf8_len(s: str | None) -> int:
    if s is None:
        raise NullArgumentError("Attempted to duplicate a None string")
    if not isinstance(s, str):
        raise InvalidInputError(f"Expected str, got {type(s).__name__}")
    size = utf8_len(s)
    if size < 0:
        raise InvalidInputError("String is not encodable as UTF-8")
    if size >= MAX_STRING:
        raise SizeLimitError(f"String length {size} bytes exceeds maximum {MAX_STRING}")
    return size


def secure_string_dup(s: str | None) -> str:
    """Return s once it passes the None, type and byte-length checks."""
    _checked_utf8_len(s)
    # str is immutable, so the validated value can be shared safely
    return s


def secure_string_dup_n(s: str | None, max_len: int) -> str:
    """Copy at most max_len UTF-8 bytes of s.

    A multibyte character that would straddle the limit is dropped whole.
    """
    _checked_utf8_len(s)
    if max_len < 0:
        raise InvalidSizeError(f"Negative copy length: {max_len}")
    if max_len > MAX_STRING:
        raise SizeLimitError(f"Max length {max_len} exceeds maximum {MAX_STRING}")
    return s.encode("utf-8")[:max_len].decode("utf-8", errors="ignore")


def c_string(buf: bytes | bytearray) -> str:
    """Decode the NUL-terminated UTF-8 string at the start of buf."""
    end = buf.find(0)
    if end < 0:
        end = len(buf)
    return bytes(buf[:end]).decode("utf-8")


def _strlen(buf: bytearray) -> int:
    end = buf.find(0)
    return len(buf) if end < 0 else end


def secure_copy_into(dest: bytearray, src: str) -> None:
    """Copy src into the fixed-capacity buffer dest as a NUL-terminated string.

    The capacity is len(dest); nothing is truncated.
    """
    if dest is None or src is None:
        raise NullArgumentError("None argument in secure_copy_into")
    if len(dest) == 0:
        raise InvalidSizeError("Zero destination size in secure_copy_into")
    data = src.encode("utf-8")
    if len(data) >= len(dest):
        raise BufferOverflowError(
            f"Source string too long for destination: {len(data)} >= {len(dest)}"
        )
    dest[: len(data) + 1] = data + b"\0"


def secure_append_into(dest: bytearray, src: str) -> None:
    """Append src to the NUL-terminated string held in dest."""
    if dest is None or src is None:
        raise NullArgumentError("None argument in secure_append_into")
    if len(dest) == 0:
        raise InvalidSizeError("Zero destination size in secure_append_into")
    dest_len = _strlen(dest)
    if dest_len >= len(dest):
        raise BufferOverflowError(f"Destination already full: {dest_len} >= {len(dest)}")
    data = src.encode("utf-8")
    if dest_len + len(data) >= len(dest):
        raise BufferOverflowError(
            f"Combined string too long: {dest_len} + {len(data)} >= {len(dest)}"
        )
    dest[dest_len : dest_len + len(data) + 1] = data + b"\0"


# --- Paths ---


def secure_path_join(directory: str | os.PathLike[str], name: str) -> str:
    """Join name onto directory, refusing anything that could escape it.

    Rejects a ``..`` segment, a leading separator, a doubled separator and
    an embedded NUL, plus any component or result longer than MAX_PATH.
    """
    if directory is None or name is None:
        raise NullArgumentError("None argument in path join")
    directory = os.fspath(directory)
    if not name:
        raise InvalidInputError("Empty path component")
    if "\0" in directory or "\0" in name:
        raise InvalidInputError(f"Path contains a NUL byte: {directory!r} + {name!r}")

    dir_len = len(directory.encode("utf-8"))
    name_len = len(name.encode("utf-8"))
    if dir_len > MAX_PATH or name_len > MAX_PATH:
        raise PathTooLongError(
            f"Path component too long: dir={dir_len}, name={name_len} (max={MAX_PATH})"
        )

    if name.startswith(SEP) or SEP * 2 in name or ".." in name.split(SEP):
        logger.debug(f"Blocked suspicious path component: {name!r}")
        raise PathTraversalError(f"Suspicious path component: {name!r}")

    needs_sep = bool(directory) and not directory.endswith(SEP)
    total = dir_len + name_len + (1 if needs_sep else 0) + 1
    if total > MAX_PATH:
        raise PathTooLongError(f"Combined path too long: {total} > {MAX_PATH}")

    buf = secure_alloc(total)
    secure_copy_into(buf, directory)
    if needs_sep:
        secure_append_into(buf, SEP)
    secure_append_into(buf, name)
    return c_string(buf)


def secure_read_file(path: str | os.PathLike[str], max_size: int = MAX_ALLOC) -> bytes:
    """Read a whole file, refusing anything larger than max_size bytes."""
    path_str = os.fspath(path) if path is not None else None
    ensure(validate_path(path_str), "path")
    if max_size > MAX_ALLOC:
        raise SizeLimitError(f"Max file size {max_size} exceeds limit {MAX_ALLOC}")

    try:
        with open(path_str, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            if size > max_size:
                raise SizeLimitError(f"File too large: {size} > {max_size}")
            data = f.read(size)
    except OSError as e:
        raise StorageIOError(f"Failed to read {path_str}: {e}") from e

    if len(data) != size:
        raise StorageIOError(f"Short read on {path_str}: {len(data)} != {size}")
    return data


def check_path_length(path: str | Path) -> None:
    """Raise PathTooLongError if path exceeds the platform ceiling."""
    length = len(os.fsencode(path))
    if length >= MAX_PATH:
        raise PathTooLongError(f"Path too long: {length} >= {MAX_PATH}")
