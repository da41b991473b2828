"""Unit tests for the defensive allocation, string and path helpers."""

import shutil
import tempfile
from pathlib import Path

import pytest

from runepkg_db.core.defensive import (
    MAX_ALLOC,
    MAX_PATH,
    MAX_STRING,
    SIZE_MAX,
    c_string,
    ensure,
    secure_alloc,
    secure_alloc_array,
    secure_append_into,
    secure_copy_into,
    secure_free,
    secure_path_join,
    secure_read_file,
    secure_realloc,
    secure_string_dup,
    secure_string_dup_n,
    validate_file_count,
    validate_path,
    validate_pointer,
    validate_size,
    validate_string,
)
from runepkg_db.core.errors import (
    BufferOverflowError,
    ErrorCode,
    InvalidInputError,
    InvalidSizeError,
    NullArgumentError,
    PathTooLongError,
    PathTraversalError,
    SizeLimitError,
    StorageIOError,
    error_string,
    exception_for,
)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


def test_alloc_returns_zeroed_buffer():
    buf = secure_alloc(16)
    assert len(buf) == 16
    assert buf == bytearray(16)


@pytest.mark.parametrize("size", [0, -1])
def test_alloc_rejects_non_positive_sizes(size):
    with pytest.raises(InvalidSizeError):
        secure_alloc(size)


def test_alloc_rejects_sizes_above_ceiling():
    with pytest.raises(SizeLimitError):
        secure_alloc(MAX_ALLOC + 1)


def test_alloc_array_detects_overflow_before_multiplying():
    with pytest.raises(InvalidSizeError):
        secure_alloc_array(SIZE_MAX, 2)


def test_alloc_array_applies_ceiling():
    assert len(secure_alloc_array(4, 8)) == 32
    with pytest.raises(SizeLimitError):
        secure_alloc_array(MAX_ALLOC, 2)


def test_realloc_preserves_prefix_and_zero_fills():
    buf = bytearray(b"abcd")
    grown = secure_realloc(buf, 8)
    assert grown == bytearray(b"abcd\0\0\0\0")

    shrunk = secure_realloc(buf, 2)
    assert shrunk == bytearray(b"ab")


def test_realloc_failure_leaves_original_untouched():
    buf = bytearray(b"keep")
    with pytest.raises(SizeLimitError):
        secure_realloc(buf, MAX_ALLOC + 1)
    assert buf == bytearray(b"keep")


def test_free_wipes_buffer_and_returns_none():
    buf = bytearray(b"secret")
    handle = buf
    handle = secure_free(handle, len(buf))
    assert handle is None
    assert buf == bytearray(6)
    assert secure_free(None) is None


def test_string_dup_limits():
    assert secure_string_dup("vim") == "vim"
    with pytest.raises(NullArgumentError):
        secure_string_dup(None)
    with pytest.raises(SizeLimitError):
        secure_string_dup("x" * MAX_STRING)


def test_string_dup_n_truncates_to_max_len():
    assert secure_string_dup_n("hello", 3) == "hel"
    assert secure_string_dup_n("hi", 10) == "hi"
    with pytest.raises(SizeLimitError):
        secure_string_dup_n("hello", MAX_STRING + 1)
    with pytest.raises(NullArgumentError):
        secure_string_dup_n(None, 3)


def test_string_limits_count_utf8_bytes():
    assert validate_string("\u00e9" * 5, max_len=10) is ErrorCode.SUCCESS
    assert validate_string("\u00e9" * 6, max_len=10) is ErrorCode.SIZE_LIMIT
    assert validate_string("\ud800") is ErrorCode.INVALID_INPUT
    assert validate_path("\u00e9" * (MAX_PATH // 2 + 1)) is ErrorCode.SIZE_LIMIT

    assert secure_string_dup("\u00e9" * (MAX_STRING // 2 - 1)) == "\u00e9" * (MAX_STRING // 2 - 1)
    with pytest.raises(SizeLimitError):
        secure_string_dup("\u00e9" * (MAX_STRING // 2))
    with pytest.raises(InvalidInputError):
        secure_string_dup("\ud800")


def test_string_dup_n_never_splits_a_character():
    assert secure_string_dup_n("h\u00e9llo", 2) == "h"
    assert secure_string_dup_n("h\u00e9llo", 3) == "h\u00e9"


def test_copy_into_refuses_to_truncate():
    dest = bytearray(4)
    secure_copy_into(dest, "abc")
    assert c_string(dest) == "abc"

    with pytest.raises(BufferOverflowError):
        secure_copy_into(bytearray(4), "abcd")


def test_append_into_concatenates_within_capacity():
    dest = bytearray(8)
    secure_copy_into(dest, "ab")
    secure_append_into(dest, "cd")
    assert c_string(dest) == "abcd"

    with pytest.raises(BufferOverflowError):
        secure_append_into(dest, "efgh")
    # Failed append leaves the previous content intact
    assert c_string(dest) == "abcd"


def test_path_join_basic():
    assert secure_path_join("/home/user", "doc.txt") == "/home/user/doc.txt"
    assert secure_path_join("/home/user/", "doc.txt") == "/home/user/doc.txt"
    assert secure_path_join("/db", "vim-9.0") == "/db/vim-9.0"


@pytest.mark.parametrize(
    "name",
    ["..", "../etc/passwd", "a/../b", "/etc/passwd", "a//b"],
)
def test_path_join_rejects_traversal(name):
    with pytest.raises(PathTraversalError):
        secure_path_join("/db", name)


@pytest.mark.parametrize("name", ["../../etc/passwd", "/etc/passwd", "//etc/passwd"])
def test_path_join_cannot_escape_safe_dir(name):
    with pytest.raises(PathTraversalError):
        secure_path_join("/safe/dir", name)


def test_path_join_allows_dots_inside_names():
    assert secure_path_join("/db", "..hidden") == "/db/..hidden"
    assert secure_path_join("/db", "pkg-1.0..rc1") == "/db/pkg-1.0..rc1"


def test_path_join_rejects_empty_and_none():
    with pytest.raises(NullArgumentError):
        secure_path_join(None, "x")
    with pytest.raises(NullArgumentError):
        secure_path_join("/db", None)


@pytest.mark.parametrize("name", ["vim\0-evil-1.0", "\0", "pkg\0/../../etc"])
def test_path_join_rejects_embedded_nul(name):
    with pytest.raises(InvalidInputError):
        secure_path_join("/safe/dir", name)
    with pytest.raises(InvalidInputError):
        secure_path_join("/safe\0/dir", "vim")


def test_path_join_length_limits():
    with pytest.raises(PathTooLongError):
        secure_path_join("/db", "a" * (MAX_PATH + 1))
    with pytest.raises(PathTooLongError):
        secure_path_join("/" + "d" * 4000, "n" * 200)


def test_validators_return_codes():
    assert validate_pointer(None) is ErrorCode.NULL_ARGUMENT
    assert validate_pointer("x") is ErrorCode.SUCCESS
    assert validate_string("x" * 11, max_len=10) is ErrorCode.SIZE_LIMIT
    assert validate_string(42) is ErrorCode.INVALID_INPUT
    assert validate_size(-1, 10) is ErrorCode.INVALID_SIZE
    assert validate_size(11, 10) is ErrorCode.SIZE_LIMIT
    assert validate_size(10, 10) is ErrorCode.SUCCESS
    assert validate_file_count(-1) is ErrorCode.INVALID_INPUT
    assert validate_file_count(100_001) is ErrorCode.SIZE_LIMIT
    assert validate_path("a/../b") is ErrorCode.INVALID_INPUT
    assert validate_path("a/b") is ErrorCode.SUCCESS
    assert validate_path("a\0b") is ErrorCode.INVALID_INPUT


def test_ensure_raises_matching_exception():
    ensure(ErrorCode.SUCCESS, "nothing")
    with pytest.raises(SizeLimitError):
        ensure(ErrorCode.SIZE_LIMIT, "value")
    assert exception_for(ErrorCode.IO_FAILURE) is StorageIOError
    with pytest.raises(ValueError):
        exception_for(ErrorCode.SUCCESS)


def test_error_strings():
    assert error_string(ErrorCode.SUCCESS) == "Success"
    assert error_string(ErrorCode.IO_FAILURE) == "I/O error"
    assert error_string(ErrorCode.CORRUPT_FORMAT) == "Corrupt data format error"


def test_read_file_respects_max_size(temp_dir):
    path = temp_dir / "data.bin"
    path.write_bytes(b"x" * 100)

    assert secure_read_file(path) == b"x" * 100
    with pytest.raises(SizeLimitError):
        secure_read_file(path, max_size=10)


def test_read_file_missing_raises_io_error(temp_dir):
    with pytest.raises(StorageIOError):
        secure_read_file(temp_dir / "missing.bin")
