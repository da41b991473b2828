"""Prefix-search index over installed package names.

A sorted, memory-mapped name list used for shell completion and listing.
"""

from __future__ import annotations

import logging
import math
import mmap
import os
import shutil
import struct
from collections.abc import Iterator
from pathlib import Path

from sortedcontainers import SortedList

from ..core.defensive import check_path_length
from ..core.errors import CorruptIndexError, SizeLimitError, StorageIOError
from .storage import PackageStorage

logger = logging.getLogger(__name__)

# Index file format (all integers little-endian):
#   [magic (4B)][count (4B)]
#   [offset (4B)] * count      offsets into the blob, in name order
#   [name\0] * count           the blob
INDEX_MAGIC = 0x52554E45  # "RUNE"
INDEX_FILENAME = "runepkg_autocomplete.bin"
DEFAULT_TERMINAL_WIDTH = 80

_HEADER = struct.Struct("<II")
_OFFSET = struct.Struct("<I")
_U32_MAX = 0xFFFFFFFF


def encode_index(names: list[str]) -> bytes:
    """Serialize already sorted, unique names into the index layout."""
    offsets: list[bytes] = []
    blob: list[bytes] = []
    position = 0
    for name in names:
        data = name.encode("utf-8") + b"\0"
        offsets.append(_OFFSET.pack(position))
        blob.append(data)
        position += len(data)
    if position > _U32_MAX:
        raise SizeLimitError(f"Name blob of {position} bytes does not fit 32-bit offsets")
    return _HEADER.pack(INDEX_MAGIC, len(names)) + b"".join(offsets) + b"".join(blob)


class IndexView:
    """Bounds-checked reader over an index buffer.

    Args:
        buf: The whole index file (bytes or a read-only mmap)

    Invariants:
        - Every access is checked against len(buf); a bad offset raises
          CorruptIndexError, never IndexError
    """

    def __init__(self, buf: bytes | mmap.mmap):
        self._buf = buf
        size = len(buf)
        if size < _HEADER.size:
            raise CorruptIndexError(f"Index truncated: {size} bytes is smaller than the header")

        magic, count = _HEADER.unpack_from(buf, 0)
        if magic != INDEX_MAGIC:
            raise CorruptIndexError(f"Bad index magic: {magic:#010x}")

        self.count = count
        self._blob_start = _HEADER.size + count * _OFFSET.size
        if self._blob_start > size:
            raise CorruptIndexError(f"Offset table for {count} entries overruns {size} byte index")

    def __len__(self) -> int:
        return self.count

    def name_at(self, i: int) -> str:
        if not 0 <= i < self.count:
            raise IndexError(f"Index entry {i} out of range")
        (offset,) = _OFFSET.unpack_from(self._buf, _HEADER.size + i * _OFFSET.size)
        start = self._blob_start + offset
        if start >= len(self._buf):
            raise CorruptIndexError(f"Entry {i} offset {offset} is past the end of the index")
        end = self._buf.find(b"\0", start)
        if end < 0:
            raise CorruptIndexError(f"Entry {i} is not NUL-terminated")
        try:
            return self._buf[start:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptIndexError(f"Entry {i} is not valid UTF-8") from e

    def lower_bound(self, prefix: str) -> int:
        """Index of the first name >= prefix."""
        lo, hi = 0, self.count
        while lo < hi:
            mid = (lo + hi) // 2
            if self.name_at(mid) < prefix:
                lo = mid + 1
            else:
                hi = mid
        return lo

    def __iter__(self) -> Iterator[str]:
        for i in range(self.count):
            yield self.name_at(i)


class PrefixMatches:
    """Lazy, restartable sequence of names starting with a prefix.

    Each iteration maps the index file afresh, so a rebuilt index is picked
    up by the next pass.
    """

    def __init__(self, index_path: Path, prefix: str):
        self.index_path = index_path
        self.prefix = prefix

    def __iter__(self) -> Iterator[str]:
        try:
            f = open(self.index_path, "rb")
        except OSError as e:
            raise StorageIOError(f"Failed to open index {self.index_path}: {e}") from e

        with f:
            if os.fstat(f.fileno()).st_size == 0:
                raise CorruptIndexError(f"Index {self.index_path} is empty")
            with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
                view = IndexView(mm)
                for i in range(view.lower_bound(self.prefix), view.count):
                    name = view.name_at(i)
                    if not name.startswith(self.prefix):
                        break
                    yield name


class PrefixIndex:
    """On-disk sorted name list for a package database.

    Args:
        index_path: Location of the index file
        db_root: Database directory the index describes

    Invariants:
        - Names are unique and strictly ascending (code point order)
        - The file is replaced atomically; readers never see a partial index
        - build() is deterministic for an unchanged database
    """

    def __init__(self, index_path: str | Path, db_root: str | Path):
        self.index_path = Path(index_path)
        self.db_root = Path(db_root)
        check_path_length(self.index_path)
        self._storage = PackageStorage(self.db_root)

    def build(self) -> Path:
        """Rebuild the index from the packages persisted under db_root."""
        names = SortedList(set(name for name, _ in self._storage.list_installed()))
        data = encode_index(list(names))

        temp_path = self.index_path.with_name(self.index_path.name + ".tmp")
        try:
            self.index_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.index_path)
            # The rename touches db_root when the index lives there
            os.utime(self.index_path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StorageIOError(f"Failed to write index {self.index_path}: {e}") from e

        logger.info(f"Built prefix index with {len(names)} packages at {self.index_path}")
        return self.index_path

    def invalidate(self) -> None:
        """Delete the index so the next reader rebuilds it."""
        try:
            self.index_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to remove index {self.index_path}: {e}") from e
        logger.debug(f"Invalidated prefix index {self.index_path}")

    def is_stale(self) -> bool:
        """True when the index is absent or older than the database directory."""
        try:
            index_mtime = self.index_path.stat().st_mtime_ns
        except FileNotFoundError:
            return True
        except OSError as e:
            raise StorageIOError(f"Cannot stat index {self.index_path}: {e}") from e

        try:
            db_mtime = self.db_root.stat().st_mtime_ns
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIOError(f"Cannot stat database directory {self.db_root}: {e}") from e
        return index_mtime < db_mtime

    def search_prefix(self, prefix: str) -> PrefixMatches:
        """Return the names starting with prefix, in sorted order.

        An empty prefix matches every name.
        """
        if prefix is None:
            prefix = ""
        return PrefixMatches(self.index_path, prefix)

    def names(self) -> list[str]:
        return list(self.search_prefix(""))

    def verify(self) -> int:
        """Check the whole file; returns the entry count.

        Raises:
            CorruptIndexError: a bad entry, or names out of order
        """
        try:
            data = self.index_path.read_bytes()
        except OSError as e:
            raise StorageIOError(f"Failed to read index {self.index_path}: {e}") from e

        view = IndexView(data)
        previous = None
        for name in view:
            if previous is not None and name <= previous:
                raise CorruptIndexError(f"Index not sorted: {previous!r} >= {name!r}")
            previous = name
        return view.count

    def format_columns(self, width: int | None = None) -> str:
        return format_columns(self.names(), width)


def format_columns(names: list[str], width: int | None = None) -> str:
    """Lay names out in row-major columns that fit width characters.

    Column width is the longest name plus two spaces. Width defaults to the
    terminal size, or 80 when that cannot be determined.
    """
    if not names:
        return ""
    if width is None or width <= 0:
        width = shutil.get_terminal_size((DEFAULT_TERMINAL_WIDTH, 24)).columns

    col_width = max(len(name) for name in names) + 2
    cols = max(1, width // col_width)
    rows = math.ceil(len(names) / cols)

    lines = []
    for row in range(rows):
        cells = names[row * cols : (row + 1) * cols]
        lines.append("".join(name.ljust(col_width) for name in cells).rstrip())
    return "\n".join(lines) + "\n"
