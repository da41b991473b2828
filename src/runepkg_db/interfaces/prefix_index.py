"""Protocol definition for the prefix-search index."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path


class NameIndex(Protocol):
    """Sorted on-disk list of installed package names."""

    index_path: Path

    def build(self) -> Path:
        """Rebuild from the persisted packages and replace the file atomically."""
        ...

    def is_stale(self) -> bool:
        """True if the index is absent or older than the database."""
        ...

    def invalidate(self) -> None:
        ...

    def search_prefix(self, prefix: str) -> Iterable[str]:
        """Names starting with prefix, in sorted order."""
        ...

    def verify(self) -> int:
        ...
