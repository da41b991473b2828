"""Protocol definition for the in-memory package index."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ..core.types import PackageName, PackageRecord


class PackageIndex(Protocol):
    """Name-keyed cache of package records owned by the index."""

    def search(self, name: PackageName) -> PackageRecord | None:
        """Return the live record for name, or None if absent."""
        ...

    def insert_or_update(self, record: PackageRecord) -> None:
        """Store a deep copy of record, replacing any entry with its name."""
        ...

    def remove(self, name: PackageName) -> bool:
        """Drop name; False if it was not indexed."""
        ...

    def list(self) -> list[PackageName]:
        """Return all names in sorted order."""
        ...

    def records(self) -> Iterator[PackageRecord]:
        ...

    def destroy(self) -> None:
        """Release every record."""
        ...

    def __contains__(self, name: object) -> bool:
        ...

    def __len__(self) -> int:
        ...
