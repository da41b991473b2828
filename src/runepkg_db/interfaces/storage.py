"""Protocol definitions for persistent package storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pathlib import Path

    from ..core.types import PackageKey, PackageRecord


class RecordStore(Protocol):
    """Protocol for the per-package on-disk store."""

    db_root: Path

    def package_path(self, name: str, version: str) -> Path:
        """Directory that holds name/version."""
        ...

    def write(self, name: str, version: str, record: PackageRecord) -> Path:
        """Persist record atomically, replacing any previous copy."""
        ...

    def read(self, name: str, version: str) -> PackageRecord:
        """Load a complete record or raise."""
        ...

    def exists(self, name: str, version: str) -> bool:
        ...

    def remove(self, name: str, version: str) -> bool:
        """Delete the package directory; False if it was absent."""
        ...

    def list_installed(self) -> list[PackageKey]:
        """(name, version) of every readable package, sorted."""
        ...

    def find_versions(self, name: str) -> list[str]:
        ...

    def suggest(self, fragment: str, limit: int = 10) -> list[str]:
        ...
