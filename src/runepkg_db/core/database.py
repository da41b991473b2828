"""Package database - main public API.

Orchestrates the hash index, the storage engine and the prefix-search index.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ..components.hash_index import HashIndex
from ..components.prefix_index import PrefixIndex, format_columns
from ..components.storage import PackageStorage
from ..interfaces.index import PackageIndex
from ..interfaces.prefix_index import NameIndex
from ..interfaces.storage import RecordStore
from .config import DatabaseConfig
from .defensive import secure_path_join
from .errors import (
    AmbiguousPackageError,
    CorruptIndexError,
    InvalidInputError,
    PackageNotFoundError,
    RunepkgError,
    StorageIOError,
)
from .locking import database_lock
from .types import PackageKey, PackageRecord

logger = logging.getLogger(__name__)

# Status fields in display order; absent values print as (unknown)
STATUS_FIELDS: tuple[tuple[str, str], ...] = (
    ("Package", "name"),
    ("Version", "version"),
    ("Architecture", "architecture"),
    ("Maintainer", "maintainer"),
    ("Description", "description"),
    ("Depends", "depends"),
    ("Installed-Size", "installed_size"),
    ("Section", "section"),
    ("Priority", "priority"),
    ("Homepage", "homepage"),
)


class PackageDatabase:
    """Local database of installed packages.

    Args:
        config: Database configuration

    Public API:
        - install(record): Persist and cache a package record
        - get(package) / status(package): Look up an installed package
        - remove(package): Drop a package, optionally deleting its files
        - complete(prefix): Names for shell completion
        - list_installed() / list_columns(): Enumerate packages

    Invariants:
        - Storage is written before the hash index is updated
        - Mutations hold the database lock
        - The prefix index is rebuilt whenever it is stale or corrupt
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.db_root = Path(config.db_dir)
        self.storage: RecordStore = PackageStorage(self.db_root)
        self.index: PackageIndex = HashIndex(
            config.initial_table_capacity,
            grow_threshold=config.grow_load_factor,
            shrink_threshold=config.shrink_load_factor,
        )
        self.prefix_index: NameIndex = PrefixIndex(config.index_path, self.db_root)
        self._closed = False

        logger.info(f"Opened package database at {self.db_root}")

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidInputError("Package database is closed")

    def load(self) -> int:
        """Cache every readable persisted package in the hash index.

        Returns:
            Number of records loaded
        """
        self._check_open()
        loaded = 0
        for name, version in self.storage.list_installed():
            try:
                record = self.storage.read(name, version)
            except RunepkgError as e:
                logger.warning(f"Skipping {name}-{version} while loading: {e}")
                continue
            self.index.insert_or_update(record)
            loaded += 1
        logger.info(f"Loaded {loaded} packages into the hash index")
        return loaded

    def installed_version(self, name: str) -> str | None:
        """Version of name currently installed, or None."""
        cached = self.index.search(name)
        if cached is not None:
            return cached.version
        versions = self.storage.find_versions(name)
        return versions[-1] if versions else None

    def install(self, record: PackageRecord, force: bool = False) -> bool:
        """Record an installed package.

        An already installed name is left alone unless force is set, in which
        case the old version's metadata is removed first.

        Returns:
            True if the record was written, False if it was skipped
        """
        self._check_open()
        if record is None:
            raise InvalidInputError("Cannot install a None record")
        record.validate()
        if not record.version:
            raise InvalidInputError(f"Package {record.name} has no version")

        with database_lock(self.db_root):
            old_versions = self.storage.find_versions(record.name)
            if (old_versions or record.name in self.index) and not force:
                current = self.installed_version(record.name)
                logger.info(f"Package {record.name} is already installed ({current}), skipping")
                return False

            for old_version in old_versions:
                if old_version != record.version:
                    logger.info(
                        f"Upgrading {record.name} from {old_version} to {record.version}"
                    )
                    self.storage.remove(record.name, old_version)
            self.index.remove(record.name)

            self.storage.write(record.name, record.version, record)
            self.index.insert_or_update(record)
            self.prefix_index.invalidate()

        logger.info(f"Installed {record.name}-{record.version}")
        return True

    def resolve(self, package: str) -> PackageKey:
        """Map ``name`` or ``name-version`` to an installed (name, version).

        Raises:
            PackageNotFoundError: nothing matches
            AmbiguousPackageError: a bare name has several installed versions
        """
        self._check_open()
        if not package:
            raise InvalidInputError("Empty package name")

        installed = self.storage.list_installed()
        versions = [version for name, version in installed if name == package]
        if len(versions) == 1:
            return package, versions[0]
        if len(versions) > 1:
            choices = ", ".join(f"{package}-{v}" for v in versions)
            raise AmbiguousPackageError(f"Multiple versions of {package} installed: {choices}")

        for name, version in installed:
            if f"{name}-{version}" == package:
                return name, version

        message = f"Package {package} is not installed"
        suggestions = self.storage.suggest(package)
        if suggestions:
            message += f" (did you mean: {', '.join(suggestions)}?)"
        raise PackageNotFoundError(message)

    def get(self, package: str) -> PackageRecord:
        """Return the record for package, from the cache or from disk.

        The returned record is owned by the database; do not modify it.
        """
        self._check_open()
        cached = self.index.search(package)
        if cached is not None:
            return cached

        name, version = self.resolve(package)
        cached = self.index.search(name)
        if cached is not None and cached.version == version:
            return cached

        record = self.storage.read(name, version)
        self.index.insert_or_update(record)
        return self.index.search(name)

    def status(self, package: str) -> PackageRecord:
        return self.get(package)

    def list_files(self, package: str) -> list[str]:
        record = self.get(package)
        return list(record.file_list) if record.file_list is not None else []

    def list_installed(self) -> list[PackageKey]:
        self._check_open()
        return self.storage.list_installed()

    def remove(self, package: str, delete_files: bool = False) -> PackageRecord:
        """Remove an installed package.

        Args:
            package: ``name`` or ``name-version``
            delete_files: Also unlink the package's files under
                system_install_root

        Returns:
            The removed record
        """
        self._check_open()
        with database_lock(self.db_root):
            name, version = self.resolve(package)
            record = self.storage.read(name, version)

            if delete_files and record.file_list:
                self._delete_installed_files(record)

            self.storage.remove(name, version)
            self.index.remove(name)
            self.prefix_index.invalidate()

        logger.info(f"Removed {name}-{version}")
        return record

    def _delete_installed_files(self, record: PackageRecord) -> int:
        root = self.config.system_install_root
        removed = 0
        for path in record.file_list or []:
            rel = path.lstrip("/")
            if not rel:
                continue
            try:
                target = secure_path_join(root, rel)
            except RunepkgError as e:
                logger.warning(f"Not removing {path!r}: {e}")
                continue

            if os.path.isdir(target) and not os.path.islink(target):
                logger.debug(f"Leaving directory {target} in place")
                continue
            try:
                os.unlink(target)
                removed += 1
            except FileNotFoundError:
                logger.debug(f"Already gone: {target}")
            except OSError as e:
                raise StorageIOError(f"Failed to remove {target}: {e}") from e

        logger.info(f"Deleted {removed} files of {record.name} under {root}")
        return removed

    def rebuild_index(self) -> Path:
        self._check_open()
        with database_lock(self.db_root):
            return self.prefix_index.build()

    def _ensure_index(self) -> None:
        if self.prefix_index.is_stale():
            logger.debug("Prefix index is stale, rebuilding")
            self.rebuild_index()

    def complete(self, prefix: str) -> list[str]:
        """Installed package names starting with prefix, sorted."""
        self._check_open()
        self._ensure_index()
        try:
            return list(self.prefix_index.search_prefix(prefix))
        except (CorruptIndexError, StorageIOError) as e:
            logger.warning(f"Prefix index unusable ({e}), rebuilding")
            self.rebuild_index()
            return list(self.prefix_index.search_prefix(prefix))

    def list_columns(self, width: int | None = None) -> str:
        return format_columns(self.complete(""), width)

    def suggest(self, fragment: str) -> list[str]:
        self._check_open()
        return self.storage.suggest(fragment)

    @staticmethod
    def format_record(record: PackageRecord) -> str:
        """Status text for a package, one ``Field: value`` per line."""
        lines = []
        for label, attr in STATUS_FIELDS:
            value = getattr(record, attr)
            if value is None:
                value = "(none)" if attr == "depends" else "(unknown)"
            lines.append(f"{label}: {value}")
        lines.append(f"Files installed: {record.file_count}")
        return "\n".join(lines)

    def close(self) -> None:
        """Drop the in-memory cache."""
        if self._closed:
            return
        self.index.destroy()
        self._closed = True
        logger.info(f"Closed package database at {self.db_root}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
