"""runepkg-db - installed-package database for the runepkg package manager."""

from .core.config import DatabaseConfig, load_config
from .core.database import PackageDatabase
from .core.errors import (
    AmbiguousPackageError,
    CorruptFormatError,
    CorruptIndexError,
    CorruptRecordError,
    ErrorCode,
    PackageNotFoundError,
    RunepkgError,
    StorageIOError,
)
from .core.types import PackageKey, PackageName, PackageRecord, Version

__all__ = [
    "DatabaseConfig",
    "load_config",
    "PackageDatabase",
    "AmbiguousPackageError",
    "CorruptFormatError",
    "CorruptIndexError",
    "CorruptRecordError",
    "ErrorCode",
    "PackageNotFoundError",
    "RunepkgError",
    "StorageIOError",
    "PackageKey",
    "PackageName",
    "PackageRecord",
    "Version",
]
