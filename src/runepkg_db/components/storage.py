"""Persistent per-package storage.

Each installed package lives in ``{db_root}/{name}-{version}/`` as a
length-prefixed binary metadata file plus a plain-text file manifest.
"""

from __future__ import annotations

import logging
import os
import shutil
import struct
from pathlib import Path
from typing import BinaryIO

from ..core.defensive import (
    MAX_STRING,
    SEP,
    check_path_length,
    ensure,
    secure_path_join,
    secure_read_file,
    validate_file_count,
    validate_string,
)
from ..core.errors import (
    CorruptRecordError,
    ErrorCode,
    InvalidInputError,
    PackageNotFoundError,
    StorageIOError,
)
from ..core.types import PERSISTED_STRING_FIELDS, PackageKey, PackageRecord

logger = logging.getLogger(__name__)

# info.bin format:
#   for each field in PERSISTED_STRING_FIELDS: [len (8B, LE)][utf-8 bytes + NUL]
#   len == 0 means the field is absent; an empty string is stored as len == 1
#   [file_count (4B, signed LE)]
# files.list: one path per line, present only when the record has a file list
INFO_FILE = "info.bin"
FILES_FILE = "files.list"
TMP_SUFFIX = ".tmp"

_LEN = struct.Struct("<Q")
_COUNT = struct.Struct("<i")


def encode_record(record: PackageRecord) -> bytes:
    """Serialize the persisted fields of record into the info.bin layout."""
    parts: list[bytes] = []
    for name in PERSISTED_STRING_FIELDS:
        value = getattr(record, name)
        if value is None:
            parts.append(_LEN.pack(0))
        else:
            data = value.encode("utf-8") + b"\0"
            parts.append(_LEN.pack(len(data)))
            parts.append(data)
    parts.append(_COUNT.pack(record.file_count))
    return b"".join(parts)


def encode_file_list(file_list: list[str]) -> bytes:
    return "".join(f"{path}\n" for path in file_list).encode("utf-8")


def _read_exact(f: BinaryIO, size: int, what: str) -> bytes:
    data = f.read(size)
    if len(data) < size:
        raise CorruptRecordError(f"Short read on {what}: got {len(data)} of {size} bytes")
    return data


def _read_string_field(f: BinaryIO, field_name: str) -> str | None:
    (length,) = _LEN.unpack(_read_exact(f, _LEN.size, f"{field_name} length"))
    if length == 0:
        return None
    if length > MAX_STRING:
        raise CorruptRecordError(f"Field {field_name} length {length} exceeds {MAX_STRING}")
    data = _read_exact(f, length, field_name)
    if data[-1] != 0:
        raise CorruptRecordError(f"Field {field_name} is not NUL-terminated")
    try:
        return data[:-1].decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptRecordError(f"Field {field_name} is not valid UTF-8") from e


def decode_fields(f: BinaryIO, limit: int | None = None) -> dict[str, str | None]:
    """Read the leading string fields of an info.bin stream.

    Args:
        f: Binary stream positioned at the start of info.bin
        limit: Read only this many fields (None = all of them)
    """
    names = PERSISTED_STRING_FIELDS if limit is None else PERSISTED_STRING_FIELDS[:limit]
    return {name: _read_string_field(f, name) for name in names}


def decode_file_list(data: bytes) -> list[str]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptRecordError(f"{FILES_FILE} is not valid UTF-8") from e
    if not text:
        return []
    if not text.endswith("\n"):
        raise CorruptRecordError(f"{FILES_FILE} is not newline-terminated")
    return text[:-1].split("\n")


def _write_atomic(path: Path, data: bytes) -> None:
    """Write data next to path and rename it into place."""
    temp_path = path.with_name(path.name + TMP_SUFFIX)
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise StorageIOError(f"Failed to write {path}: {e}") from e


class PackageStorage:
    """Filesystem-backed store of package records.

    Args:
        db_root: Database directory holding one subdirectory per package

    Invariants:
        - info.bin is authoritative: a package exists iff its info.bin does
        - Files are replaced via write-temp-then-rename, never edited in place
        - A read either returns a complete record or raises
    """

    def __init__(self, db_root: str | Path):
        if db_root is None:
            raise InvalidInputError("Database root is not configured")
        # resolved so that paths built from it never carry a ".." segment
        self.db_root = Path(db_root).resolve()
        check_path_length(self.db_root)

    def package_path(self, name: str, version: str) -> Path:
        """Return ``{db_root}/{name}-{version}``."""
        for value, label in ((name, "package name"), (version, "package version")):
            ensure(validate_string(value, MAX_STRING - 1, label), label)
            if not value:
                raise InvalidInputError(f"Empty {label}")
            if SEP in value:
                raise InvalidInputError(f"{label.capitalize()} contains a path separator: {value!r}")

        path = Path(secure_path_join(self.db_root, f"{name}-{version}"))
        check_path_length(path / (FILES_FILE + TMP_SUFFIX))
        return path

    def exists(self, name: str, version: str) -> bool:
        return (self.package_path(name, version) / INFO_FILE).is_file()

    def write(self, name: str, version: str, record: PackageRecord) -> Path:
        """Persist record under name/version, replacing any previous copy.

        Returns:
            The package directory
        """
        if record is None:
            raise InvalidInputError("Cannot write a None record")
        record.validate()
        if record.name != name or (record.version or "") != version:
            raise InvalidInputError(
                f"Record {record.name}-{record.version} does not match {name}-{version}"
            )
        pkg_dir = self.package_path(name, version)

        logger.debug(f"Writing package info to {pkg_dir}")
        try:
            pkg_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create package directory {pkg_dir}: {e}") from e

        # files.list goes first so that info.bin never points at a missing manifest
        files_path = pkg_dir / FILES_FILE
        if record.file_list is not None:
            _write_atomic(files_path, encode_file_list(record.file_list))
        else:
            try:
                files_path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageIOError(f"Failed to remove stale {files_path}: {e}") from e

        _write_atomic(pkg_dir / INFO_FILE, encode_record(record))
        logger.info(f"Stored package {name}-{version} ({record.file_count} files)")
        return pkg_dir

    def read(self, name: str, version: str) -> PackageRecord:
        """Load the record stored under name/version.

        Raises:
            PackageNotFoundError: no info.bin for this package
            CorruptRecordError: the files do not match the binary layout
            StorageIOError: the files could not be read
        """
        pkg_dir = self.package_path(name, version)
        info_path = pkg_dir / INFO_FILE
        logger.debug(f"Reading package info from {info_path}")

        try:
            f = open(info_path, "rb")
        except FileNotFoundError as e:
            raise PackageNotFoundError(f"Package not installed: {name}-{version}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to open {info_path}: {e}") from e

        try:
            with f:
                values = decode_fields(f)
                (file_count,) = _COUNT.unpack(_read_exact(f, _COUNT.size, "file count"))
                if f.read(1):
                    raise CorruptRecordError(f"Trailing data after file count in {info_path}")
        except OSError as e:
            raise StorageIOError(f"Failed to read {info_path}: {e}") from e

        if validate_file_count(file_count) is not ErrorCode.SUCCESS:
            raise CorruptRecordError(f"Invalid file count {file_count} in {info_path}")
        if not values["name"]:
            raise CorruptRecordError(f"Missing package name in {info_path}")
        if values["name"] != name or (values["version"] or "") != version:
            raise CorruptRecordError(
                f"{info_path} holds {values['name']}-{values['version']}, expected {name}-{version}"
            )

        file_list = self._read_file_list(pkg_dir / FILES_FILE, file_count)
        return PackageRecord(file_list=file_list, **values)

    def _read_file_list(self, path: Path, file_count: int) -> list[str] | None:
        if not path.exists():
            if file_count != 0:
                raise CorruptRecordError(f"{path} is missing but {file_count} files are recorded")
            return None

        data = secure_read_file(path)
        file_list = decode_file_list(data)
        if len(file_list) != file_count:
            raise CorruptRecordError(
                f"{path} lists {len(file_list)} files but {file_count} are recorded"
            )
        return file_list

    def remove(self, name: str, version: str) -> bool:
        """Delete the package directory. Returns False if it did not exist."""
        pkg_dir = self.package_path(name, version)
        if not pkg_dir.exists():
            return False

        logger.debug(f"Removing package directory {pkg_dir}")
        try:
            shutil.rmtree(pkg_dir)
        except OSError as e:
            raise StorageIOError(f"Failed to remove {pkg_dir}: {e}") from e
        logger.info(f"Removed package {name}-{version} from storage")
        return True

    def _package_dirs(self) -> list[Path]:
        if not self.db_root.is_dir():
            return []
        try:
            entries = sorted(self.db_root.iterdir())
        except OSError as e:
            raise StorageIOError(f"Cannot open database directory {self.db_root}: {e}") from e
        return [p for p in entries if p.is_dir()]

    def read_key(self, pkg_dir: Path) -> PackageKey:
        """Return (name, version) from the header of a package directory."""
        info_path = pkg_dir / INFO_FILE
        try:
            with open(info_path, "rb") as f:
                values = decode_fields(f, limit=2)
        except FileNotFoundError as e:
            raise PackageNotFoundError(f"No {INFO_FILE} in {pkg_dir}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to read {info_path}: {e}") from e
        if not values["name"]:
            raise CorruptRecordError(f"Missing package name in {info_path}")
        key = values["name"], values["version"] or ""
        if pkg_dir.name != f"{key[0]}-{key[1]}":
            raise CorruptRecordError(f"{info_path} holds {key[0]}-{key[1]}, not {pkg_dir.name}")
        return key

    def list_installed(self) -> list[PackageKey]:
        """Return (name, version) for every readable package, sorted."""
        keys: list[PackageKey] = []
        for pkg_dir in self._package_dirs():
            try:
                keys.append(self.read_key(pkg_dir))
            except PackageNotFoundError:
                logger.debug(f"Skipping {pkg_dir}: no {INFO_FILE}")
            except (CorruptRecordError, StorageIOError) as e:
                logger.warning(f"Skipping unreadable package directory {pkg_dir}: {e}")
        return sorted(keys)

    def find_versions(self, name: str) -> list[str]:
        """Return the installed versions of name."""
        return [version for pkg_name, version in self.list_installed() if pkg_name == name]

    def suggest(self, fragment: str, limit: int = 10) -> list[str]:
        """Return package directory names containing fragment."""
        if not fragment:
            return []
        matches = [p.name for p in self._package_dirs() if fragment in p.name]
        return matches[:limit]
