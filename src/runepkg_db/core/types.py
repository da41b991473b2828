"""Common type definitions for the package database.

Defines the package record shared by the hash index, the storage engine and
the prefix-search index.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from .defensive import (
    MAX_PATH,
    MAX_STRING,
    ensure,
    secure_string_dup,
    validate_file_count,
    validate_string,
)
from .errors import InvalidInputError

PackageName = str
Version = str
PackageKey = tuple[PackageName, Version]

# Fixed on-disk order of the string fields in info.bin.
PERSISTED_STRING_FIELDS: tuple[str, ...] = (
    "name",
    "version",
    "architecture",
    "maintainer",
    "description",
    "depends",
    "installed_size",
    "section",
    "priority",
    "homepage",
    "filename",
)

# Every owned string field, persisted or not.
RECORD_STRING_FIELDS: tuple[str, ...] = PERSISTED_STRING_FIELDS + (
    "control_dir_path",
    "data_dir_path",
)


@dataclass
class PackageRecord:
    """Metadata and file manifest of one installed package.

    Attributes:
        name: Unique package name (required, non-empty)
        version: Debian version string
        architecture: Target architecture, e.g. amd64
        maintainer: Maintainer field from the control file
        description: Description field from the control file
        depends: Raw dependency expression
        installed_size: Raw Installed-Size value
        section: Archive section
        priority: Package priority
        homepage: Upstream homepage
        filename: Source archive filename
        control_dir_path: Where the control archive was extracted
        data_dir_path: Where the data archive was extracted
        file_list: Installed file paths, in install order, or None

    Invariants:
        - None means "field absent"; "" is a present empty value
        - file_count always equals len(file_list), or 0 when it is None
    """

    name: PackageName
    version: Version | None = None
    architecture: str | None = None
    maintainer: str | None = None
    description: str | None = None
    depends: str | None = None
    installed_size: str | None = None
    section: str | None = None
    priority: str | None = None
    homepage: str | None = None
    filename: str | None = None
    control_dir_path: str | None = None
    data_dir_path: str | None = None
    file_list: list[str] | None = field(default=None)

    @property
    def file_count(self) -> int:
        return len(self.file_list) if self.file_list is not None else 0

    @property
    def key(self) -> PackageKey:
        return (self.name, self.version or "")

    def validate(self) -> None:
        """Check every owned field against the defensive ceilings."""
        ensure(validate_string(self.name, MAX_STRING - 1, "name"), "package name")
        if not self.name:
            raise InvalidInputError("Package name must not be empty")

        for name in RECORD_STRING_FIELDS:
            value = getattr(self, name)
            if value is not None:
                ensure(validate_string(value, MAX_STRING - 1, name), name)

        # name and version become a directory name
        for label, value in (("Package name", self.name), ("Version", self.version)):
            if value is not None and "\0" in value:
                raise InvalidInputError(f"{label} contains a NUL byte: {value!r}")

        if self.file_list is not None:
            ensure(validate_file_count(len(self.file_list)), "file count")
            for path in self.file_list:
                ensure(validate_string(path, MAX_PATH, "file path"), "file path")
                if "\n" in path or "\0" in path:
                    raise InvalidInputError(f"File path contains a newline or NUL: {path!r}")

    def clone(self) -> PackageRecord:
        """Return a deep copy that shares no mutable state with self.

        Used by every insert and update path; raises before building
        anything if a field fails validation.
        """
        self.validate()
        values = {name: _dup(getattr(self, name)) for name in RECORD_STRING_FIELDS}
        file_list = None
        if self.file_list is not None:
            file_list = [secure_string_dup(path) for path in self.file_list]
        return PackageRecord(file_list=file_list, **values)

    def to_dict(self) -> dict[str, object]:
        """Plain dict view, used for display and comparisons."""
        data: dict[str, object] = {f.name: getattr(self, f.name) for f in fields(self)}
        data["file_list"] = list(self.file_list) if self.file_list is not None else None
        return data


def _dup(value: str | None) -> str | None:
    return secure_string_dup(value) if value is not None else None
