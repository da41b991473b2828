"""Integration tests for the package database.

Tests cover the full flow from record to completion:
1. Install and lookup through cache and disk
2. Prefix completion and listing
3. Removal, including installed files
4. Recovery from a stale or corrupt prefix index
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from runepkg_db import DatabaseConfig, PackageDatabase, PackageRecord
from runepkg_db.components.hash_index import HashIndex
from runepkg_db.components.prefix_index import PrefixIndex
from runepkg_db.components.storage import PackageStorage
from runepkg_db.core.errors import (
    AmbiguousPackageError,
    InvalidInputError,
    PackageNotFoundError,
)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def config(temp_dir):
    config = DatabaseConfig.defaults(temp_dir)
    config.ensure_dirs()
    return config


@pytest.fixture
def db(config):
    """Create package database for tests."""
    db = PackageDatabase(config)
    yield db
    db.close()


def make_record(name, version, files=None, **extra):
    return PackageRecord(name=name, version=version, file_list=files, **extra)


def test_components_end_to_end(config):
    """Index, persist and prefix-search without the facade."""
    index = HashIndex()
    storage = PackageStorage(config.db_dir)
    for name, version in [("vim", "8.2"), ("git", "2.34"), ("grep", "3.7")]:
        index.insert_or_update(make_record(name, version))

    for record in index.records():
        storage.write(record.name, record.version, record)

    prefix_index = PrefixIndex(config.index_path, config.db_dir)
    prefix_index.build()

    assert list(prefix_index.search_prefix("gi")) == ["git"]
    assert list(prefix_index.search_prefix("g")) == ["git", "grep"]
    for name in ["vim", "git", "grep"]:
        stored = storage.read(name, index.search(name).version)
        assert stored.to_dict() == index.search(name).to_dict()


def test_install_and_complete(db):
    """Three packages installed, completion by prefix."""
    assert db.install(make_record("vim", "8.2", ["/usr/bin/vim"]))
    assert db.install(make_record("git", "2.34", ["/usr/bin/git"]))
    assert db.install(make_record("grep", "3.7", ["/bin/grep"]))

    assert db.complete("gi") == ["git"]
    assert db.complete("g") == ["git", "grep"]
    assert db.complete("") == ["git", "grep", "vim"]
    assert db.complete("emacs") == []


def test_completion_follows_install_and_remove(db):
    db.install(make_record("git", "2.39"))
    assert db.complete("g") == ["git"]

    db.install(make_record("grep", "3.8"))
    assert db.complete("g") == ["git", "grep"]

    db.remove("git")
    assert db.complete("g") == ["grep"]


def test_get_from_cache_and_from_disk(config, db):
    record = make_record("vim", "9.0", ["/usr/bin/vim"], description="Vi IMproved")
    db.install(record)
    assert db.get("vim").description == "Vi IMproved"

    # A second database over the same directory only has the disk copy
    with PackageDatabase(config) as other:
        assert "vim" not in other.index
        loaded = other.get("vim-9.0")
        assert loaded.to_dict() == record.to_dict()
        assert "vim" in other.index


def test_load_populates_hash_index(config, db):
    for name in ["vim", "git", "grep"]:
        db.install(make_record(name, "1.0"))

    with PackageDatabase(config) as other:
        assert other.load() == 3
        assert other.index.list() == ["git", "grep", "vim"]


def test_install_skips_already_installed(db):
    assert db.install(make_record("vim", "9.0", ["/usr/bin/vim"]))
    assert not db.install(make_record("vim", "9.1"))

    assert db.get("vim").version == "9.0"
    assert db.storage.find_versions("vim") == ["9.0"]


def test_forced_install_upgrades(db):
    db.install(make_record("vim", "9.0", ["/usr/bin/vim"]))
    assert db.install(make_record("vim", "9.1", ["/usr/bin/vim", "/usr/bin/vimdiff"]), force=True)

    assert db.storage.find_versions("vim") == ["9.1"]
    assert db.get("vim").version == "9.1"
    assert db.list_files("vim") == ["/usr/bin/vim", "/usr/bin/vimdiff"]


def test_install_requires_version(db):
    with pytest.raises(InvalidInputError):
        db.install(make_record("vim", None))
    with pytest.raises(InvalidInputError):
        db.install(None)


def test_resolve(db):
    db.install(make_record("lib-foo", "1.0-2"))

    assert db.resolve("lib-foo") == ("lib-foo", "1.0-2")
    assert db.resolve("lib-foo-1.0-2") == ("lib-foo", "1.0-2")

    with pytest.raises(PackageNotFoundError) as exc_info:
        db.resolve("foo")
    assert "lib-foo-1.0-2" in str(exc_info.value)


def test_resolve_ambiguous_bare_name(db):
    db.storage.write("python3", "3.11", make_record("python3", "3.11"))
    db.storage.write("python3", "3.12", make_record("python3", "3.12"))

    with pytest.raises(AmbiguousPackageError):
        db.resolve("python3")
    assert db.resolve("python3-3.12") == ("python3", "3.12")


def test_status_text(db):
    db.install(make_record("vim", "9.0", ["/usr/bin/vim", "/usr/bin/vi"], maintainer="Debian"))
    text = db.format_record(db.status("vim"))

    lines = text.splitlines()
    assert lines[0] == "Package: vim"
    assert lines[1] == "Version: 9.0"
    assert "Maintainer: Debian" in lines
    assert "Depends: (none)" in lines
    assert "Homepage: (unknown)" in lines
    assert lines[-1] == "Files installed: 2"


def test_status_missing_package(db):
    with pytest.raises(PackageNotFoundError):
        db.status("ghost")


def test_remove_keeps_files_by_default(config, db):
    target = Path(config.system_install_root) / "usr" / "bin" / "tool"
    target.parent.mkdir(parents=True)
    target.write_text("#!/bin/sh\n")
    db.install(make_record("tool", "1.0", ["/usr/bin/tool"]))

    removed = db.remove("tool")
    assert removed.name == "tool"
    assert target.exists()
    assert db.list_installed() == []
    with pytest.raises(PackageNotFoundError):
        db.get("tool")


def test_remove_deletes_installed_files(config, db):
    root = Path(config.system_install_root)
    tool = root / "usr" / "bin" / "tool"
    tool.parent.mkdir(parents=True)
    tool.write_text("#!/bin/sh\n")
    (root / "usr" / "share").mkdir()
    outside = Path(config.base_dir) / "escape"
    outside.write_text("keep me")

    files = ["/usr/bin/tool", "/usr/share", "/usr/share/doc/tool/missing", "../escape"]
    db.install(make_record("tool", "1.0", files))

    db.remove("tool", delete_files=True)

    assert not tool.exists()
    assert (root / "usr" / "share").is_dir()
    assert outside.read_text() == "keep me"


def test_remove_unknown_package(db):
    with pytest.raises(PackageNotFoundError):
        db.remove("ghost")


def test_corrupt_index_is_rebuilt(db):
    db.install(make_record("git", "2.39"))
    db.install(make_record("grep", "3.8"))
    db.rebuild_index()

    index_path = db.prefix_index.index_path
    index_path.write_bytes(b"garbage!")
    future = index_path.stat().st_mtime + 60
    os.utime(index_path, (future, future))
    assert not db.prefix_index.is_stale()

    assert db.complete("g") == ["git", "grep"]
    assert db.prefix_index.verify() == 2


def test_index_removed_after_staleness_check_is_rebuilt(monkeypatch, db):
    db.install(make_record("git", "2.39"))
    assert not db.prefix_index.index_path.exists()
    # Another process deletes the index between the check and the read
    monkeypatch.setattr(db.prefix_index, "is_stale", lambda: False)

    assert db.complete("g") == ["git"]
    assert db.prefix_index.index_path.exists()


def test_package_added_behind_our_back_is_found(config, db):
    db.install(make_record("git", "2.39"))
    assert db.complete("") == ["git"]

    # Another tool writes straight into the database directory
    db.storage.write("zsh", "5.9", make_record("zsh", "5.9"))
    db_root = Path(config.db_dir)
    later = db.prefix_index.index_path.stat().st_mtime + 10
    os.utime(db_root, (later, later))

    assert db.complete("") == ["git", "zsh"]


def test_list_columns(db):
    for name in ["vim", "git", "grep"]:
        db.install(make_record(name, "1.0"))

    assert db.list_columns(width=80) == "git   grep  vim\n"
    assert db.list_columns(width=6) == "git\ngrep\nvim\n"


def test_suggest(db):
    db.install(make_record("libssl3", "3.0"))
    db.install(make_record("openssl", "3.0"))
    assert db.suggest("ssl") == ["libssl3-3.0", "openssl-3.0"]


def test_closed_database_rejects_calls(config):
    db = PackageDatabase(config)
    db.close()
    db.close()
    with pytest.raises(InvalidInputError):
        db.complete("")
