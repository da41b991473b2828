"""End-to-end tests for the runepkg-db command line."""

import shutil
import tempfile
from pathlib import Path

import pytest

from runepkg_db import DatabaseConfig, PackageDatabase, PackageRecord
from runepkg_db.cli.main import EXIT_ERROR, EXIT_NOT_FOUND, EXIT_OK, main
from runepkg_db.core.config import config_from_dict


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def config_path(temp_dir):
    path = temp_dir / "runepkgconfig.toml"
    path.write_text(f'base_dir = "{temp_dir / "state"}"\n')
    return path


@pytest.fixture
def populated(temp_dir, config_path):
    config: DatabaseConfig = config_from_dict({"base_dir": str(temp_dir / "state")})
    config.ensure_dirs()
    with PackageDatabase(config) as db:
        db.install(PackageRecord(name="vim", version="9.0", file_list=["/usr/bin/vim"]))
        db.install(PackageRecord(name="git", version="2.39", file_list=["/usr/bin/git"]))
        db.install(PackageRecord(name="grep", version="3.8", file_list=["/bin/grep", "/bin/egrep"]))
    return config


def run(config_path, *args):
    return main(["--config", str(config_path), *args])


def test_complete(populated, config_path, capsys):
    assert run(config_path, "complete", "g") == EXIT_OK
    assert capsys.readouterr().out == "git\ngrep\n"

    assert run(config_path, "complete", "gi") == EXIT_OK
    assert capsys.readouterr().out == "git\n"


def test_list(populated, config_path, capsys):
    assert run(config_path, "list") == EXIT_OK
    out = capsys.readouterr().out
    assert out.split() == ["git", "grep", "vim"]


def test_list_empty_database(config_path, capsys):
    assert run(config_path, "list") == EXIT_OK
    assert "No packages installed." in capsys.readouterr().out


def test_status(populated, config_path, capsys):
    assert run(config_path, "status", "grep") == EXIT_OK
    out = capsys.readouterr().out
    assert "Package: grep" in out
    assert "Version: 3.8" in out
    assert "Files installed: 2" in out


def test_status_missing_package(populated, config_path, capsys):
    assert run(config_path, "status", "emacs") == EXIT_NOT_FOUND
    assert "emacs" in capsys.readouterr().err


def test_list_files(populated, config_path, capsys):
    assert run(config_path, "list-files", "grep-3.8") == EXIT_OK
    out = capsys.readouterr().out
    assert "/bin/grep" in out
    assert "/bin/egrep" in out


def test_remove(populated, config_path, capsys):
    assert run(config_path, "remove", "git") == EXIT_OK
    assert "Removed git (2.39)" in capsys.readouterr().out

    assert run(config_path, "complete", "g") == EXIT_OK
    assert capsys.readouterr().out == "grep\n"

    assert run(config_path, "remove", "git") == EXIT_NOT_FOUND


def test_rebuild_index(populated, config_path, capsys):
    assert run(config_path, "rebuild-index") == EXIT_OK
    assert "Rebuilt index" in capsys.readouterr().out
    assert Path(populated.db_dir, populated.index_filename).exists()


def test_print_config(config_path, capsys):
    assert run(config_path, "print-config") == EXIT_OK
    out = capsys.readouterr().out
    assert str(config_path) in out
    assert "db_dir:" in out


def test_bad_config(temp_dir, capsys):
    bad = temp_dir / "bad.toml"
    bad.write_text("no_such_key = 1\n")
    assert main(["--config", str(bad), "list"]) == EXIT_ERROR
    assert "no_such_key" in capsys.readouterr().err


def test_missing_command_exits():
    with pytest.raises(SystemExit):
        main([])
