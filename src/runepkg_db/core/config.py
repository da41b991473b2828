"""Configuration for the package database.

Defines every path and tunable the database needs, and the TOML loader that
fills them in.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RUNEPKG_CONFIG_PATH"
SYSTEM_CONFIG_PATH = Path("/etc/runepkg/runepkgconfig.toml")
USER_CONFIG_NAME = ".runepkgconfig.toml"
BASE_DIR_NAME = "runepkg_dir"


@dataclass
class DatabaseConfig:
    """Configuration parameters for the package database.

    Attributes:
        base_dir: Root of all runepkg state
        db_dir: Directory holding one subdirectory per installed package
        control_dir: Scratch directory for extracted control archives
        install_dir: Staging directory for extracted package data
        system_install_root: Where package files are installed (defaults
            to install_dir)
        index_filename: Name of the prefix-search index inside db_dir
        initial_table_capacity: Starting bucket count of the hash index
        grow_load_factor: Load factor that triggers hash index growth
        shrink_load_factor: Load factor that triggers hash index shrinkage
        verbose: Enable debug logging
    """

    base_dir: str
    db_dir: str
    control_dir: str
    install_dir: str
    system_install_root: str | None = None
    index_filename: str = "runepkg_autocomplete.bin"
    initial_table_capacity: int = 2
    grow_load_factor: float = 0.75
    shrink_load_factor: float = 0.25
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.system_install_root is None:
            self.system_install_root = self.install_dir

    @property
    def index_path(self) -> Path:
        return Path(self.db_dir) / self.index_filename

    @classmethod
    def defaults(cls, home: str | Path | None = None) -> DatabaseConfig:
        """Build the ``~/runepkg_dir/...`` layout under home."""
        base = Path(home if home is not None else Path.home()) / BASE_DIR_NAME
        return cls(
            base_dir=str(base),
            db_dir=str(base / "runepkg_db"),
            control_dir=str(base / "control_dir"),
            install_dir=str(base / "install_dir"),
        )

    def ensure_dirs(self) -> None:
        """Create the state directories if they are missing."""
        for path in (self.base_dir, self.db_dir, self.control_dir, self.install_dir):
            Path(path).mkdir(parents=True, exist_ok=True)

    def describe(self) -> str:
        """Multi-line summary for print-config."""
        lines = ["runepkg configuration:"]
        for f in fields(self):
            lines.append(f"  {f.name}: {getattr(self, f.name)}")
        lines.append(f"  index_path: {self.index_path}")
        return "\n".join(lines)


def config_file_path(path: str | Path | None = None) -> Path | None:
    """Return the configuration file in use, or None for built-in defaults.

    Order: explicit path, $RUNEPKG_CONFIG_PATH, the system-wide file, then
    ``~/.runepkgconfig.toml``.
    """
    if path is not None:
        return Path(path)

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    for candidate in (SYSTEM_CONFIG_PATH, Path.home() / USER_CONFIG_NAME):
        if candidate.is_file():
            return candidate
    return None


def _expand(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}")
    return os.path.expanduser(value)


def config_from_dict(data: dict[str, Any], home: str | Path | None = None) -> DatabaseConfig:
    """Overlay data onto the defaults, validating keys and types."""
    config = DatabaseConfig.defaults(home)
    known = {f.name: f for f in fields(DatabaseConfig)}

    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    # Directories left unset follow base_dir when it is overridden
    if "base_dir" in data:
        base = Path(_expand(data["base_dir"], "base_dir"))
        config.base_dir = str(base)
        config.db_dir = str(base / "runepkg_db")
        config.control_dir = str(base / "control_dir")
        config.install_dir = str(base / "install_dir")
        config.system_install_root = config.install_dir

    for key in ("db_dir", "control_dir", "install_dir", "system_install_root", "index_filename"):
        if key in data:
            setattr(config, key, _expand(data[key], key))
    if "install_dir" in data and "system_install_root" not in data:
        config.system_install_root = config.install_dir

    if "initial_table_capacity" in data:
        value = data["initial_table_capacity"]
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"initial_table_capacity must be a positive integer, got {value!r}")
        config.initial_table_capacity = value

    for key in ("grow_load_factor", "shrink_load_factor"):
        if key in data:
            value = data[key]
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ConfigError(f"{key} must be a number, got {value!r}")
            setattr(config, key, float(value))
    if not 0.0 < config.shrink_load_factor < config.grow_load_factor <= 1.0:
        raise ConfigError(
            f"Load factors out of range: shrink={config.shrink_load_factor}, "
            f"grow={config.grow_load_factor}"
        )

    if "verbose" in data:
        if not isinstance(data["verbose"], bool):
            raise ConfigError(f"verbose must be a boolean, got {data['verbose']!r}")
        config.verbose = data["verbose"]

    if "/" in config.index_filename:
        raise ConfigError(f"index_filename must be a plain file name: {config.index_filename!r}")
    return config


def load_config(path: str | Path | None = None) -> DatabaseConfig:
    """Load the database configuration.

    Falls back to the built-in defaults when no configuration file is found.

    Raises:
        ConfigError: the file is missing (when named explicitly), unreadable,
            not valid TOML, or holds unknown keys or wrong types
    """
    config_path = config_file_path(path)
    if config_path is None:
        logger.debug("No configuration file found, using defaults")
        return DatabaseConfig.defaults()

    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        raw = config_path.read_text(encoding="utf-8")
        data = tomllib.loads(raw)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    # Accept either top-level keys or a [runepkg] table
    if isinstance(data.get("runepkg"), dict):
        data = data["runepkg"]

    logger.debug(f"Loaded configuration from {config_path}")
    return config_from_dict(data)
