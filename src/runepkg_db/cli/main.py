# Command-line front end for querying and maintaining the package database.
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from runepkg_db.core.config import config_file_path, load_config
from runepkg_db.core.database import PackageDatabase
from runepkg_db.core.errors import (
    AmbiguousPackageError,
    ConfigError,
    PackageNotFoundError,
    RunepkgError,
)

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="runepkg-db", description="Query and maintain the runepkg package database"
    )
    p.add_argument("--config", type=Path, help="Configuration file (TOML)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List installed packages in columns")

    status = sub.add_parser("status", help="Show package metadata")
    status.add_argument("package", help="Package name or name-version")

    files = sub.add_parser("list-files", help="List files installed by a package")
    files.add_argument("package", help="Package name or name-version")

    remove = sub.add_parser("remove", help="Remove a package from the database")
    remove.add_argument("package", help="Package name or name-version")
    remove.add_argument(
        "--delete-files",
        action="store_true",
        help="Also delete the package's installed files",
    )

    complete = sub.add_parser("complete", help="Print package names starting with PREFIX")
    complete.add_argument("prefix", nargs="?", default="", help="Name prefix")

    sub.add_parser("rebuild-index", help="Rebuild the prefix-search index")
    sub.add_parser("print-config", help="Show the active configuration")
    return p


def _run(db: PackageDatabase, args: argparse.Namespace) -> int:
    if args.command == "list":
        text = db.list_columns()
        if text:
            print(text, end="")
        else:
            print("No packages installed.")
    elif args.command == "status":
        print(db.format_record(db.status(args.package)))
    elif args.command == "list-files":
        record = db.status(args.package)
        print(f"Files installed by {record.name} ({record.file_count}):")
        for path in db.list_files(args.package):
            print(f"  {path}")
    elif args.command == "remove":
        record = db.remove(args.package, delete_files=args.delete_files)
        print(f"Removed {record.name} ({record.version})")
    elif args.command == "complete":
        for name in db.complete(args.prefix):
            print(name)
    elif args.command == "rebuild-index":
        path = db.rebuild_index()
        print(f"Rebuilt index at {path}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return EXIT_ERROR

    verbose = args.verbose or config.verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "print-config":
        source = config_file_path(args.config)
        print(f"Config file: {source if source is not None else '(built-in defaults)'}")
        print(config.describe())
        return EXIT_OK

    try:
        with PackageDatabase(config) as db:
            return _run(db, args)
    except (PackageNotFoundError, AmbiguousPackageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except RunepkgError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
