"""runepkg-db core package."""

from .database import PackageDatabase

__all__ = ["PackageDatabase"]
