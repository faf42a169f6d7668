"""Local JSON storage."""

from .disk_cache import DiskCache

__all__ = ["DiskCache"]
