"""JSON blob storage backing the in-memory caches."""

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class DiskCache:
    """Stores one JSON file per key under a per-repository directory.

    The disk cache is advisory: read and write failures are logged and
    reported as a miss, never raised.
    """

    def __init__(self, base_path: Path | str, owner: str, repo: str):
        """Initialize disk cache.

        Args:
            base_path: Root cache directory shared by all repositories
            owner: Repository owner
            repo: Repository name
        """
        self.base_path = Path(base_path)
        self.repo_dir = self.base_path / f"{owner}-{repo}"

    def _get_file_path(self, key: str) -> Path:
        """Get full file path for a key, e.g. ``issue-open`` or ``comments-pull-7``."""
        return self.repo_dir / f"{key}.json"

    def _ensure_dir(self) -> None:
        self.repo_dir.mkdir(parents=True, exist_ok=True)

    def save(self, key: str, value: Any) -> bool:
        """Serialize a value to the key's file.

        Args:
            key: Cache key (file stem)
            value: JSON-serializable value

        Returns:
            True if the file was written, False otherwise
        """
        file_path = self._get_file_path(key)
        tmp_path = file_path.with_suffix(".json.tmp")
        try:
            self._ensure_dir()
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False)
            os.replace(tmp_path, file_path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Cache write failed for %s: %s", file_path, e)
            tmp_path.unlink(missing_ok=True)
            return False

    def load(self, key: str) -> Any | None:
        """Load a value, or None if it is missing or unreadable."""
        file_path = self._get_file_path(key)
        try:
            with open(file_path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Cache read failed for %s: %s", file_path, e)
            return None

    def delete(self, key: str) -> None:
        try:
            self._get_file_path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    def get_stats(self) -> dict[str, Any]:
        """Get file count and total size for this repository's cache."""
        if not self.repo_dir.exists():
            return {"files": 0, "total_size_mb": 0.0, "path": str(self.repo_dir)}

        files = list(self.repo_dir.glob("*.json"))
        total_size = sum(f.stat().st_size for f in files)
        return {
            "files": len(files),
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "path": str(self.repo_dir),
        }
