"""
local_cache.py
--------------
Durable key-value store used as the offline fallback and write staging area.
Each key is persisted as one JSON file inside the cache directory.
"""

import json
import logging
import os
import re
import tempfile

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class LocalStorageError(Exception):
    """Raised when a value cannot be persisted to the local cache."""


class LocalCacheStore:
    def __init__(self, directory):
        self.directory = directory

    def _path(self, key):
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        return os.path.join(self.directory, f"{key}.json")

    def get(self, key):
        """Returns the stored JSON value, or None when absent or unreadable."""
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable cache entry '{key}', ignoring it: {e}")
            return None

    def set(self, key, value):
        path = self._path(key)
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise LocalStorageError(f"Cannot serialize '{key}': {e}") from e

        try:
            os.makedirs(self.directory, exist_ok=True)
            # Write then rename so a crash never leaves a half-written snapshot
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Local cache write failed for '{key}': {e}")
            raise LocalStorageError(f"Sauvegarde locale impossible ({key}): {e}") from e

