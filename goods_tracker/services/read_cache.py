"""
read_cache.py - Offline Read Cache

Keeps the last movements/staff lists loaded from the remote database so
the shop screens still have something to show while offline. This is a
plain key/value file, not a source of truth: nothing here is ever
written back to the server.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ReadCache")

BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.getenv("GOODS_TRACKER_DATA_DIR", BASE_DIR / "data"))
CACHE_FILENAME = "offline_cache.json"

CACHE_KEYS = {
    'movements': 'cached-movements',
    'staff': 'cached-staff',
    'last_sync': 'last-sync-timestamp',
}


class KeyValueFile:
    """
    Minimal setItem/getItem store backed by one JSON file.

    Values are strings; every write rewrites the whole file through a
    temporary file so a crash mid-write leaves the previous version.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except ValueError as e:
                # Unreadable blob: treated as empty so the next write replaces it
                logger.warning(f"Ignoring corrupt cache file {self.path}: {e}")
                return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring cache file {self.path}: expected an object")
            return {}
        return data

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str):
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix('.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)


class ReadCache:
    """Snapshot cache for movements, staff and the last successful load time."""

    def __init__(self, data_dir: Optional[Path] = None, storage: Optional[KeyValueFile] = None):
        directory = Path(data_dir) if data_dir else DATA_DIR
        self.storage = storage or KeyValueFile(directory / CACHE_FILENAME)

    def cache_movements(self, movements: List[Dict]):
        """Overwrite the cached movement list and stamp the sync time."""
        try:
            self.storage.set_item(CACHE_KEYS['movements'], json.dumps(movements))
            self.storage.set_item(
                CACHE_KEYS['last_sync'],
                datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            )
            logger.info(f"Cached movements: {len(movements)}")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to cache movements: {e}")

    def cache_staff(self, staff: List[Dict]):
        try:
            self.storage.set_item(CACHE_KEYS['staff'], json.dumps(staff))
            logger.info(f"Cached staff: {len(staff)}")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to cache staff: {e}")

    def _read_list(self, key: str) -> Optional[List[Dict]]:
        try:
            cached = self.storage.get_item(key)
            if cached:
                return json.loads(cached)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read cached '{key}': {e}")
        return None

    def get_cached_movements(self) -> Optional[List[Dict]]:
        return self._read_list(CACHE_KEYS['movements'])

    def get_cached_staff(self) -> Optional[List[Dict]]:
        return self._read_list(CACHE_KEYS['staff'])

    def get_last_sync_time(self) -> Optional[str]:
        try:
            return self.storage.get_item(CACHE_KEYS['last_sync'])
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read last sync time: {e}")
            return None
