"""
JSON-file persistence: the durable scan cache tier and the confirmed
medication record sink.
"""

import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import CacheStoreError
from .models import CacheEntry

# Set up logging
logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{16,128}$")


def _write_json(path: Path, data: Any):
    # Each writer gets its own sibling temp file, swapped in whole
    with tempfile.NamedTemporaryFile('w', dir=path.parent, prefix=path.name + ".",
                                     suffix=".tmp", delete=False) as f:
        tmp_path = f.name
        try:
            json.dump(data, f, indent=2)
        except (TypeError, ValueError):
            f.close()
            os.unlink(tmp_path)
            raise
    os.replace(tmp_path, path)


class FileCacheStore:
    """
    Durable cache tier: one JSON document per image hash (the scan_sessions table)
    """

    def __init__(self, directory: Union[str, Path] = "data/cache/scans"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, image_hash: str) -> Path:
        if not _HASH_RE.match(image_hash or ""):
            raise CacheStoreError(f"Refusing malformed cache key {image_hash!r}")
        return self.directory / f"{image_hash}.json"

    def get(self, image_hash: str) -> Optional[CacheEntry]:
        path = self._path(image_hash)
        if not path.exists():
            return None
        try:
            with open(path, 'r') as f:
                return CacheEntry.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CacheStoreError(f"Could not read cache entry {image_hash}: {e}") from e

    def put(self, entry: CacheEntry):
        path = self._path(entry.image_hash)
        try:
            _write_json(path, entry.to_dict())
        except (OSError, TypeError, ValueError) as e:
            raise CacheStoreError(f"Could not write cache entry {entry.image_hash}: {e}") from e

    def delete(self, image_hash: str):
        try:
            self._path(image_hash).unlink(missing_ok=True)
        except OSError as e:
            raise CacheStoreError(f"Could not delete cache entry {image_hash}: {e}") from e

    def purge_expired(self, now: float) -> int:
        """Delete entries past their expiry; unreadable files are left for inspection."""
        removed = 0
        for path in self.directory.glob("*.json"):
            try:
                with open(path, 'r') as f:
                    expires_at = float(json.load(f).get('expires_at', 0))
            except (OSError, json.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable cache file {path.name}: {e}")
                continue
            if expires_at <= now:
                path.unlink(missing_ok=True)
                removed += 1
        return removed


class MedicationRecordStore:
    """
    Result sink for confirmed medications, kept in one JSON file
    """

    def __init__(self, data_dir: Union[str, Path] = "data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.records_file = self.data_dir / "medication_records.json"
        self._lock = threading.Lock()
        self.records: List[Dict[str, Any]] = []
        self.load_data()

    def load_data(self):
        """Load saved medication records"""
        if not self.records_file.exists():
            return
        try:
            with open(self.records_file, 'r') as f:
                self.records = json.load(f)
            logger.info(f"Loaded {len(self.records)} medication records")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading medication records: {e}")
            self.records = []

    def save(self, medication: Dict[str, Any]) -> Dict[str, Any]:
        """Persist one confirmed medication and return the stored record"""
        record = dict(medication)
        record['saved_at'] = datetime.now().isoformat()

        with self._lock:
            self.records.append(record)
            try:
                _write_json(self.records_file, self.records)
            except OSError as e:
                self.records.pop()
                raise CacheStoreError(f"Could not save medication record: {e}") from e

        logger.info(f"✅ Saved medication record for {record.get('extracted_data', {}).get('drug_name', 'unknown')}")
        return record
