"""Durable JSON store for session snapshots"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import orjson

logger = logging.getLogger(__name__)


class JsonFileStore:
    """Reads and writes the full list of session snapshots as one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_writable(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            probe = self.path.parent / '.write-test'
            probe.write_text('test')
            probe.unlink()
            return True
        except OSError as e:
            logger.error(f"Cannot write to data directory {self.path.parent}: {e}")
            return False

    def load(self) -> List[Dict[str, Any]]:
        """Return stored snapshot entries, or an empty list if nothing usable exists."""
        if not self.path.exists():
            logger.info(f"No sessions file at {self.path}, starting empty")
            return []
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.error(f"Failed to read sessions file {self.path}: {e}")
            return []
        if not isinstance(data, list):
            logger.error(f"Sessions file {self.path} does not hold a list, ignoring it")
            return []
        logger.info(f"Parsed {len(data)} sessions from {self.path}")
        return data

    def save(self, entries: List[Dict[str, Any]]) -> None:
        """Write entries atomically. Raises OSError on failure."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp_path.write_bytes(orjson.dumps(entries, option=orjson.OPT_INDENT_2))
        os.replace(tmp_path, self.path)


class MemoryStore:
    """In-process store, used when persistence is disabled."""

    def __init__(self, entries: List[Dict[str, Any]] = None):
        self.entries = list(entries or [])
        self.saves = 0

    def load(self) -> List[Dict[str, Any]]:
        return list(self.entries)

    def save(self, entries: List[Dict[str, Any]]) -> None:
        self.entries = list(entries)
        self.saves += 1
