"""Durable local identity so a restarted client can silently rejoin"""

import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..constants import MAX_NAME_LENGTH

logger = logging.getLogger(__name__)


class StoredIdentity(BaseModel):
    """What the client remembers between runs."""
    model_config = ConfigDict(extra="forbid", strict=True)

    player_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    is_watcher: bool = False
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    participant_id: Optional[str] = None  # connection id of the last join
    saved_at: float = Field(default_factory=time.time)


class LocalIdentityStore:
    """Keeps a StoredIdentity in a small JSON file; malformed files are discarded."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[StoredIdentity]:
        if not self.path.exists():
            return None
        try:
            return StoredIdentity.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Discarding malformed local identity {self.path}: {e}")
            self.clear()
            return None

    def save(self, identity: StoredIdentity) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(identity.model_dump_json())
        except OSError as e:
            logger.error(f"Could not save local identity to {self.path}: {e}")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove local identity {self.path}: {e}")
