"""Session models and data structures"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Deck:
    name: str
    cards: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {'name': self.name, 'cards': list(self.cards)}


@dataclass
class Participant:
    id: str  # connection id
    name: str
    is_watcher: bool = False
    has_voted: bool = False
    last_seen: datetime = field(default_factory=utcnow)


@dataclass
class Session:
    id: str
    deck_type: str = 'fibonacci'
    deck: Optional[Deck] = None
    custom_deck: Optional[Deck] = None
    participants: Dict[str, Participant] = field(default_factory=dict)
    votes: Dict[str, str] = field(default_factory=dict)  # participant id -> card label, current round only
    revealed: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)


@dataclass
class ConnectionRecord:
    connection_id: str
    session_id: Optional[str] = None
    participant_name: Optional[str] = None
    is_watcher: bool = False
    last_seen: datetime = field(default_factory=utcnow)
    user_agent: str = ''
    is_mobile: bool = False
