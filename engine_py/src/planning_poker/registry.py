"""Session registry: lookup, expiry and durable snapshots of live sessions"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .constants import SESSION_ID_LENGTH
from .engine import create_session
from .errors import SESSION_NOT_FOUND, raise_error
from .models import Session, utcnow
from .serialization import deserialize_session, serialize_session

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, store=None, session_ttl: timedelta = timedelta(hours=24)):
        self.sessions: Dict[str, Session] = {}
        self.store = store
        self.session_ttl = session_ttl

    def __len__(self) -> int:
        return len(self.sessions)

    def _new_id(self) -> str:
        while True:
            session_id = uuid.uuid4().hex[:SESSION_ID_LENGTH]
            if session_id not in self.sessions:
                return session_id

    def create(self, deck_type: Optional[str] = None) -> Session:
        session = create_session(self._new_id(), deck_type)
        self.sessions[session.id] = session
        logger.info(f"Session created: {session.id}, total sessions: {len(self.sessions)}")
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self.sessions.get(session_id)

    def require(self, session_id: Optional[str]) -> Session:
        session = self.get(session_id)
        if not session:
            raise_error(SESSION_NOT_FOUND, "Session not found.")
        return session

    def remove(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def sessions_with_participant(self, participant_id: str) -> List[Session]:
        return [s for s in self.sessions.values() if participant_id in s.participants]

    def snapshot_all(self) -> List[Dict[str, Any]]:
        return [serialize_session(session) for session in self.sessions.values()]

    def restore_all(self, entries: List[Dict[str, Any]]) -> int:
        """Restore sessions from snapshot entries, skipping corrupt ones."""
        restored = 0
        for index, entry in enumerate(entries):
            try:
                session = deserialize_session(entry)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping corrupted session data at index {index}: {e}")
                continue
            self.sessions[session.id] = session
            restored += 1
        logger.info(f"Restored {restored} sessions")
        return restored

    def load(self) -> int:
        if self.store is None:
            return 0
        return self.restore_all(self.store.load())

    def save(self) -> bool:
        if self.store is None:
            return False
        try:
            self.store.save(self.snapshot_all())
        except OSError as e:
            logger.error(f"Error saving sessions: {e}")
            return False
        logger.debug(f"Saved {len(self.sessions)} sessions")
        return True

    def sweep_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Delete sessions idle for longer than the TTL, then persist."""
        now = now or utcnow()
        expired = [
            session_id for session_id, session in self.sessions.items()
            if now - session.last_activity > self.session_ttl
        ]
        for session_id in expired:
            del self.sessions[session_id]
            logger.info(f"Session {session_id} expired and deleted")

        if expired:
            self.save()
        return expired
