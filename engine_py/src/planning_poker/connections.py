"""Per-connection liveness tracking"""

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .models import ConnectionRecord, utcnow

logger = logging.getLogger(__name__)

MOBILE_AGENT = re.compile(r"Mobile|Android|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)


class ConnectionTracker:
    """Knows which session and identity each connection belongs to, and when it was last heard from."""

    def __init__(self, stale_after: timedelta = timedelta(minutes=2)):
        self.records: Dict[str, ConnectionRecord] = {}
        self.stale_after = stale_after

    def __len__(self) -> int:
        return len(self.records)

    def get(self, connection_id: str) -> Optional[ConnectionRecord]:
        return self.records.get(connection_id)

    def on_connect(self, connection_id: str, user_agent: str = '') -> ConnectionRecord:
        record = ConnectionRecord(
            connection_id=connection_id,
            user_agent=user_agent,
            is_mobile=bool(MOBILE_AGENT.search(user_agent or '')),
        )
        self.records[connection_id] = record
        logger.info(f"User connected: {connection_id}{' (Mobile)' if record.is_mobile else ''}")
        return record

    def on_activity(
        self,
        connection_id: str,
        session_id: Optional[str] = None,
        name: Optional[str] = None,
        is_watcher: Optional[bool] = None,
    ) -> Optional[ConnectionRecord]:
        record = self.records.get(connection_id)
        if not record:
            return None
        if session_id is not None:
            record.session_id = session_id
        if name is not None:
            record.participant_name = name
        if is_watcher is not None:
            record.is_watcher = is_watcher
        record.last_seen = utcnow()
        return record

    def detach(self, connection_id: str) -> None:
        record = self.records.get(connection_id)
        if record:
            record.session_id = None
            record.last_seen = utcnow()

    def on_disconnect(self, connection_id: str) -> Optional[ConnectionRecord]:
        return self.records.pop(connection_id, None)

    def is_live(self, connection_id: Optional[str], now: Optional[datetime] = None) -> bool:
        record = self.records.get(connection_id) if connection_id else None
        if not record:
            return False
        return (now or utcnow()) - record.last_seen <= self.stale_after

    def find_stale(self, now: Optional[datetime] = None) -> List[ConnectionRecord]:
        now = now or utcnow()
        return [r for r in self.records.values() if now - r.last_seen > self.stale_after]

    def evict(self, connection_id: str) -> Optional[ConnectionRecord]:
        record = self.records.pop(connection_id, None)
        if record:
            logger.info(f"Cleaning up stale connection: {connection_id}")
        return record

    def describe(self, connection_id: str) -> str:
        record = self.records.get(connection_id)
        if not record:
            return "Unknown player"
        player = f"Player: {record.participant_name}" if record.participant_name else "Unknown player"
        return f"{player}, Session: {record.session_id}{' (Mobile)' if record.is_mobile else ''}"
