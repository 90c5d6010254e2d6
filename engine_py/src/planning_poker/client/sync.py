"""
Client synchronization layer.

``SessionClient`` keeps a local mirror of the session view the server
broadcasts, issues commands, and reconciles after network interruptions:
joins are bounded by a timeout and never duplicated, a remembered session is
rejoined automatically when the transport comes back, and the identity needed
for that survives restarts through a ``LocalIdentityStore``.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..constants import MAX_NAME_LENGTH
from ..stats import compute_statistics, find_consensus
from .base import BaseTransport
from .identity import LocalIdentityStore, StoredIdentity

logger = logging.getLogger(__name__)

SERVER_TIMEOUT_MESSAGE = "Server did not respond. Please try again."

# Error replies that can answer a join-session or create-session
JOIN_ERROR_CODES = frozenset({"SESSION_NOT_FOUND", "INVALID_EVENT", "INTERNAL"})


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


class SessionClient:
    def __init__(
        self,
        transport: Optional[BaseTransport] = None,
        identity_store: Optional[LocalIdentityStore] = None,
        join_timeout: float = 10.0,
        auto_reconnect_timeout: float = 15.0,
        retry_delay: float = 1.0,
    ):
        self.transport = transport
        self.identity_store = identity_store
        self.join_timeout = join_timeout
        self.auto_reconnect_timeout = auto_reconnect_timeout
        self.retry_delay = retry_delay

        # Local mirror
        self.session_id: Optional[str] = None
        self.participant_name: Optional[str] = None
        self.is_watcher = False
        self.session_view: Optional[Dict[str, Any]] = None
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.pending_join_deadline: Optional[float] = None

        self.connection_id: Optional[str] = None
        self.previous_connection_id: Optional[str] = None
        self.last_error: Optional[str] = None
        self.last_error_code: Optional[str] = None
        self.last_pong: Optional[float] = None
        self.manual_join_required = False

        self._join_waiter: Optional[asyncio.Future] = None
        self._pending_session_id: Optional[str] = None
        self._pending_create = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

        self._restore_identity()

    # Mirror state

    @property
    def joined(self) -> bool:
        return (
            self.session_id is not None
            and self.session_view is not None
            and self.session_view.get("id") == self.session_id
        )

    @property
    def join_pending(self) -> bool:
        return self._join_waiter is not None

    @property
    def me(self) -> Optional[Dict[str, Any]]:
        if not self.session_view or not self.connection_id:
            return None
        for participant in self.session_view.get("participants", []):
            if participant.get("id") == self.connection_id:
                return participant
        return None

    @property
    def consensus(self) -> Optional[str]:
        if not self.session_view or not self.session_view.get("revealed"):
            return None
        return find_consensus(self.session_view)

    def statistics(self) -> Optional[Dict[str, Any]]:
        if not self.session_view or not self.session_view.get("revealed"):
            return None
        return compute_statistics(self.session_view)

    def add_listener(self, listener: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback invoked with every inbound message after it is applied."""
        self._listeners.append(listener)

    # Transport callbacks

    def on_transport_connecting(self) -> None:
        self.connection_status = ConnectionStatus.CONNECTING

    def on_transport_connected(self) -> None:
        self.connection_status = ConnectionStatus.CONNECTED
        logger.info("Connected to server")
        if self.session_id and self.participant_name:
            self.start_auto_reconnect()

    def on_transport_disconnected(self) -> None:
        self.connection_status = ConnectionStatus.DISCONNECTED
        if self.connection_id:
            self.previous_connection_id = self.connection_id
        self.connection_id = None
        logger.info("Disconnected from server")

    async def on_visibility_change(self, visible: bool) -> None:
        """Called when the app is backgrounded or brought to the foreground."""
        connected = self.transport is not None and self.transport.connected
        if not visible:
            if connected:
                await self._safe_send({"type": "background"})
            return

        if self.session_id and not connected:
            logger.info(f"App resumed while disconnected, reconnecting to session {self.session_id}")
            self.connection_status = ConnectionStatus.CONNECTING
            if self.transport is not None:
                await self.transport.reconnect()
            # Transports that reconnect in place have already called on_transport_connected
            if self.transport is not None and self.transport.connected:
                self.start_auto_reconnect()
        elif connected:
            await self._safe_send({"type": "resume"})

    def start_auto_reconnect(self) -> Optional[asyncio.Task]:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task
        if self._join_waiter is not None:
            return None
        self._reconnect_task = asyncio.get_running_loop().create_task(self.auto_reconnect())
        return self._reconnect_task

    # Inbound messages

    def handle_message(self, message: Dict[str, Any]) -> None:
        msg_type = message.get("type")

        if msg_type == "connected":
            self.connection_id = message.get("connection_id")
        elif msg_type == "pong":
            self.last_pong = time.monotonic()
        elif msg_type == "error":
            self.last_error = message.get("message")
            self.last_error_code = message.get("code")
            logger.warning(f"Server error {self.last_error_code}: {self.last_error}")
            if self.last_error_code in JOIN_ERROR_CODES:
                self._resolve_join(False)
        elif isinstance(message.get("session"), dict):
            self._apply_view(msg_type, message)

        for listener in list(self._listeners):
            listener(message)

    def _apply_view(self, msg_type: Optional[str], message: Dict[str, Any]) -> None:
        view = message["session"]
        view_id = view.get("id")

        confirms_join = False
        if self._join_waiter is not None:
            if self._pending_create:
                confirms_join = msg_type == "session-created"
            else:
                confirms_join = view_id == self._pending_session_id and self._includes_me(view)

        if not confirms_join and view_id != self.session_id:
            logger.debug(f"Ignoring view for session {view_id}")
            return

        self.session_view = view
        if confirms_join:
            self.session_id = view_id
            self._resolve_join(True)

        me = self.me
        if me and (me.get("name") != self.participant_name or me.get("is_watcher") != self.is_watcher):
            # server is authoritative for renames and role toggles
            self.participant_name = me.get("name")
            self.is_watcher = bool(me.get("is_watcher"))
            self._persist_identity()

    def _includes_me(self, view: Dict[str, Any]) -> bool:
        if self.connection_id is None:
            return True
        return any(p.get("id") == self.connection_id for p in view.get("participants", []))

    def _resolve_join(self, ok: bool) -> None:
        waiter = self._join_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(ok)

    # Joining

    async def create_session(self, player_name: str, is_watcher: bool = False, deck_type: Optional[str] = None) -> bool:
        payload = {
            "type": "create-session",
            "player_name": player_name,
            "is_watcher": is_watcher,
        }
        if deck_type:
            payload["deck_type"] = deck_type
        return await self._request_session(payload, None, player_name, is_watcher, self.join_timeout)

    async def join_session(
        self,
        session_id: str,
        player_name: str,
        is_watcher: bool = False,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Join (or rejoin) a session and wait for the server to confirm it.

        Returns False when the join failed, timed out, or was suppressed
        because another join is still outstanding.
        """
        payload = {
            "type": "join-session",
            "session_id": session_id,
            "player_name": player_name,
            "is_watcher": is_watcher,
        }
        if self.previous_connection_id:
            payload["previous_participant_id"] = self.previous_connection_id
        timeout = self.join_timeout if timeout is None else timeout
        return await self._request_session(payload, session_id, player_name, is_watcher, timeout)

    async def _request_session(
        self,
        payload: Dict[str, Any],
        session_id: Optional[str],
        player_name: str,
        is_watcher: bool,
        timeout: float,
    ) -> bool:
        if self._join_waiter is not None:
            logger.info("Join already in progress, ignoring duplicate request")
            return False
        if self.transport is None or not self.transport.connected:
            self.last_error = "Not connected to server"
            return False

        waiter = asyncio.get_running_loop().create_future()
        self._join_waiter = waiter
        self._pending_session_id = session_id
        self._pending_create = session_id is None
        self.pending_join_deadline = time.monotonic() + timeout
        self.last_error = None
        self.last_error_code = None

        try:
            await self.transport.send(payload)
            ok = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No response to {payload['type']} within {timeout}s")
            self.last_error = SERVER_TIMEOUT_MESSAGE
            ok = False
        except ConnectionError as e:
            logger.warning(f"Could not send {payload['type']}: {e}")
            self.last_error = "Not connected to server"
            ok = False
        finally:
            self._join_waiter = None
            self._pending_session_id = None
            self._pending_create = False
            self.pending_join_deadline = None

        if ok:
            self.participant_name = player_name
            self.is_watcher = is_watcher
            self.manual_join_required = False
            self.previous_connection_id = None
            self._persist_identity()
            logger.info(f"Joined session {self.session_id} as {player_name}")
        elif self.last_error_code == "SESSION_NOT_FOUND" and session_id == self.session_id:
            logger.info(f"Session {session_id} no longer exists, forgetting it")
            self._forget_session()
        return ok

    async def auto_reconnect(self) -> bool:
        """Rejoin the remembered session until it works or the reconnect window closes."""
        if not self.session_id or not self.participant_name:
            return False

        deadline = time.monotonic() + self.auto_reconnect_timeout
        self.manual_join_required = False
        logger.info(f"Auto-reconnecting to session {self.session_id}")

        while self.session_id:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            ok = await self.join_session(
                self.session_id,
                self.participant_name,
                self.is_watcher,
                timeout=min(self.join_timeout, remaining),
            )
            if ok:
                return True
            if not self.session_id:
                # session gone, nothing to retry
                break
            remaining = deadline - time.monotonic()
            if remaining > 0:
                await asyncio.sleep(min(self.retry_delay, remaining))

        self.manual_join_required = True
        logger.warning("Auto-reconnect gave up, manual join required")
        return False

    # Commands

    async def cast_vote(self, card: str) -> bool:
        return await self._send_session_command("cast-vote", card=card)

    async def reveal_votes(self) -> bool:
        return await self._send_session_command("reveal-votes")

    async def reset_round(self) -> bool:
        return await self._send_session_command("reset-round")

    async def change_deck(self, deck_type: str) -> bool:
        return await self._send_session_command("change-deck", deck_type=deck_type)

    async def create_custom_deck(self, name: str, cards: List[str]) -> bool:
        return await self._send_session_command("create-custom-deck", name=name, cards=list(cards))

    async def edit_custom_deck(self, name: str, cards: List[str]) -> bool:
        return await self._send_session_command("edit-custom-deck", name=name, cards=list(cards))

    async def toggle_role(self) -> bool:
        return await self._send_session_command("toggle-role")

    async def rename(self, new_name: str) -> bool:
        trimmed = (new_name or "").strip()
        if not trimmed or len(trimmed) > MAX_NAME_LENGTH:
            self.last_error = f"Name must be between 1 and {MAX_NAME_LENGTH} characters"
            return False
        return await self._send_session_command("rename-participant", new_name=trimmed)

    async def request_state(self) -> bool:
        return await self._send_session_command("request-state")

    async def leave_session(self) -> bool:
        sent = await self._send_session_command("leave-session")
        self._forget_session()
        return sent

    async def ping(self) -> bool:
        return await self._safe_send({"type": "ping"})

    async def _send_session_command(self, command_type: str, **fields) -> bool:
        if not self.session_id:
            self.last_error = "Not in a session"
            return False
        return await self._safe_send({"type": command_type, "session_id": self.session_id, **fields})

    async def _safe_send(self, message: Dict[str, Any]) -> bool:
        if self.transport is None or not self.transport.connected:
            self.last_error = "Not connected to server"
            return False
        try:
            await self.transport.send(message)
        except ConnectionError as e:
            logger.warning(f"Could not send {message.get('type')}: {e}")
            self.last_error = "Not connected to server"
            return False
        return True

    # Durable identity

    def _restore_identity(self) -> None:
        if self.identity_store is None:
            return
        identity = self.identity_store.load()
        if identity is None:
            return
        self.participant_name = identity.player_name
        self.is_watcher = identity.is_watcher
        self.session_id = identity.session_id
        self.previous_connection_id = identity.participant_id
        logger.info(f"Restored local identity {identity.player_name}, session {identity.session_id}")

    def _persist_identity(self) -> None:
        if self.identity_store is None or not self.participant_name:
            return
        self.identity_store.save(StoredIdentity(
            player_name=self.participant_name[:MAX_NAME_LENGTH],
            is_watcher=self.is_watcher,
            session_id=self.session_id,
            participant_id=self.connection_id,
        ))

    def _forget_session(self) -> None:
        self.session_id = None
        self.session_view = None
        self.previous_connection_id = None
        self._persist_identity()
