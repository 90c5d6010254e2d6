"""
Realtime gateway: WebSocket connection management and command handling.
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Set

from pydantic import BaseModel

from ..connections import ConnectionTracker
from ..engine import (
    add_or_update_participant, remove_participant, cast_vote, reveal_votes,
    reset_round, set_deck, create_custom_deck, edit_custom_deck, toggle_role,
    rename_participant, touch
)
from ..errors import PokerError
from ..models import Session
from ..registry import SessionRegistry
from ..serialization import session_view
from ..stats import find_consensus
from .events import (
    parse_inbound_event, create_error_event, create_connected_event,
    create_session_event, create_pong_event, ErrorCode, EventType,
    OutboundEventType, CreateSessionEvent, JoinSessionEvent, CastVoteEvent,
    RevealVotesEvent, ResetRoundEvent, ChangeDeckEvent, CustomDeckEvent,
    ToggleRoleEvent, RenameParticipantEvent, LeaveSessionEvent,
    RequestStateEvent, HeartbeatEvent
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and broadcasting."""

    def __init__(self):
        self.active_connections: Dict[str, object] = {}
        self.session_connections: Dict[str, Set[str]] = defaultdict(set)
        self.connection_sessions: Dict[str, str] = {}

    def register(self, connection_id: str, websocket) -> None:
        self.active_connections[connection_id] = websocket

    def unregister(self, connection_id: str) -> None:
        self.leave(connection_id)
        self.active_connections.pop(connection_id, None)

    def join(self, connection_id: str, session_id: str) -> None:
        """Subscribe a connection to one session's broadcasts."""
        current = self.connection_sessions.get(connection_id)
        if current and current != session_id:
            self.leave(connection_id)
        self.session_connections[session_id].add(connection_id)
        self.connection_sessions[connection_id] = session_id

    def leave(self, connection_id: str) -> None:
        session_id = self.connection_sessions.pop(connection_id, None)
        if session_id and session_id in self.session_connections:
            self.session_connections[session_id].discard(connection_id)
            # Clean up empty session subscriptions
            if not self.session_connections[session_id]:
                del self.session_connections[session_id]

    def session_of(self, connection_id: str) -> Optional[str]:
        return self.connection_sessions.get(connection_id)

    async def send(self, connection_id: str, event: BaseModel) -> None:
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_text(event.model_dump_json())
        except Exception as e:
            logger.error(f"Error sending message to {connection_id}: {e}")
            self.unregister(connection_id)

    async def broadcast(self, session_id: str, event: BaseModel) -> None:
        """Send an event to every connection subscribed to a session."""
        payload = event.model_dump_json()
        disconnected = []
        for connection_id in list(self.session_connections.get(session_id, ())):
            websocket = self.active_connections.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_text(payload)
            except Exception as e:
                logger.error(f"Error broadcasting to {connection_id}: {e}")
                disconnected.append(connection_id)

        # Clean up dead connections
        for connection_id in disconnected:
            self.unregister(connection_id)


class RealtimeGateway:
    """Translates client commands into session operations and broadcasts the results."""

    def __init__(
        self,
        registry: SessionRegistry,
        tracker: ConnectionTracker,
        manager: Optional[ConnectionManager] = None,
    ):
        self.registry = registry
        self.tracker = tracker
        self.manager = manager or ConnectionManager()
        self._handlers: Dict[EventType, Callable[[str, BaseModel], Awaitable[None]]] = {
            EventType.CREATE_SESSION: self.handle_create_session,
            EventType.JOIN_SESSION: self.handle_join_session,
            EventType.CAST_VOTE: self.handle_cast_vote,
            EventType.REVEAL_VOTES: self.handle_reveal_votes,
            EventType.RESET_ROUND: self.handle_reset_round,
            EventType.CHANGE_DECK: self.handle_change_deck,
            EventType.CREATE_CUSTOM_DECK: self.handle_create_custom_deck,
            EventType.EDIT_CUSTOM_DECK: self.handle_edit_custom_deck,
            EventType.TOGGLE_ROLE: self.handle_toggle_role,
            EventType.RENAME_PARTICIPANT: self.handle_rename_participant,
            EventType.LEAVE_SESSION: self.handle_leave_session,
            EventType.REQUEST_STATE: self.handle_request_state,
            EventType.PING: self.handle_ping,
            EventType.BACKGROUND: self.handle_lifecycle,
            EventType.RESUME: self.handle_lifecycle,
        }

    # Connection lifecycle

    async def connect(self, connection_id: str, websocket, user_agent: str = '') -> None:
        self.manager.register(connection_id, websocket)
        self.tracker.on_connect(connection_id, user_agent)
        await self.manager.send(connection_id, create_connected_event(connection_id))

    async def disconnect(self, connection_id: str, reason: object = None) -> None:
        """Drop a connection and remove its participant from any session."""
        logger.info(f"User disconnected: {connection_id}, Reason: {reason}, {self.tracker.describe(connection_id)}")
        self.tracker.on_disconnect(connection_id)
        self.manager.unregister(connection_id)

        changed = False
        for session in self.registry.sessions_with_participant(connection_id):
            remove_participant(session, connection_id)
            touch(session)
            changed = True
            await self._announce_departure(session)
        if changed:
            self.registry.save()

    # Inbound dispatch

    async def handle_raw(self, connection_id: str, raw: str) -> None:
        """Parse and handle one text frame, answering problems with an error event."""
        try:
            data = json.loads(raw)
            event = parse_inbound_event(data)
            await self.handle_event(connection_id, event)
        except PokerError as e:
            logger.warning(f"Command rejected for {connection_id}: {e}")
            await self.send_error(connection_id, ErrorCode(e.code), e.message)
        except ValueError as e:
            # Invalid JSON or event
            await self.send_error(connection_id, ErrorCode.INVALID_EVENT, str(e))
        except Exception as e:
            logger.exception(f"Error handling event from {connection_id}: {e}")
            await self.send_error(connection_id, ErrorCode.INTERNAL, "Internal server error")

    async def handle_event(self, connection_id: str, event: BaseModel) -> None:
        if self.tracker.get(connection_id) is None:
            # evicted as stale but the socket is still talking
            self.tracker.on_connect(connection_id)
        self.tracker.on_activity(connection_id)

        handler = self._handlers.get(event.type)
        if handler is None:
            raise ValueError(f"Unhandled event type: {event.type}")
        await handler(connection_id, event)

    async def send_error(self, connection_id: str, code: ErrorCode, message: str) -> None:
        await self.manager.send(connection_id, create_error_event(code, message))

    # Command handlers

    async def handle_create_session(self, connection_id: str, event: CreateSessionEvent) -> None:
        await self._leave_current_session(connection_id)

        session = self.registry.create(event.deck_type)
        add_or_update_participant(session, connection_id, event.player_name, event.is_watcher)
        self.manager.join(connection_id, session.id)
        self.tracker.on_activity(connection_id, session.id, event.player_name, event.is_watcher)
        self.registry.save()

        await self.manager.send(connection_id, create_session_event(
            OutboundEventType.SESSION_CREATED, session_view(session), connection_id
        ))

    async def handle_join_session(self, connection_id: str, event: JoinSessionEvent) -> None:
        session = self.registry.require(event.session_id)
        if self.manager.session_of(connection_id) != session.id:
            await self._leave_current_session(connection_id)

        previous = event.previous_participant_id
        if (previous and previous != connection_id and previous in session.participants
                and not self.tracker.is_live(previous)):
            # Same client on a new socket; its old entry would otherwise linger until the stale sweep
            remove_participant(session, previous)
            logger.info(f"Replaced stale participant {previous} with {connection_id} in session {session.id}")

        participant = add_or_update_participant(
            session, connection_id, event.player_name, event.is_watcher, rejoin=True
        )
        touch(session)
        self.manager.join(connection_id, session.id)
        self.tracker.on_activity(connection_id, session.id, participant.name, participant.is_watcher)
        self.registry.save()

        logger.info(f"Player joined session {session.id}: {participant.name}, Players in session: {len(session.participants)}")
        await self._broadcast_view(session, OutboundEventType.PARTICIPANT_JOINED, connection_id)

    async def handle_cast_vote(self, connection_id: str, event: CastVoteEvent) -> None:
        session = self.registry.require(event.session_id)
        participant = session.participants.get(connection_id)
        player_name = participant.name if participant else 'Unknown'

        if not cast_vote(session, connection_id, event.card):
            logger.warning(f"Invalid vote attempt: {connection_id}, Player: {player_name}, Card: {event.card}, Session: {session.id}")
            return

        touch(session)
        self.registry.save()
        view = session_view(session)
        logger.info(f"Vote cast: {connection_id}, Player: {player_name}, Session: {session.id}")
        if view["all_voted"]:
            logger.info(f"All players voted: Session {session.id}, {len(session.votes)} votes")
        await self.manager.broadcast(session.id, create_session_event(OutboundEventType.VOTE_CAST, view))

    async def handle_reveal_votes(self, connection_id: str, event: RevealVotesEvent) -> None:
        session = self.registry.require(event.session_id)
        reveal_votes(session)
        touch(session)
        self.registry.save()

        view = session_view(session)
        logger.info(f"Votes revealed: Session {session.id}, {len(session.votes)} votes")
        consensus = find_consensus(view)
        if consensus is not None:
            logger.info(f"Consensus reached: Session {session.id}, Card: {consensus}")
        await self.manager.broadcast(session.id, create_session_event(OutboundEventType.VOTES_REVEALED, view))

    async def handle_reset_round(self, connection_id: str, event: ResetRoundEvent) -> None:
        session = self.registry.require(event.session_id)
        reset_round(session)
        logger.info(f"Round reset: Session {session.id}")
        await self._commit(session, OutboundEventType.ROUND_RESET)

    async def handle_change_deck(self, connection_id: str, event: ChangeDeckEvent) -> None:
        session = self.registry.require(event.session_id)
        set_deck(session, event.deck_type)
        logger.info(f"Deck changed: Session {session.id}, New deck: {event.deck_type}")
        await self._commit(session, OutboundEventType.DECK_CHANGED)

    async def handle_create_custom_deck(self, connection_id: str, event: CustomDeckEvent) -> None:
        session = self.registry.require(event.session_id)
        deck = create_custom_deck(session, event.name, event.cards)
        logger.info(f"Custom deck created: Session {session.id}, Deck: {deck.name}, Cards: {len(deck.cards)}")
        await self._commit(session, OutboundEventType.CUSTOM_DECK_CREATED)

    async def handle_edit_custom_deck(self, connection_id: str, event: CustomDeckEvent) -> None:
        session = self.registry.require(event.session_id)
        if not edit_custom_deck(session, event.name, event.cards):
            logger.warning(f"Custom deck edit ignored: Session {session.id} has no custom deck")
            return
        logger.info(f"Custom deck edited: Session {session.id}, Deck: {session.custom_deck.name}")
        await self._commit(session, OutboundEventType.CUSTOM_DECK_EDITED)

    async def handle_toggle_role(self, connection_id: str, event: ToggleRoleEvent) -> None:
        session = self.registry.require(event.session_id)
        participant = toggle_role(session, connection_id)
        self.tracker.on_activity(connection_id, is_watcher=participant.is_watcher)
        logger.info(f"Role toggled: {connection_id}, Player: {participant.name}, New role: {'Watcher' if participant.is_watcher else 'Player'}")
        await self._commit(session, OutboundEventType.ROLE_TOGGLED)

    async def handle_rename_participant(self, connection_id: str, event: RenameParticipantEvent) -> None:
        session = self.registry.require(event.session_id)
        old_name = rename_participant(session, connection_id, event.new_name)
        new_name = session.participants[connection_id].name
        self.tracker.on_activity(connection_id, name=new_name)
        logger.info(f"Name changed: {connection_id}, Old: {old_name}, New: {new_name}, Session: {session.id}")
        await self._commit(session, OutboundEventType.NAME_CHANGED)

    async def handle_leave_session(self, connection_id: str, event: LeaveSessionEvent) -> None:
        session = self.registry.require(event.session_id)
        remove_participant(session, connection_id)
        if self.manager.session_of(connection_id) == session.id:
            self.manager.leave(connection_id)
            self.tracker.detach(connection_id)
        # Kept even when empty; the expiry sweep deletes it later
        touch(session)
        self.registry.save()
        await self._announce_departure(session)

    async def handle_request_state(self, connection_id: str, event: RequestStateEvent) -> None:
        session = self.registry.require(event.session_id)
        await self.manager.send(connection_id, create_session_event(
            OutboundEventType.SESSION_STATE, session_view(session), connection_id
        ))

    async def handle_ping(self, connection_id: str, event: HeartbeatEvent) -> None:
        await self.manager.send(connection_id, create_pong_event())

    async def handle_lifecycle(self, connection_id: str, event: HeartbeatEvent) -> None:
        logger.info(f"App {event.type.value}: {connection_id}, {self.tracker.describe(connection_id)}")

    # Helpers

    async def _commit(self, session: Session, event_type: OutboundEventType) -> None:
        touch(session)
        self.registry.save()
        await self._broadcast_view(session, event_type)

    async def _broadcast_view(
        self,
        session: Session,
        event_type: OutboundEventType,
        participant_id: Optional[str] = None,
    ) -> None:
        await self.manager.broadcast(
            session.id, create_session_event(event_type, session_view(session), participant_id)
        )

    async def _announce_departure(self, session: Session) -> None:
        if session.participants:
            await self._broadcast_view(session, OutboundEventType.PARTICIPANT_LEFT)
        else:
            logger.info(f"Session {session.id} is now empty, will expire after inactivity")

    async def _leave_current_session(self, connection_id: str) -> None:
        """Remove a connection from the session it is currently subscribed to."""
        session = self.registry.get(self.manager.session_of(connection_id))
        self.manager.leave(connection_id)
        if session and connection_id in session.participants:
            remove_participant(session, connection_id)
            touch(session)
            await self._announce_departure(session)

    # Timers

    async def sweep_stale_connections(self, now: Optional[datetime] = None) -> int:
        """Treat silent connections as disconnected. Returns the number evicted."""
        stale = self.tracker.find_stale(now)
        for record in stale:
            session = self.registry.get(record.session_id)
            if session and record.connection_id in session.participants:
                remove_participant(session, record.connection_id)
                touch(session)
                await self._announce_departure(session)
            self.manager.leave(record.connection_id)
            self.tracker.evict(record.connection_id)
        if stale:
            self.registry.save()
        return len(stale)

    def sweep_expired_sessions(self, now: Optional[datetime] = None) -> int:
        return len(self.registry.sweep_expired(now))

    def log_stats(self) -> None:
        logger.info(
            f"Performance stats: Active sessions: {len(self.registry)}, "
            f"Active connections: {len(self.tracker)}"
        )


async def run_periodic(interval: float, func: Callable, name: str) -> None:
    """Call func (sync or async) every interval seconds until cancelled."""
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                result = func()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Periodic task {name} failed: {e}")
    except asyncio.CancelledError:
        logger.info(f"Periodic task {name} cancelled")
        raise
