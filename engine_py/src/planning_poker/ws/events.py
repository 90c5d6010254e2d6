"""
WebSocket event models and validation.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..constants import MAX_CARD_LENGTH


class EventType(str, Enum):
    """Inbound event types."""
    CREATE_SESSION = "create-session"
    JOIN_SESSION = "join-session"
    CAST_VOTE = "cast-vote"
    REVEAL_VOTES = "reveal-votes"
    RESET_ROUND = "reset-round"
    CHANGE_DECK = "change-deck"
    CREATE_CUSTOM_DECK = "create-custom-deck"
    EDIT_CUSTOM_DECK = "edit-custom-deck"
    TOGGLE_ROLE = "toggle-role"
    RENAME_PARTICIPANT = "rename-participant"
    LEAVE_SESSION = "leave-session"
    REQUEST_STATE = "request-state"
    PING = "ping"
    BACKGROUND = "background"
    RESUME = "resume"


class OutboundEventType(str, Enum):
    """Outbound event types."""
    CONNECTED = "connected"
    SESSION_CREATED = "session-created"
    PARTICIPANT_JOINED = "participant-joined"
    VOTE_CAST = "vote-cast"
    VOTES_REVEALED = "votes-revealed"
    ROUND_RESET = "round-reset"
    DECK_CHANGED = "deck-changed"
    CUSTOM_DECK_CREATED = "custom-deck-created"
    CUSTOM_DECK_EDITED = "custom-deck-edited"
    ROLE_TOGGLED = "role-toggled"
    NAME_CHANGED = "name-changed"
    PARTICIPANT_LEFT = "participant-left"
    SESSION_STATE = "session-state"
    PONG = "pong"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Error codes for client events."""
    INVALID_EVENT = "INVALID_EVENT"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    INVALID_NAME = "INVALID_NAME"
    INTERNAL = "INTERNAL"


# Inbound event models
class BaseEvent(BaseModel):
    """Base event model."""
    type: EventType


class SessionEvent(BaseEvent):
    """Any command aimed at an existing session."""
    session_id: str = Field(..., min_length=1, max_length=64)


class CreateSessionEvent(BaseEvent):
    """Create a new session and join it."""
    type: EventType = EventType.CREATE_SESSION
    player_name: Optional[str] = Field(default=None, max_length=50)
    is_watcher: bool = False
    deck_type: Optional[str] = Field(default=None, max_length=50)


class JoinSessionEvent(SessionEvent):
    """Join or rejoin a session."""
    type: EventType = EventType.JOIN_SESSION
    player_name: Optional[str] = Field(default=None, max_length=50)
    is_watcher: bool = False
    previous_participant_id: Optional[str] = None


class CastVoteEvent(SessionEvent):
    """Cast a vote in the current round."""
    type: EventType = EventType.CAST_VOTE
    card: str = Field(..., min_length=1, max_length=MAX_CARD_LENGTH)


class RevealVotesEvent(SessionEvent):
    type: EventType = EventType.REVEAL_VOTES


class ResetRoundEvent(SessionEvent):
    type: EventType = EventType.RESET_ROUND


class ChangeDeckEvent(SessionEvent):
    """Switch to a catalog deck or back to the custom deck."""
    type: EventType = EventType.CHANGE_DECK
    deck_type: str = Field(..., min_length=1, max_length=50)


class CustomDeckEvent(SessionEvent):
    """Create or edit the session's custom deck."""
    type: EventType = EventType.CREATE_CUSTOM_DECK
    name: str = Field(default="", max_length=100)
    cards: List[str] = Field(default_factory=list, max_length=100)


class ToggleRoleEvent(SessionEvent):
    type: EventType = EventType.TOGGLE_ROLE


class RenameParticipantEvent(SessionEvent):
    """Rename the requesting participant. Length is checked by the engine."""
    type: EventType = EventType.RENAME_PARTICIPANT
    new_name: str


class LeaveSessionEvent(SessionEvent):
    type: EventType = EventType.LEAVE_SESSION


class RequestStateEvent(SessionEvent):
    """Request the current view of a session."""
    type: EventType = EventType.REQUEST_STATE


class HeartbeatEvent(BaseEvent):
    """Ping and app lifecycle notices; only refresh liveness."""
    type: EventType = EventType.PING


# Union type for all inbound events
InboundEvent = Union[
    CreateSessionEvent,
    JoinSessionEvent,
    CastVoteEvent,
    RevealVotesEvent,
    ResetRoundEvent,
    ChangeDeckEvent,
    CustomDeckEvent,
    ToggleRoleEvent,
    RenameParticipantEvent,
    LeaveSessionEvent,
    RequestStateEvent,
    HeartbeatEvent,
]


EVENT_MAP = {
    EventType.CREATE_SESSION: CreateSessionEvent,
    EventType.JOIN_SESSION: JoinSessionEvent,
    EventType.CAST_VOTE: CastVoteEvent,
    EventType.REVEAL_VOTES: RevealVotesEvent,
    EventType.RESET_ROUND: ResetRoundEvent,
    EventType.CHANGE_DECK: ChangeDeckEvent,
    EventType.CREATE_CUSTOM_DECK: CustomDeckEvent,
    EventType.EDIT_CUSTOM_DECK: CustomDeckEvent,
    EventType.TOGGLE_ROLE: ToggleRoleEvent,
    EventType.RENAME_PARTICIPANT: RenameParticipantEvent,
    EventType.LEAVE_SESSION: LeaveSessionEvent,
    EventType.REQUEST_STATE: RequestStateEvent,
    EventType.PING: HeartbeatEvent,
    EventType.BACKGROUND: HeartbeatEvent,
    EventType.RESUME: HeartbeatEvent,
}


# Outbound event models
class ConnectedEvent(BaseModel):
    """Sent once when the socket is accepted."""
    type: OutboundEventType = OutboundEventType.CONNECTED
    connection_id: str
    timestamp: float


class SessionUpdateEvent(BaseModel):
    """Any event carrying the current session view."""
    type: OutboundEventType
    session: Dict[str, Any]
    participant_id: Optional[str] = None
    timestamp: float


class PongEvent(BaseModel):
    type: OutboundEventType = OutboundEventType.PONG
    timestamp: float


class ErrorEvent(BaseModel):
    """Error event."""
    type: OutboundEventType = OutboundEventType.ERROR
    code: ErrorCode
    message: str
    timestamp: float


OutboundEvent = Union[ConnectedEvent, SessionUpdateEvent, PongEvent, ErrorEvent]


def parse_inbound_event(data: Dict[str, Any]) -> InboundEvent:
    """
    Parse raw event data into appropriate event model.

    Args:
        data: Raw event data from WebSocket

    Returns:
        Parsed event model

    Raises:
        ValueError: If event type is invalid or data is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Event must be a JSON object")

    event_type = data.get("type")

    if not event_type:
        raise ValueError("Missing event type")

    try:
        event_type = EventType(event_type)
    except ValueError:
        raise ValueError(f"Invalid event type: {event_type}")

    event_class = EVENT_MAP[event_type]

    try:
        return event_class(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid event data: {str(e)}")


def create_connected_event(connection_id: str) -> ConnectedEvent:
    return ConnectedEvent(connection_id=connection_id, timestamp=time.time())


def create_session_event(
    event_type: OutboundEventType,
    view: Dict[str, Any],
    participant_id: Optional[str] = None,
) -> SessionUpdateEvent:
    """Create an event that carries a session view."""
    return SessionUpdateEvent(
        type=event_type,
        session=view,
        participant_id=participant_id,
        timestamp=time.time()
    )


def create_pong_event() -> PongEvent:
    return PongEvent(timestamp=time.time())


def create_error_event(code: ErrorCode, message: str) -> ErrorEvent:
    """Create an error event."""
    return ErrorEvent(
        code=code,
        message=message,
        timestamp=time.time()
    )
