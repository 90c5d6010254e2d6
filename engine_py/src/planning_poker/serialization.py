"""
Session view and snapshot serialization utilities.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .constants import resolve_deck
from .models import Deck, Participant, Session


def session_view(session: Session) -> Dict[str, Any]:
    """
    Build the broadcastable view of a session.

    Votes are only included once the round is revealed, so clients never see
    in-progress choices of other participants.

    Args:
        session: Session to render

    Returns:
        JSON-safe dictionary sent to every connection in the session
    """
    participants = list(session.participants.values())

    return {
        "id": session.id,
        "deck_type": session.deck_type,
        "deck": _deck_to_dict(session.deck),
        "custom_deck": _deck_to_dict(session.custom_deck),
        "participants": [_participant_to_dict(p) for p in participants],
        "votes": dict(session.votes) if session.revealed else {},
        "revealed": session.revealed,
        "all_voted": all(p.is_watcher or p.has_voted for p in participants),
        "can_reveal": bool(session.votes) and not session.revealed,
    }


def serialize_session(session: Session) -> Dict[str, Any]:
    """Full snapshot for the durable store, votes included."""
    return {
        "id": session.id,
        "deck_type": session.deck_type,
        "deck": _deck_to_dict(session.deck),
        "custom_deck": _deck_to_dict(session.custom_deck),
        "participants": [_participant_to_dict(p) for p in session.participants.values()],
        "votes": dict(session.votes),
        "revealed": session.revealed,
        "created_at": session.created_at.isoformat(),
        "last_activity": session.last_activity.isoformat(),
    }


def deserialize_session(data: Dict[str, Any]) -> Session:
    """
    Rebuild a session from a snapshot entry.

    Raises:
        KeyError, TypeError, ValueError: If the entry is malformed
    """
    created_at = _parse_time(data["created_at"])
    last_activity = _parse_time(data.get("last_activity") or data["created_at"])

    participants = {}
    for entry in data.get("participants", []):
        participant = Participant(
            id=str(entry["id"]),
            name=str(entry["name"]),
            is_watcher=bool(entry.get("is_watcher", False)),
            has_voted=bool(entry.get("has_voted", False)),
            last_seen=_parse_time(entry["last_seen"]) if entry.get("last_seen") else last_activity,
        )
        participants[participant.id] = participant

    votes = {str(k): str(v) for k, v in dict(data.get("votes", {})).items()}
    custom_deck = _deck_from_dict(data.get("custom_deck"))
    deck = _deck_from_dict(data.get("deck")) or resolve_deck(data["deck_type"])

    return Session(
        id=str(data["id"]),
        deck_type=str(data["deck_type"]),
        deck=deck,
        custom_deck=custom_deck,
        participants=participants,
        votes=votes,
        revealed=bool(data.get("revealed", False)),
        created_at=created_at,
        last_activity=last_activity,
    )


def _parse_time(value: str) -> datetime:
    """Parse an ISO timestamp; ones without an offset are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _participant_to_dict(participant: Participant) -> Dict[str, Any]:
    return {
        "id": participant.id,
        "name": participant.name,
        "is_watcher": participant.is_watcher,
        "has_voted": participant.has_voted,
        "last_seen": participant.last_seen.isoformat(),
    }


def _deck_to_dict(deck: Optional[Deck]) -> Optional[Dict[str, Any]]:
    return deck.to_dict() if deck else None


def _deck_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Deck]:
    if not data:
        return None
    return Deck(name=str(data["name"]), cards=tuple(str(card) for card in data["cards"]))
