"""Session engine: every mutation of a planning poker session lives here.

Functions operate on a ``Session`` in place. Each session is only ever touched
from the gateway's single-threaded event loop, so no locking is done here.
Silent rejections (a vote after reveal, a vote from a watcher) return False;
validation problems the caller must surface raise ``PokerError``.
"""

import logging
from typing import Iterable, Optional

from .constants import CUSTOM_DECK, DEFAULT_DECK, MAX_CARD_LENGTH, MAX_NAME_LENGTH, resolve_deck
from .errors import INVALID_NAME, PLAYER_NOT_FOUND, raise_error
from .models import Deck, Participant, Session, utcnow

logger = logging.getLogger(__name__)


def create_session(session_id: str, deck_type: Optional[str] = None) -> Session:
    """Create an empty session using a catalog deck."""
    deck_type = deck_type or DEFAULT_DECK
    now = utcnow()
    return Session(
        id=session_id,
        deck_type=deck_type,
        deck=resolve_deck(deck_type),
        created_at=now,
        last_activity=now,
    )


def touch(session: Session) -> None:
    session.last_activity = utcnow()


def add_or_update_participant(
    session: Session,
    participant_id: str,
    name: Optional[str],
    is_watcher: bool = False,
    rejoin: bool = False,
) -> Participant:
    """
    Insert a participant, or refresh an existing one.

    Args:
        session: Session to mutate
        participant_id: Connection id of the participant
        name: Display name; keeps the current name when empty
        is_watcher: Whether the participant only watches
        rejoin: Full rejoin semantics, which also clears the voted flag

    Returns:
        The inserted or updated participant
    """
    existing = session.participants.get(participant_id)
    if existing:
        existing.name = name or existing.name
        existing.is_watcher = bool(is_watcher)
        existing.last_seen = utcnow()
        if rejoin:
            existing.has_voted = False
            session.votes.pop(participant_id, None)
        elif existing.is_watcher:
            session.votes.pop(participant_id, None)
            existing.has_voted = False
        return existing

    participant = Participant(
        id=participant_id,
        name=name or f"Player {len(session.participants) + 1}",
        is_watcher=bool(is_watcher),
    )
    session.participants[participant_id] = participant
    return participant


def remove_participant(session: Session, participant_id: str) -> None:
    session.participants.pop(participant_id, None)
    session.votes.pop(participant_id, None)


def cast_vote(session: Session, participant_id: str, card: str) -> bool:
    if session.revealed:
        return False

    participant = session.participants.get(participant_id)
    if not participant or participant.is_watcher:
        return False

    session.votes[participant_id] = card
    participant.has_voted = True
    return True


def reveal_votes(session: Session) -> bool:
    session.revealed = True
    return True


def reset_round(session: Session) -> None:
    session.votes.clear()
    session.revealed = False
    for participant in session.participants.values():
        participant.has_voted = False


def set_deck(session: Session, deck_type: str) -> Deck:
    """Switch deck; a previously created custom deck is reused."""
    if deck_type == CUSTOM_DECK and session.custom_deck:
        session.deck_type = CUSTOM_DECK
        session.deck = session.custom_deck
    else:
        # unknown keys are kept as deck_type but play with the default deck
        session.deck_type = deck_type
        session.deck = resolve_deck(deck_type)
    reset_round(session)
    return session.deck


def _clean_cards(cards: Iterable[str]) -> tuple:
    """Trim labels and drop blank ones and ones too long to be voted."""
    cleaned = []
    for card in cards:
        label = (card or '').strip()
        if not label:
            continue
        if len(label) > MAX_CARD_LENGTH:
            logger.warning(f"Dropping custom card longer than {MAX_CARD_LENGTH} characters: {label!r}")
            continue
        cleaned.append(label)
    return tuple(cleaned)


def create_custom_deck(session: Session, name: str, cards: Iterable[str]) -> Deck:
    session.custom_deck = Deck(name=(name or '').strip(), cards=_clean_cards(cards))
    session.deck_type = CUSTOM_DECK
    session.deck = session.custom_deck
    reset_round(session)
    return session.custom_deck


def edit_custom_deck(session: Session, name: str, cards: Iterable[str]) -> bool:
    if not session.custom_deck:
        return False
    session.custom_deck = Deck(name=(name or '').strip(), cards=_clean_cards(cards))
    session.deck_type = CUSTOM_DECK
    session.deck = session.custom_deck
    reset_round(session)
    return True


def toggle_role(session: Session, participant_id: str) -> Participant:
    participant = session.participants.get(participant_id)
    if not participant:
        raise_error(PLAYER_NOT_FOUND, "Player not found in session")

    participant.is_watcher = not participant.is_watcher

    # Watchers never hold a vote
    if participant.is_watcher:
        session.votes.pop(participant_id, None)
        participant.has_voted = False
    return participant


def rename_participant(session: Session, participant_id: str, new_name: str) -> str:
    """Rename a participant and return the previous name."""
    participant = session.participants.get(participant_id)
    if not participant:
        raise_error(PLAYER_NOT_FOUND, "Player not found in session")

    trimmed = (new_name or '').strip()
    if not trimmed or len(trimmed) > MAX_NAME_LENGTH:
        raise_error(INVALID_NAME, f"Name must be between 1 and {MAX_NAME_LENGTH} characters")

    old_name = participant.name
    participant.name = trimmed
    return old_name
