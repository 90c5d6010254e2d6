"""Deck catalog and shared constants"""

from typing import Dict

from .models import Deck

DEFAULT_DECK = 'fibonacci'
CUSTOM_DECK = 'custom'

MAX_NAME_LENGTH = 50
MAX_CARD_LENGTH = 20
SESSION_ID_LENGTH = 8

CARD_DECKS: Dict[str, Deck] = {
    'fibonacci': Deck(
        name='Fibonacci',
        cards=('0', '1', '2', '3', '5', '8', '13', '21', '34', '55', '∞', '?', '☕'),
    ),
    'tshirt': Deck(
        name='T-Shirt Sizing',
        cards=('XS', 'S', 'M', 'L', 'XL', 'XXL', '?', '☕'),
    ),
    'powersOf2': Deck(
        name='Powers of 2',
        cards=('0', '1', '2', '4', '8', '16', '32', '?', '☕'),
    ),
    'linear': Deck(
        name='Linear (1-10)',
        cards=('1', '2', '3', '4', '5', '6', '7', '8', '9', '10', '?', '☕'),
    ),
}

# Numeric weights used by statistics for t-shirt labels
TSHIRT_VALUES: Dict[str, int] = {
    'XS': 1,
    'S': 2,
    'M': 3,
    'L': 5,
    'XL': 8,
    'XXL': 13,
}


def list_decks() -> Dict[str, Deck]:
    return dict(CARD_DECKS)


def resolve_deck(deck_type: str) -> Deck:
    return CARD_DECKS.get(deck_type, CARD_DECKS[DEFAULT_DECK])
