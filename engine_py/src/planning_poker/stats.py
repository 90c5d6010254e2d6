"""
Read-only vote analysis over a session view: consensus and statistics.
"""

import statistics
from collections import Counter
from typing import Any, Dict, List, Optional

from .constants import TSHIRT_VALUES


def voter_votes(view: Dict[str, Any]) -> Dict[str, str]:
    """Revealed votes of participants who are not watchers."""
    watchers = {p["id"] for p in view.get("participants", []) if p.get("is_watcher")}
    return {
        pid: card for pid, card in (view.get("votes") or {}).items()
        if pid not in watchers
    }


def find_consensus(view: Dict[str, Any]) -> Optional[str]:
    """
    Return the agreed card label, or None.

    Consensus needs at least two voter votes that are all the same label.
    Labels are compared as strings, so "?" or "☕" can reach consensus too.
    """
    cards = list(voter_votes(view).values())
    if len(cards) < 2:
        return None
    first = cards[0]
    if all(card == first for card in cards):
        return first
    return None


def card_value(card: str) -> Optional[float]:
    """Numeric value of a card label, or None when it has no number."""
    label = card.strip()
    if label in TSHIRT_VALUES:
        return float(TSHIRT_VALUES[label])
    try:
        return float(int(label))
    except ValueError:
        return None


def compute_statistics(view: Dict[str, Any]) -> Dict[str, Any]:
    cards = list(voter_votes(view).values())
    numbers: List[float] = [v for v in (card_value(c) for c in cards) if v is not None]

    return {
        "total_votes": len(cards),
        "unique_values": len(set(cards)),
        "distribution": dict(Counter(cards).most_common()),
        "numeric_votes": len(numbers),
        "average": round(statistics.fmean(numbers), 2) if numbers else None,
        "median": statistics.median(numbers) if numbers else None,
        "min": min(numbers) if numbers else None,
        "max": max(numbers) if numbers else None,
        "consensus": find_consensus(view),
    }
