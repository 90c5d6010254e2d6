"""
Tests for consensus detection and vote statistics.
"""

import pytest
from planning_poker.stats import card_value, compute_statistics, find_consensus


def view(votes, watchers=()):
    participants = [{"id": pid, "is_watcher": pid in watchers} for pid in votes]
    return {"participants": participants, "votes": dict(votes), "revealed": True}


def test_consensus_needs_two_matching_votes():
    assert find_consensus(view({"a": "5", "b": "5"})) == "5"
    assert find_consensus(view({"a": "5"})) is None
    assert find_consensus(view({})) is None
    assert find_consensus(view({"a": "5", "b": "8"})) is None


def test_consensus_on_non_numeric_labels():
    assert find_consensus(view({"a": "?", "b": "?"})) == "?"
    assert find_consensus(view({"a": "☕", "b": "☕", "c": "☕"})) == "☕"


def test_consensus_is_string_equality():
    """No numeric coercion: "5" and "05" differ."""
    assert find_consensus(view({"a": "5", "b": "05"})) is None


def test_consensus_ignores_watcher_votes():
    votes = {"a": "3", "b": "3", "w": "13"}
    assert find_consensus(view(votes, watchers={"w"})) == "3"
    # a single voter plus a watcher is not consensus
    assert find_consensus(view({"a": "3", "w": "3"}, watchers={"w"})) is None


@pytest.mark.parametrize("label,expected", [
    ("5", 5.0),
    ("13", 13.0),
    ("XS", 1.0),
    ("XXL", 13.0),
    ("?", None),
    ("∞", None),
    ("☕", None),
    ("1.5", None),
])
def test_card_value(label, expected):
    assert card_value(label) == expected


def test_statistics_mixed_labels():
    stats = compute_statistics(view({"a": "3", "b": "5", "c": "?", "d": "8", "e": "5"}))

    assert stats["total_votes"] == 5
    assert stats["unique_values"] == 4
    assert stats["distribution"]["5"] == 2
    assert stats["numeric_votes"] == 4
    assert stats["average"] == 5.25
    assert stats["median"] == 5.0
    assert stats["min"] == 3.0
    assert stats["max"] == 8.0
    assert stats["consensus"] is None


def test_statistics_tshirt_sizes():
    stats = compute_statistics(view({"a": "S", "b": "L", "c": "M"}))
    assert stats["average"] == 3.33
    assert stats["median"] == 3.0


def test_statistics_without_numbers():
    stats = compute_statistics(view({"a": "?", "b": "?"}))
    assert stats["total_votes"] == 2
    assert stats["unique_values"] == 1
    assert stats["average"] is None
    assert stats["median"] is None
    assert stats["consensus"] == "?"
