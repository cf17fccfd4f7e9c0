"""
Unit Tests for Utility Functions

Tests shared helper functions.
"""

import random

import pytest

from app.utils.helpers import (
    content_hash,
    exponential_delay,
    fingerprint_for,
    full_jitter_backoff,
    slugify,
    truncate,
    utcnow,
)


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_content_hash_ignores_whitespace_runs():
    assert content_hash("Deploys  move\nto Fridays ") == content_hash("Deploys move to Fridays")
    assert content_hash("Deploys move to Fridays") != content_hash("Deploys move to Mondays")


def test_fingerprint_is_stable_for_redelivery():
    """Same message delivered twice gets the same fingerprint."""
    first = fingerprint_for("slack", "C1:1700000000.0001", "Deploy freeze on Friday")
    second = fingerprint_for("slack", "C1:1700000000.0001", "Deploy freeze on Friday")

    assert first == second
    assert len(first) == 64


def test_fingerprint_changes_with_edit_or_source():
    base = fingerprint_for("slack", "C1:1", "Deploy freeze on Friday")

    assert fingerprint_for("slack", "C1:1", "Deploy freeze on Monday") != base
    assert fingerprint_for("teams", "C1:1", "Deploy freeze on Friday") != base
    assert fingerprint_for("slack", "C1:2", "Deploy freeze on Friday") != base


@pytest.mark.parametrize(
    "attempt,expected",
    [(0, 1.0), (1, 2.0), (3, 8.0), (6, 30.0), (-1, 1.0)],
)
def test_exponential_delay(attempt, expected):
    assert exponential_delay(attempt, base=1.0, cap=30.0) == expected


def test_full_jitter_backoff_stays_within_bounds():
    rng = random.Random(42)
    for attempt in range(10):
        delay = full_jitter_backoff(attempt, base=1.0, cap=60.0, rng=rng)
        assert 0 <= delay <= min(60.0, 2**attempt)


def test_slugify():
    assert slugify("Staging URL changed!") == "staging-url-changed"
    assert slugify("  On-call -- handoff  ") == "on-call-handoff"
    assert slugify("!!!") == "untitled"
    assert len(slugify("x" * 200)) == 60


def test_truncate():
    assert truncate(None) == ""
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghij", 5) == "ab..."
