"""Pytest fixtures for shared-identity tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from visitorgraph.identity.matchers.base import MatchContext, Matcher
from visitorgraph.identity.models import MatchCandidate
from visitorgraph.identity.observation import (
    Observation,
    ObservationSource,
    normalize_observation,
)
from visitorgraph.identity.signature import BehavioralSignature, ReferrerType
from visitorgraph.identity.store import InMemoryObservationStore, ObservationStore

NOW = datetime(2025, 1, 15, 14, 0, tzinfo=UTC)

DESKTOP_CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_SAFARI = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class StaticMatcher(Matcher):
    """Matcher returning a fixed list of candidates."""

    name = "static"
    weight = 1
    base_confidence = 0.5

    def __init__(self, candidates: list[MatchCandidate], name: str | None = None):
        self.candidates = candidates
        if name:
            self.name = name

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        return list(self.candidates)


class FailingMatcher(Matcher):
    """Matcher that always raises."""

    name = "failing"
    weight = 1
    base_confidence = 0.5

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        raise RuntimeError("store timeout")


@pytest.fixture
def now() -> datetime:
    """Fixed reference time: Wednesday 2025-01-15 14:00 UTC."""
    return NOW


@pytest.fixture
def store() -> InMemoryObservationStore:
    """Empty in-memory store."""
    return InMemoryObservationStore()


@pytest.fixture
def add_observation(store: InMemoryObservationStore) -> Callable[..., Observation]:
    """Normalize and store an observation built from keyword arguments."""

    def _add(source: ObservationSource = ObservationSource.FORM_SUBMISSION, **fields: Any) -> Observation:
        fields.setdefault("collected_at", NOW)
        observation = normalize_observation(Observation(source=source, **fields), salt="test-salt")
        store.save_observation(observation)
        return observation

    return _add


@pytest.fixture
def make_signature() -> Callable[..., BehavioralSignature]:
    """Build a behavioral signature with neutral defaults."""

    def _make(**overrides: Any) -> BehavioralSignature:
        values: dict[str, Any] = {
            "hour_of_day": 14,
            "day_of_week": 3,
            "time_category": "afternoon",
            "pages_visited": 5,
            "session_duration": 300.0,
            "avg_time_per_page": 60.0,
            "click_count": 10,
            "scroll_depth": 50.0,
            "form_interactions": 1,
            "entry_page": "/",
            "referrer_type": ReferrerType.DIRECT,
            "utm_source": "",
            "device_type": "desktop",
            "browser_family": "chrome",
            "screen_resolution": "1920x1080",
            "engagement_level": 3,
            "intent_signals": frozenset(),
        }
        values.update(overrides)
        return BehavioralSignature(**values)

    return _make


@pytest.fixture
def desktop_ua() -> str:
    """Desktop Chrome user agent."""
    return DESKTOP_CHROME


@pytest.fixture
def mobile_ua() -> str:
    """iPhone Safari user agent."""
    return IPHONE_SAFARI


@pytest.fixture
def static_matcher() -> Callable[..., StaticMatcher]:
    """Build a matcher that returns fixed candidates."""

    def _make(candidates: list[MatchCandidate], name: str | None = None) -> StaticMatcher:
        return StaticMatcher(candidates, name=name)

    return _make


@pytest.fixture
def failing_matcher() -> FailingMatcher:
    """Matcher whose lookup always raises."""
    return FailingMatcher()
