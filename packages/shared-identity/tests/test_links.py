"""Tests for link strength and the link builder."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from visitorgraph.identity.events import InMemoryAttributionSink
from visitorgraph.identity.exceptions import PersistenceError
from visitorgraph.identity.links import LinkBuilder, calculate_link_strength
from visitorgraph.identity.models import ConfidenceLevel, IdentityLink, MatchCandidate
from visitorgraph.identity.observation import Observation, ObservationSource


def make(collected_at, **fields) -> Observation:
    return Observation(source=ObservationSource.FORM_SUBMISSION, collected_at=collected_at, **fields)


def email_candidate(observation: Observation, confidence: float = 0.95) -> MatchCandidate:
    return MatchCandidate(
        candidate_observation_id=observation.id,
        match_type="email_exact",
        confidence=confidence,
        matching_factors=frozenset({"email"}),
    )


class TestCalculateLinkStrength:
    """Tests for calculate_link_strength."""

    def test_same_email_caps_at_hundred(self, now):
        """Test 95 + 20 email bonus + 10 time bonus is capped at 100."""
        a = make(now, id="a", email="user@x.com")
        b = make(now, id="b", email="user@x.com", device_fingerprint="other")
        assert calculate_link_strength(a, b, 0.95) == 100.0

    def test_bonuses(self, now):
        """Test each corroborating field adds its bonus."""
        a = make(now, id="a", phone="15551234567", device_fingerprint="fp")
        b = make(now - timedelta(days=3), id="b", phone="15551234567", device_fingerprint="fp")
        # 40 + 15 phone + 10 fingerprint, no time bonus
        assert calculate_link_strength(a, b, 0.40) == pytest.approx(65.0)

    def test_time_windows_are_strict(self, now):
        """Test exactly one hour apart earns the 24-hour bonus, not the 1-hour one."""
        a = make(now, id="a")
        assert calculate_link_strength(a, make(now - timedelta(minutes=59), id="b"), 0.5) == 60.0
        assert calculate_link_strength(a, make(now - timedelta(hours=1), id="b"), 0.5) == 55.0
        assert calculate_link_strength(a, make(now + timedelta(hours=23), id="b"), 0.5) == 55.0
        assert calculate_link_strength(a, make(now - timedelta(hours=24), id="b"), 0.5) == 50.0

    def test_missing_fields_do_not_match(self, now):
        """Test two absent emails are not a match."""
        a = make(now - timedelta(days=5), id="a")
        b = make(now, id="b")
        assert calculate_link_strength(a, b, 0.3) == pytest.approx(30.0)

    def test_bounded(self, now):
        """Test strength stays within [0, 100]."""
        a = make(now, id="a", email="u@x.com", phone="15551234567", device_fingerprint="fp")
        assert calculate_link_strength(a, a, 1.0) == 100.0
        assert calculate_link_strength(make(now, id="x"), make(now - timedelta(days=9), id="y"), 0.0) == 0.0


class TestLinkBuilder:
    """Tests for LinkBuilder."""

    def test_creates_link_and_emits_event(self, store, add_observation):
        """Test a new pair gets one active link and one attribution event."""
        a = add_observation(email="user@x.com")
        b = add_observation(ObservationSource.ECOMMERCE_ORDER, email="user@x.com")
        sink = InMemoryAttributionSink()

        write = LinkBuilder(store, sink).build(b, a, email_candidate(a))

        assert write.created is True
        assert write.link.link_type == "email_exact"
        assert write.link.link_strength == 100.0
        assert write.link.confidence_level == ConfidenceLevel.HIGH
        assert write.link.match_data["match_type"] == "email_exact"
        assert store.links_for(a.id) == [write.link]

        [event] = sink.events
        assert (event.observation_id_1, event.observation_id_2) == (b.id, a.id)
        assert event.link_strength == 100.0
        assert event.matcher == "email_exact"
        assert event.created is True

    def test_second_build_updates_in_place(self, store, add_observation):
        """Test building the same pair twice keeps a single active link."""
        a = add_observation(email="user@x.com", phone="5551234567")
        b = add_observation(email="user@x.com", phone="5551234567")
        sink = InMemoryAttributionSink()
        builder = LinkBuilder(store, sink)

        first = builder.build(a, b, email_candidate(b))
        phone = MatchCandidate(
            candidate_observation_id=a.id, match_type="phone_exact", confidence=0.8
        )
        second = builder.build(b, a, phone)

        assert second.created is False
        assert second.link.id == first.link.id
        assert second.link.link_type == "phone_exact"
        assert second.link.updated_at is not None
        assert len(store.links_for(a.id)) == 1
        assert [e.created for e in sink.events] == [True, False]

    def test_concurrent_builds_create_one_link(self, store, add_observation):
        """Test racing writers on one pair leave exactly one active link."""
        a = add_observation(email="user@x.com")
        b = add_observation(email="user@x.com")
        builder = LinkBuilder(store)
        barrier = threading.Barrier(8)

        def race():
            barrier.wait()
            builder.build(a, b, email_candidate(b))

        threads = [threading.Thread(target=race) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store.links_for(a.id)) == 1

    def test_store_failure_raises_persistence_error(self, add_observation):
        """Test link write failures propagate to the caller."""
        a = add_observation(email="user@x.com")
        b = add_observation(email="user@x.com")
        store = MagicMock()
        store.get_active_link.return_value = None
        store.save_link.side_effect = RuntimeError("disk full")
        sink = InMemoryAttributionSink()

        with pytest.raises(PersistenceError, match="disk full"):
            LinkBuilder(store, sink).build(a, b, email_candidate(b))

        assert sink.events == []

    def test_sink_failure_keeps_link(self, store, add_observation, caplog):
        """Test an attribution sink failure is logged and the link stays."""
        a = add_observation(email="user@x.com")
        b = add_observation(email="user@x.com")
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("consumer down")

        with caplog.at_level(logging.ERROR):
            write = LinkBuilder(store, sink).build(a, b, email_candidate(b))

        assert store.get_active_link(a.id, b.id) == write.link
        assert "Failed to emit attribution event" in caplog.text


class TestIdentityLink:
    """Tests for the IdentityLink model."""

    def test_rejects_self_link(self):
        """Test a link cannot join an observation to itself."""
        with pytest.raises(ValueError):
            IdentityLink(observation_id_1="a", observation_id_2="a", link_type="x", link_strength=50)

    def test_rejects_out_of_range_strength(self):
        """Test link strength must be within [0, 100]."""
        with pytest.raises(ValueError):
            IdentityLink(observation_id_1="a", observation_id_2="b", link_type="x", link_strength=101)

    def test_pair_key_is_order_independent(self):
        """Test both orientations share one pair key."""
        ab = IdentityLink(observation_id_1="a", observation_id_2="b", link_type="x", link_strength=1)
        ba = IdentityLink(observation_id_1="b", observation_id_2="a", link_type="x", link_strength=1)
        assert ab.pair_key == ba.pair_key == ("a", "b")

    def test_other(self):
        """Test other() returns the opposite end."""
        link = IdentityLink(observation_id_1="a", observation_id_2="b", link_type="x", link_strength=1)
        assert link.other("a") == "b"
        assert link.other("b") == "a"
        with pytest.raises(ValueError):
            link.other("c")

    def test_from_dict_parses_match_data(self):
        """Test storage rows with JSON match_data are parsed."""
        link = IdentityLink(
            observation_id_1="a",
            observation_id_2="b",
            link_type="email_exact",
            link_strength=100,
            match_data={"confidence": 0.95},
        )
        assert IdentityLink.from_dict(link.to_dict()) == link

    def test_from_dict_rejects_bad_match_data(self):
        """Test match_data of an unexpected type raises TypeError."""
        row = IdentityLink(
            observation_id_1="a", observation_id_2="b", link_type="x", link_strength=1
        ).to_dict()
        row["match_data"] = 42
        with pytest.raises(TypeError, match="match_data"):
            IdentityLink.from_dict(row)
