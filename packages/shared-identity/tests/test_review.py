"""Tests for review dispatch and attribution events."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

from visitorgraph.identity.events import AttributionEvent, InMemoryAttributionSink
from visitorgraph.identity.exceptions import DispatchError
from visitorgraph.identity.models import MatchCandidate
from visitorgraph.identity.review import (
    InMemoryReviewQueue,
    ReviewDispatcher,
    ReviewItem,
)


def medium(observation_id: str, confidence: float = 0.6) -> MatchCandidate:
    return MatchCandidate(
        candidate_observation_id=observation_id,
        match_type="behavioral",
        confidence=confidence,
        matching_factors=frozenset({"device_type"}),
    )


class TestReviewItem:
    """Tests for ReviewItem."""

    def test_confidence_comes_from_candidate(self):
        """Test the item exposes its candidate's confidence."""
        item = ReviewItem(observation_id="obs-1", candidate=medium("obs-2", 0.65))
        assert item.confidence == 0.65

    def test_to_dict(self):
        """Test items serialize with the nested candidate."""
        data = ReviewItem(observation_id="obs-1", candidate=medium("obs-2")).to_dict()

        assert data["observation_id"] == "obs-1"
        assert data["candidate"]["candidate_observation_id"] == "obs-2"
        assert data["candidate"]["matching_factors"] == ["device_type"]
        assert "queued_at" in data


class TestInMemoryReviewQueue:
    """Tests for InMemoryReviewQueue."""

    def test_enqueue_and_drain(self):
        """Test drain returns items in order and empties the queue."""
        queue = InMemoryReviewQueue()
        queue.enqueue(ReviewItem(observation_id="a", candidate=medium("b")))
        queue.enqueue(ReviewItem(observation_id="a", candidate=medium("c")))

        assert len(queue) == 2
        drained = queue.drain()

        assert [i.candidate.candidate_observation_id for i in drained] == ["b", "c"]
        assert len(queue) == 0
        assert queue.items == []


class TestReviewDispatcher:
    """Tests for ReviewDispatcher."""

    def test_dispatches_one_item_per_candidate(self):
        """Test every candidate is enqueued against the resolved observation."""
        queue = InMemoryReviewQueue()
        enqueued = ReviewDispatcher(queue).dispatch("obs-1", [medium("b"), medium("c")])

        assert enqueued == 2
        assert {i.observation_id for i in queue.items} == {"obs-1"}

    def test_failures_are_skipped(self, caplog):
        """Test a failing enqueue is logged and the rest still go out."""
        delivered = []

        def enqueue(item):
            if item.candidate.candidate_observation_id == "bad":
                raise DispatchError("queue unavailable")
            delivered.append(item)

        queue = MagicMock()
        queue.enqueue.side_effect = enqueue

        with caplog.at_level(logging.WARNING):
            enqueued = ReviewDispatcher(queue).dispatch(
                "obs-1", [medium("bad"), medium("good")]
            )

        assert enqueued == 1
        assert [i.candidate.candidate_observation_id for i in delivered] == ["good"]
        assert "queue unavailable" in caplog.text

    def test_unexpected_errors_are_skipped(self):
        """Test non-dispatch exceptions are also contained."""
        queue = MagicMock()
        queue.enqueue.side_effect = ConnectionError("reset")

        assert ReviewDispatcher(queue).dispatch("obs-1", [medium("b")]) == 0

    def test_nothing_to_dispatch(self):
        """Test an empty candidate list enqueues nothing."""
        queue = MagicMock()
        assert ReviewDispatcher(queue).dispatch("obs-1", []) == 0
        queue.enqueue.assert_not_called()


class TestAttributionEvents:
    """Tests for AttributionEvent and InMemoryAttributionSink."""

    def test_to_dict(self):
        """Test events serialize their link details."""
        event = AttributionEvent(
            observation_id_1="a", observation_id_2="b", link_strength=90.0, matcher="phone_exact"
        )
        data = event.to_dict()

        assert data["matcher"] == "phone_exact"
        assert data["link_strength"] == 90.0
        assert data["created"] is True

    def test_sink_collects_and_clears(self):
        """Test the in-memory sink records events until cleared."""
        sink = InMemoryAttributionSink()
        event = AttributionEvent(
            observation_id_1="a", observation_id_2="b", link_strength=90.0, matcher="x"
        )
        sink.emit(event)

        assert sink.events == [event]
        sink.clear()
        assert sink.events == []
