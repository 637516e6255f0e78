"""Review dispatch for medium-confidence candidates."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from visitorgraph.identity.exceptions import DispatchError
from visitorgraph.identity.models import MatchCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewItem:
    """A medium-confidence candidate awaiting human or offline review."""

    observation_id: str
    candidate: MatchCandidate
    queued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def confidence(self) -> float:
        return self.candidate.confidence

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "observation_id": self.observation_id,
            "candidate": self.candidate.to_dict(),
            "confidence": self.confidence,
            "queued_at": self.queued_at.isoformat(),
        }


class ReviewQueue(ABC):
    """Queue receiving review items.

    Implementations raise DispatchError when an item cannot be enqueued.
    """

    @abstractmethod
    def enqueue(self, item: ReviewItem) -> None:
        pass  # pragma: no cover


class InMemoryReviewQueue(ReviewQueue):
    """List-backed review queue."""

    def __init__(self) -> None:
        self._items: list[ReviewItem] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def items(self) -> list[ReviewItem]:
        with self._lock:
            return list(self._items)

    def enqueue(self, item: ReviewItem) -> None:
        with self._lock:
            self._items.append(item)

    def drain(self) -> list[ReviewItem]:
        """Remove and return all queued items."""
        with self._lock:
            items, self._items = self._items, []
        return items


class ReviewDispatcher:
    """Send medium-confidence candidates to a review queue.

    Enqueue failures are logged and skipped. A missed review lowers recall
    but never creates or removes a link.
    """

    def __init__(self, queue: ReviewQueue) -> None:
        self.queue = queue

    def dispatch(self, observation_id: str, candidates: list[MatchCandidate]) -> int:
        """Enqueue one review item per candidate.

        Args:
            observation_id: The observation being resolved.
            candidates: Medium-confidence candidates.

        Returns:
            Number of items successfully enqueued.
        """
        enqueued = 0
        for candidate in candidates:
            item = ReviewItem(observation_id=observation_id, candidate=candidate)
            try:
                self.queue.enqueue(item)
            except Exception as e:
                error = e if isinstance(e, DispatchError) else DispatchError(str(e))
                logger.warning(
                    f"Failed to enqueue review of {candidate.candidate_observation_id} "
                    f"for {observation_id}: {error}"
                )
                continue
            enqueued += 1

        if candidates:
            logger.info(
                f"Dispatched {enqueued}/{len(candidates)} review candidates for {observation_id}"
            )
        return enqueued
