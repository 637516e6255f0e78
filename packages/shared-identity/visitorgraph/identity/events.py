"""Events emitted while observations are resolved.

Attribution events are emitted when identity links are written; downstream
attribution consumers use them to recalculate credit across the
observations that now belong to one visitor. Resolution events carry the
full candidate set of one resolution pass, for consolidating identities
across sites.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from visitorgraph.identity.models import MatchCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributionEvent:
    """Notification that a high-confidence link was created or strengthened."""

    observation_id_1: str
    observation_id_2: str
    link_strength: float
    matcher: str
    created: bool = True
    emitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "observation_id_1": self.observation_id_1,
            "observation_id_2": self.observation_id_2,
            "link_strength": self.link_strength,
            "matcher": self.matcher,
            "created": self.created,
            "emitted_at": self.emitted_at.isoformat(),
        }


class AttributionSink(ABC):
    """Receiver of attribution events.

    Implementations raise DispatchError when an event cannot be delivered.
    """

    @abstractmethod
    def emit(self, event: AttributionEvent) -> None:
        """Deliver one event."""
        pass  # pragma: no cover


class InMemoryAttributionSink(AttributionSink):
    """Collects events in a list. Useful for tests and local runs."""

    def __init__(self) -> None:
        self._events: list[AttributionEvent] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> list[AttributionEvent]:
        """Events received so far, oldest first."""
        with self._lock:
            return list(self._events)

    def emit(self, event: AttributionEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.debug(
            f"Attribution event {event.observation_id_1} <-> {event.observation_id_2} "
            f"({event.matcher}, strength {event.link_strength})"
        )

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


@dataclass(frozen=True)
class ResolutionEvent:
    """Every candidate found for one observation in one resolution pass.

    Candidates include the ones below the review threshold, so the receiver
    can apply its own cut-offs.
    """

    observation_id: str
    candidates: tuple[MatchCandidate, ...]
    linked_observation_ids: tuple[str, ...] = ()
    reviewed_observation_ids: tuple[str, ...] = ()
    site_host: str = ""
    emitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "observation_id": self.observation_id,
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "linked_observation_ids": list(self.linked_observation_ids),
            "reviewed_observation_ids": list(self.reviewed_observation_ids),
            "site_host": self.site_host,
            "emitted_at": self.emitted_at.isoformat(),
        }


class ResolutionSink(ABC):
    """Receiver of resolution events.

    Implementations raise DispatchError when an event cannot be delivered.
    """

    @abstractmethod
    def publish(self, event: ResolutionEvent) -> None:
        """Deliver one event."""
        pass  # pragma: no cover


class InMemoryResolutionSink(ResolutionSink):
    """Collects resolution events in a list."""

    def __init__(self) -> None:
        self._events: list[ResolutionEvent] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> list[ResolutionEvent]:
        with self._lock:
            return list(self._events)

    def publish(self, event: ResolutionEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.debug(
            f"Resolution event for {event.observation_id} "
            f"({len(event.candidates)} candidates)"
        )

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
