"""Base matcher abstract class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from visitorgraph.identity.models import MatchCandidate

if TYPE_CHECKING:
    from visitorgraph.identity.observation import Observation
    from visitorgraph.identity.store import ObservationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchContext:
    """Request-scoped inputs a matcher may need.

    Attributes:
        now: The instant the resolution runs at.
        client_ip: IP of the client whose request triggered resolution.
        site_host: Host of the tracked site.
    """

    now: datetime = field(default_factory=lambda: datetime.now(UTC))
    client_ip: str | None = None
    site_host: str = ""


class Matcher(ABC):
    """Abstract base class for matching algorithms.

    Subclasses must set the class attributes:
    - name: Registry name, also used as the candidate's match_type
    - weight: Static importance of the matcher
    - base_confidence: Confidence reported for every candidate

    and implement lookup().

    Example:
        class EmailExactMatcher(Matcher):
            name = "email_exact"
            weight = 100
            base_confidence = 0.95

            def lookup(self, observation, store, context):
                if not observation.email:
                    return []
                return self._candidates(observation, store.find_by_email(observation.email))
    """

    name: str
    weight: int
    base_confidence: float

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Validate that concrete subclasses define their descriptor attributes."""
        super().__init_subclass__(**kwargs)
        # Skip validation for abstract subclasses
        if ABC in cls.__bases__:
            return
        for attribute in ("name", "weight", "base_confidence"):
            if getattr(cls, attribute, None) is None:
                raise TypeError(f"{cls.__name__} must define a '{attribute}' class attribute")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, weight={self.weight}, "
            f"base_confidence={self.base_confidence})"
        )

    @abstractmethod
    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        """Find observations believed to belong to the same person.

        Args:
            observation: The observation being resolved.
            store: Read-only access to persisted observations.
            context: Request-scoped inputs.

        Returns:
            Candidates, never including the observation itself.
        """
        pass  # pragma: no cover

    def _candidates(
        self,
        observation: Observation,
        matches: Iterable[Observation],
        factors: Iterable[str] = (),
    ) -> list[MatchCandidate]:
        """Build one candidate per distinct matched observation, excluding self."""
        factor_set = frozenset(factors) or frozenset({self.name})
        seen: set[str] = set()
        candidates = []
        for match in matches:
            if match.id == observation.id or match.id in seen:
                continue
            seen.add(match.id)
            candidates.append(
                MatchCandidate(
                    candidate_observation_id=match.id,
                    match_type=self.name,
                    confidence=self.base_confidence,
                    matching_factors=factor_set,
                    collected_at=match.collected_at,
                )
            )
        logger.debug(f"{self.name}: {len(candidates)} candidates for {observation.id}")
        return candidates
