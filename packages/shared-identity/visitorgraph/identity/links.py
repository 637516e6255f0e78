"""Link builder: turns high-confidence candidates into identity links.

The builder is the only writer of identity links. Writes for one unordered
observation pair are serialized so that concurrent resolutions discovering
the same pair cannot create two active links.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

from visitorgraph.identity.events import AttributionEvent, AttributionSink
from visitorgraph.identity.exceptions import PersistenceError
from visitorgraph.identity.models import (
    ConfidenceLevel,
    IdentityLink,
    MatchCandidate,
    pair_key,
)
from visitorgraph.identity.observation import Observation
from visitorgraph.identity.store import ObservationStore

logger = logging.getLogger(__name__)

EMAIL_BONUS = 20.0
PHONE_BONUS = 15.0
FINGERPRINT_BONUS = 10.0
WITHIN_HOUR_BONUS = 10.0
WITHIN_DAY_BONUS = 5.0
MAX_LINK_STRENGTH = 100.0

LOCK_STRIPES = 64


def calculate_link_strength(
    observation: Observation,
    candidate_observation: Observation,
    confidence: float,
) -> float:
    """Combine a candidate's confidence with corroborating-field bonuses.

    Args:
        observation: The observation being resolved.
        candidate_observation: The matched observation.
        confidence: Candidate confidence in [0, 1].

    Returns:
        Link strength in [0, 100].

    Example:
        >>> calculate_link_strength(a, b, 0.95)  # same email
        100.0
    """
    strength = max(0.0, min(1.0, confidence)) * 100.0

    if observation.email and observation.email == candidate_observation.email:
        strength += EMAIL_BONUS
    if observation.phone and observation.phone == candidate_observation.phone:
        strength += PHONE_BONUS
    if (
        observation.device_fingerprint
        and observation.device_fingerprint == candidate_observation.device_fingerprint
    ):
        strength += FINGERPRINT_BONUS

    gap = abs(observation.collected_at - candidate_observation.collected_at)
    if gap < timedelta(hours=1):
        strength += WITHIN_HOUR_BONUS
    elif gap < timedelta(hours=24):
        strength += WITHIN_DAY_BONUS

    return min(MAX_LINK_STRENGTH, strength)


@dataclass(frozen=True)
class LinkWrite:
    """Result of a link write."""

    link: IdentityLink
    created: bool


class LinkBuilder:
    """Create or update identity links for high-confidence candidates.

    Example:
        >>> builder = LinkBuilder(store, sink=InMemoryAttributionSink())
        >>> write = builder.build(observation, candidate_observation, candidate)
        >>> write.created, write.link.link_type
        (True, 'email_exact')
    """

    def __init__(
        self,
        store: ObservationStore,
        sink: AttributionSink | None = None,
        stripes: int = LOCK_STRIPES,
    ) -> None:
        self.store = store
        self.sink = sink
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def build(
        self,
        observation: Observation,
        candidate_observation: Observation,
        candidate: MatchCandidate,
    ) -> LinkWrite:
        """Write the link for one high-confidence candidate.

        Args:
            observation: The observation being resolved.
            candidate_observation: The observation the candidate points at.
            candidate: The high-confidence candidate.

        Returns:
            The stored link and whether it was newly created.

        Raises:
            PersistenceError: If the store read or write fails.
        """
        strength = calculate_link_strength(
            observation, candidate_observation, candidate.confidence
        )
        match_data = candidate.to_dict()
        key = pair_key(observation.id, candidate_observation.id)

        with self._lock_for(key):
            try:
                existing = self.store.get_active_link(*key)
                if existing is not None:
                    link = replace(
                        existing,
                        link_type=candidate.match_type,
                        link_strength=strength,
                        match_data=match_data,
                        updated_at=datetime.now(UTC),
                    )
                else:
                    link = IdentityLink(
                        observation_id_1=observation.id,
                        observation_id_2=candidate_observation.id,
                        link_type=candidate.match_type,
                        link_strength=strength,
                        confidence_level=ConfidenceLevel.HIGH,
                        match_data=match_data,
                    )
                stored = self.store.save_link(link)
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(
                    f"Failed to write link {key[0]} <-> {key[1]}: {e}"
                ) from e

        created = existing is None
        logger.info(
            f"{'Created' if created else 'Updated'} {candidate.match_type} link "
            f"{stored.id} ({key[0]} <-> {key[1]}, strength {strength})"
        )
        self._emit(stored, candidate.match_type, created)
        return LinkWrite(link=stored, created=created)

    def _emit(self, link: IdentityLink, matcher: str, created: bool) -> None:
        if self.sink is None:
            return
        event = AttributionEvent(
            observation_id_1=link.observation_id_1,
            observation_id_2=link.observation_id_2,
            link_strength=link.link_strength,
            matcher=matcher,
            created=created,
        )
        try:
            self.sink.emit(event)
        except Exception:
            # Link is already persisted; do not undo it
            logger.exception(f"Failed to emit attribution event for link {link.id}")
