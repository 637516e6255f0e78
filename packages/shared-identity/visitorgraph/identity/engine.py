"""Identity resolution engine: the public entry point.

Example:
    >>> engine = IdentityResolutionEngine(InMemoryObservationStore())
    >>> first = engine.record_observation(
    ...     Observation(source=ObservationSource.FORM_SUBMISSION, email="user@x.com")
    ... )
    >>> result = engine.ingest(
    ...     Observation(source=ObservationSource.ECOMMERCE_ORDER, email="user@x.com")
    ... )
    >>> [(link.link_type, link.link_strength) for link in result.high]
    [('email_exact', 100.0)]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from visitorgraph.identity.aggregator import CandidateAggregator
from visitorgraph.identity.config import ResolutionConfig
from visitorgraph.identity.events import AttributionSink, ResolutionEvent, ResolutionSink
from visitorgraph.identity.exceptions import (
    PersistenceError,
    UnknownObservationError,
    ValidationError,
)
from visitorgraph.identity.links import LinkBuilder
from visitorgraph.identity.matchers.base import MatchContext
from visitorgraph.identity.matchers.registry import MatcherRegistry
from visitorgraph.identity.models import IdentityLink, MatchCandidate, ResolutionResult
from visitorgraph.identity.observation import (
    Observation,
    normalize_observation,
    parse_timestamp,
)
from visitorgraph.identity.review import ReviewDispatcher, ReviewQueue
from visitorgraph.identity.store import ObservationStore

logger = logging.getLogger(__name__)


class IdentityResolutionEngine:
    """Record observations and link them into an identity graph.

    The engine keeps no state between calls apart from what the store
    holds, so one instance can serve concurrent requests.

    Args:
        store: Persistence store for observations and links.
        config: Resolution settings. Defaults to ResolutionConfig().
        registry: Matchers to run. Defaults to MatcherRegistry.default(config).
        review_queue: Receives medium-confidence candidates. Optional.
        attribution_sink: Receives link events. Optional.
        resolution_sink: Receives every candidate of each resolution pass. Optional.
    """

    def __init__(
        self,
        store: ObservationStore,
        config: ResolutionConfig | None = None,
        registry: MatcherRegistry | None = None,
        review_queue: ReviewQueue | None = None,
        attribution_sink: AttributionSink | None = None,
        resolution_sink: ResolutionSink | None = None,
    ):
        self.config = config or ResolutionConfig()
        self.store = store
        self.registry = registry if registry is not None else MatcherRegistry.default(self.config)
        self.aggregator = CandidateAggregator(
            self.registry,
            store,
            max_workers=self.config.max_workers,
            matcher_timeout=self.config.matcher_timeout,
            high_threshold=self.config.high_confidence_threshold,
            medium_threshold=self.config.medium_confidence_threshold,
        )
        self.link_builder = LinkBuilder(store, attribution_sink)
        self.review_dispatcher = (
            ReviewDispatcher(review_queue) if review_queue is not None else None
        )
        self.resolution_sink = resolution_sink

    def record_observation(self, observation: Observation) -> str:
        """Normalize and persist an observation.

        Args:
            observation: Raw observation. An id is assigned if it has none.

        Returns:
            The stored observation's id.

        Raises:
            ValidationError: If email or phone cannot be normalized.
            PersistenceError: If the store write fails.
        """
        normalized = normalize_observation(observation, self.config.email_hash_salt)
        self._call_store("save observation", self.store.save_observation, normalized)
        logger.info(f"Recorded {normalized.source.value} observation {normalized.id}")
        return normalized.id

    def resolve(
        self,
        observation_id: str,
        *,
        now: datetime | str | None = None,
        client_ip: str | None = None,
    ) -> ResolutionResult:
        """Run every matcher for a stored observation and act on the results.

        High-confidence candidates become identity links, medium ones go to
        the review queue, and the rest are dropped.

        Args:
            observation_id: Id returned by record_observation().
            now: Reference time for time-windowed matchers. Defaults to now.
            client_ip: IP of the current request, for household clustering.

        Returns:
            Links written, candidates sent for review, and matcher diagnostics.

        Raises:
            UnknownObservationError: If the id is not stored.
            PersistenceError: If loading observations or writing a link fails.
        """
        observation = self._load(observation_id)
        context = MatchContext(
            now=parse_timestamp(now) if now else datetime.now(UTC),
            client_ip=client_ip,
            site_host=self.config.site_host,
        )

        merged = self.aggregator.collect(observation, context)
        tiers = self.aggregator.partition(merged.candidates)
        result = ResolutionResult(
            observation_id=observation_id,
            discarded=len(tiers.discarded),
            diagnostics=merged.diagnostics,
        )

        # Candidates are sorted, so the first per id is the most confident
        linked: set[str] = set()
        for candidate in tiers.high:
            candidate_id = candidate.candidate_observation_id
            if candidate_id in linked:
                continue
            candidate_observation = self._load(candidate_id)
            write = self.link_builder.build(observation, candidate_observation, candidate)
            linked.add(candidate_id)
            result.high.append(write.link)

        reviewed: set[str] = set()
        for candidate in tiers.medium:
            candidate_id = candidate.candidate_observation_id
            if candidate_id in linked or candidate_id in reviewed:
                continue
            reviewed.add(candidate_id)
            result.medium.append(candidate)

        if self.review_dispatcher is not None and result.medium:
            self.review_dispatcher.dispatch(observation_id, result.medium)

        self._publish(result, merged.candidates)

        logger.info(
            f"Resolved {observation_id}: {len(result.high)} linked, "
            f"{len(result.medium)} for review, {result.discarded} discarded"
        )
        return result

    def get_links(self, observation_id: str) -> list[IdentityLink]:
        """Return active links touching an observation (one hop).

        Raises:
            PersistenceError: If the store read fails.
        """
        return self._call_store("read links", self.store.links_for, observation_id, True)

    def ingest(
        self,
        observation: Observation,
        *,
        now: datetime | str | None = None,
        client_ip: str | None = None,
    ) -> ResolutionResult:
        """Record an observation and resolve it immediately."""
        observation_id = self.record_observation(observation)
        return self.resolve(observation_id, now=now, client_ip=client_ip)

    def ingest_batch(
        self,
        observations: Iterable[Observation],
        *,
        now: datetime | str | None = None,
    ) -> list[ResolutionResult]:
        """Ingest observations in order, skipping ones that fail validation.

        Observations later in the batch can match ones recorded earlier.

        Raises:
            PersistenceError: If a store read or write fails.
        """
        results = []
        skipped = 0
        for observation in observations:
            try:
                results.append(self.ingest(observation, now=now))
            except ValidationError as e:
                skipped += 1
                logger.warning(f"Skipping invalid {observation.source.value} observation: {e}")
        logger.info(f"Ingested {len(results)} observations ({skipped} invalid)")
        return results

    def candidates_for(
        self,
        observation_id: str,
        *,
        now: datetime | str | None = None,
        client_ip: str | None = None,
    ) -> list[MatchCandidate]:
        """Return merged candidates for an observation without writing anything.

        Raises:
            UnknownObservationError: If the id is not stored.
        """
        observation = self._load(observation_id)
        context = MatchContext(
            now=parse_timestamp(now) if now else datetime.now(UTC),
            client_ip=client_ip,
            site_host=self.config.site_host,
        )
        return self.aggregator.collect(observation, context).candidates

    def _publish(self, result: ResolutionResult, candidates: list[MatchCandidate]) -> None:
        if self.resolution_sink is None:
            return
        event = ResolutionEvent(
            observation_id=result.observation_id,
            candidates=tuple(candidates),
            linked_observation_ids=tuple(result.linked_observation_ids),
            reviewed_observation_ids=tuple(
                c.candidate_observation_id for c in result.medium
            ),
            site_host=self.config.site_host,
        )
        try:
            self.resolution_sink.publish(event)
        except Exception:
            # Links and review items are already written
            logger.exception(f"Failed to publish resolution of {result.observation_id}")

    def _load(self, observation_id: str) -> Observation:
        observation = self._call_store(
            "read observation", self.store.get_observation, observation_id
        )
        if observation is None:
            raise UnknownObservationError(observation_id)
        return observation

    def _call_store(self, action: str, method: Any, *args: Any) -> Any:
        try:
            return method(*args)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to {action}: {e}") from e
