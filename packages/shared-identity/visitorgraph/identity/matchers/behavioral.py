"""Behavioral pattern matcher.

Links sessions that share no identifier by comparing behavioral signatures.
Sessions without navigation or interaction telemetry are never matched.
The candidate scan is bounded (lookback window, candidate cap, query
timeout) and each surviving candidate's confidence is its similarity score.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from visitorgraph.identity.config import ResolutionConfig
from visitorgraph.identity.matchers.base import MatchContext, Matcher
from visitorgraph.identity.models import MatchCandidate
from visitorgraph.identity.observation import Observation
from visitorgraph.identity.signature import extract_signature
from visitorgraph.identity.similarity import BehavioralSimilarityScorer
from visitorgraph.identity.store import ObservationStore

logger = logging.getLogger(__name__)


class BehavioralPatternMatcher(Matcher):
    """Similarity-scored matching on session behavior.

    Example:
        >>> matcher = BehavioralPatternMatcher(ResolutionConfig())
        >>> candidates = matcher.lookup(observation, store, MatchContext())
        >>> all(c.confidence >= 0.6 for c in candidates)
        True
    """

    name = "behavioral_pattern"
    weight = 50
    # Unused; each candidate reports its own similarity score
    base_confidence = 0.0

    def __init__(
        self,
        config: ResolutionConfig | None = None,
        scorer: BehavioralSimilarityScorer | None = None,
    ) -> None:
        self.config = config or ResolutionConfig()
        self.scorer = scorer or BehavioralSimilarityScorer(
            self.config.weights, self.config.tolerances
        )

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        if not observation.session_id:
            return []

        current = extract_signature(observation, context.now, context.site_host)
        if not current.has_telemetry:
            logger.debug(f"{self.name}: no session telemetry on {observation.id}")
            return []

        config = self.config
        hour = context.now.hour
        hour_range = (
            max(0, hour - config.behavioral_hour_window),
            min(23, hour + config.behavioral_hour_window),
        )

        pool = store.find_behavioral_candidates(
            observation,
            since=context.now - timedelta(days=config.behavioral_lookback_days),
            hour_range=hour_range,
            limit=config.behavioral_candidate_limit,
            timeout=config.behavioral_query_timeout,
        )

        scored: list[MatchCandidate] = []
        for candidate in pool[: config.behavioral_candidate_limit]:
            if candidate.id == observation.id:
                continue
            signature = extract_signature(candidate, context.now, context.site_host)
            if not signature.has_telemetry:
                continue
            result = self.scorer.score(current, signature)
            if result.score < config.behavioral_min_similarity:
                continue
            scored.append(
                MatchCandidate(
                    candidate_observation_id=candidate.id,
                    match_type=self.name,
                    confidence=result.score,
                    matching_factors=result.matching_factors,
                    collected_at=candidate.collected_at,
                )
            )

        scored.sort(key=lambda c: c.confidence, reverse=True)
        logger.debug(
            f"{self.name}: {len(scored)} of {len(pool)} candidates above "
            f"{config.behavioral_min_similarity} for {observation.id}"
        )
        return scored[: config.behavioral_max_results]
