"""Candidate aggregation across matchers.

Runs every registered matcher for an observation, isolates failures, merges
the candidates, and partitions them into confidence tiers.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from visitorgraph.identity.exceptions import MatcherError
from visitorgraph.identity.matchers.base import MatchContext, Matcher
from visitorgraph.identity.matchers.registry import MatcherRegistry
from visitorgraph.identity.models import MatchCandidate, MatcherDiagnostic
from visitorgraph.identity.observation import Observation
from visitorgraph.identity.store import ObservationStore

logger = logging.getLogger(__name__)

DEFAULT_HIGH_THRESHOLD = 0.8
DEFAULT_MEDIUM_THRESHOLD = 0.5


@dataclass
class AggregatedCandidates:
    """Merged matcher output for one observation."""

    candidates: list[MatchCandidate] = field(default_factory=list)
    diagnostics: list[MatcherDiagnostic] = field(default_factory=list)


@dataclass
class TieredCandidates:
    """Candidates partitioned by confidence."""

    high: list[MatchCandidate] = field(default_factory=list)
    medium: list[MatchCandidate] = field(default_factory=list)
    discarded: list[MatchCandidate] = field(default_factory=list)


class CandidateAggregator:
    """Run matchers concurrently and merge their candidates.

    Matchers are independent read-only queries, so they run on a thread
    pool. A matcher that raises or overruns `matcher_timeout` contributes no
    candidates and is reported as a diagnostic; it never fails the pass.

    Example:
        >>> aggregator = CandidateAggregator(MatcherRegistry.default(), store)
        >>> merged = aggregator.collect(observation, MatchContext())
        >>> tiers = aggregator.partition(merged.candidates)
        >>> [c.match_type for c in tiers.high]
        ['email_exact']
    """

    def __init__(
        self,
        registry: MatcherRegistry,
        store: ObservationStore,
        max_workers: int = 8,
        matcher_timeout: float | None = 10.0,
        high_threshold: float = DEFAULT_HIGH_THRESHOLD,
        medium_threshold: float = DEFAULT_MEDIUM_THRESHOLD,
    ) -> None:
        if medium_threshold >= high_threshold:
            raise ValueError("medium_threshold must be lower than high_threshold")
        self.registry = registry
        self.store = store
        self.max_workers = max_workers
        self.matcher_timeout = matcher_timeout
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold

    def collect(self, observation: Observation, context: MatchContext) -> AggregatedCandidates:
        """Run every matcher and merge candidates, highest confidence first.

        The sort is stable, so candidates with equal confidence keep
        registry order.
        """
        matchers = list(self.registry)
        if not matchers:
            return AggregatedCandidates()

        if self.max_workers <= 1:
            outcomes = [self._run_inline(m, observation, context) for m in matchers]
        else:
            outcomes = self._run_concurrently(matchers, observation, context)

        result = AggregatedCandidates()
        for candidates, diagnostic in outcomes:
            result.candidates.extend(candidates)
            if diagnostic is not None:
                result.diagnostics.append(diagnostic)

        result.candidates.sort(key=lambda c: c.confidence, reverse=True)
        logger.info(
            f"Collected {len(result.candidates)} candidates for {observation.id} "
            f"from {len(matchers)} matchers ({len(result.diagnostics)} failed)"
        )
        return result

    def partition(self, candidates: list[MatchCandidate]) -> TieredCandidates:
        """Split candidates into high, medium and discard tiers by confidence."""
        tiers = TieredCandidates()
        for candidate in candidates:
            if candidate.confidence >= self.high_threshold:
                tiers.high.append(candidate)
            elif candidate.confidence >= self.medium_threshold:
                tiers.medium.append(candidate)
            else:
                tiers.discarded.append(candidate)
        return tiers

    def _run_inline(
        self,
        matcher: Matcher,
        observation: Observation,
        context: MatchContext,
    ) -> tuple[list[MatchCandidate], MatcherDiagnostic | None]:
        try:
            return matcher.lookup(observation, self.store, context), None
        except Exception as e:
            return [], self._diagnose(matcher, e)

    def _run_concurrently(
        self,
        matchers: list[Matcher],
        observation: Observation,
        context: MatchContext,
    ) -> list[tuple[list[MatchCandidate], MatcherDiagnostic | None]]:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(matchers)),
            thread_name_prefix="matcher",
        )
        try:
            futures: list[Future[list[MatchCandidate]]] = [
                executor.submit(m.lookup, observation, self.store, context) for m in matchers
            ]
            wait(futures, timeout=self.matcher_timeout)

            outcomes = []
            for matcher, future in zip(matchers, futures, strict=True):
                if not future.done():
                    future.cancel()
                    error = TimeoutError(f"timed out after {self.matcher_timeout}s")
                    outcomes.append(([], self._diagnose(matcher, error)))
                    continue
                exc = future.exception()
                if exc is not None:
                    outcomes.append(([], self._diagnose(matcher, exc)))
                else:
                    outcomes.append((future.result(), None))
            return outcomes
        finally:
            # Do not block on matchers that overran their timeout
            executor.shutdown(wait=False, cancel_futures=True)

    def _diagnose(self, matcher: Matcher, error: BaseException) -> MatcherDiagnostic:
        failure = MatcherError(matcher.name, str(error))
        logger.warning(f"{failure} ({type(error).__name__})")
        return MatcherDiagnostic(
            matcher=matcher.name,
            error=str(error),
            error_type=type(error).__name__,
        )
