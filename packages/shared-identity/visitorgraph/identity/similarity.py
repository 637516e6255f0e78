"""Behavioral similarity scoring between two sessions.

The score is a weighted sum of six independently normalized sub-scores
(temporal, navigation, interaction, device, engagement, referral). Every
sub-score depends only on equality or absolute differences of the two
signatures' fields, so the score is symmetric in its arguments. Sessions
that reported no navigation or interaction telemetry carry no behavioral
evidence and score 0.0.
"""

from __future__ import annotations

from dataclasses import dataclass

from visitorgraph.identity.config import SimilarityTolerances, SimilarityWeights
from visitorgraph.identity.signature import BehavioralSignature

# Sub-score above which the corresponding factor is reported as matching
PATTERN_FACTOR_THRESHOLD = 0.6

SIMILAR_HOURS_WINDOW = 2


@dataclass(frozen=True)
class SimilarityResult:
    """Similarity score in [0, 1] plus the factors that matched."""

    score: float
    matching_factors: frozenset[str] = frozenset()


def tolerance_similarity(a: float, b: float, tolerance: float) -> float:
    """Return ``max(0, 1 - |a - b| / tolerance)``.

    Examples:
        >>> tolerance_similarity(1, 11, 10)
        0.0
        >>> tolerance_similarity(300, 450, 600)
        0.75
    """
    return max(0.0, 1.0 - abs(a - b) / tolerance)


class BehavioralSimilarityScorer:
    """Score how alike two behavioral signatures are.

    Example:
        >>> scorer = BehavioralSimilarityScorer()
        >>> result = scorer.score(signature_a, signature_b)
        >>> result.score >= 0.6
        True
        >>> sorted(result.matching_factors)
        ['browser_family', 'device_type', 'time_of_day', ...]
    """

    def __init__(
        self,
        weights: SimilarityWeights | None = None,
        tolerances: SimilarityTolerances | None = None,
    ) -> None:
        self.weights = weights or SimilarityWeights()
        self.tolerances = tolerances or SimilarityTolerances()

    def score(self, a: BehavioralSignature, b: BehavioralSignature) -> SimilarityResult:
        """Compute the weighted similarity of two signatures.

        Args:
            a: First signature.
            b: Second signature.

        Returns:
            SimilarityResult with the score capped to [0, 1] and the set of
            matching factor tags. A signature without behavioral telemetry
            scores 0.0 against anything.
        """
        if not (a.has_telemetry and b.has_telemetry):
            return SimilarityResult(score=0.0)

        factors: set[str] = set()

        temporal = self.temporal_similarity(a, b)
        if a.time_category == b.time_category:
            factors.add("time_of_day")
        if abs(a.hour_of_day - b.hour_of_day) <= SIMILAR_HOURS_WINDOW:
            factors.add("similar_hours")

        navigation = self.navigation_similarity(a, b)
        if navigation > PATTERN_FACTOR_THRESHOLD:
            factors.add("navigation_pattern")

        interaction = self.interaction_similarity(a, b)
        if interaction > PATTERN_FACTOR_THRESHOLD:
            factors.add("interaction_pattern")

        device = self.device_similarity(a, b)
        if a.device_type == b.device_type:
            factors.add("device_type")
        if a.browser_family == b.browser_family:
            factors.add("browser_family")

        engagement = self.engagement_similarity(a, b)
        if a.engagement_level == b.engagement_level:
            factors.add("engagement_level")

        referral = self.referral_similarity(a, b)
        if a.referrer_type == b.referrer_type:
            factors.add("referrer_type")
        if a.utm_source and a.utm_source == b.utm_source:
            factors.add("utm_source")

        w = self.weights
        total = (
            temporal * w.temporal
            + navigation * w.navigation
            + interaction * w.interaction
            + device * w.device
            + engagement * w.engagement
            + referral * w.referral
        )

        return SimilarityResult(
            score=max(0.0, min(total, 1.0)),
            matching_factors=frozenset(factors),
        )

    def temporal_similarity(self, a: BehavioralSignature, b: BehavioralSignature) -> float:
        """0.6 for the same time category plus 0.4 for hours within two of each other."""
        similarity = 0.0
        if a.time_category == b.time_category:
            similarity += 0.6
        if abs(a.hour_of_day - b.hour_of_day) <= SIMILAR_HOURS_WINDOW:
            similarity += 0.4
        return similarity

    def navigation_similarity(self, a: BehavioralSignature, b: BehavioralSignature) -> float:
        """Weighted closeness of pages visited, session duration and time per page."""
        t = self.tolerances
        return (
            tolerance_similarity(a.pages_visited, b.pages_visited, t.pages_visited)
            * t.pages_visited_weight
            + tolerance_similarity(a.session_duration, b.session_duration, t.session_duration)
            * t.session_duration_weight
            + tolerance_similarity(a.avg_time_per_page, b.avg_time_per_page, t.avg_time_per_page)
            * t.avg_time_per_page_weight
        )

    def interaction_similarity(self, a: BehavioralSignature, b: BehavioralSignature) -> float:
        """Weighted closeness of clicks, scroll depth and form interactions."""
        t = self.tolerances
        return (
            tolerance_similarity(a.click_count, b.click_count, t.click_count)
            * t.click_count_weight
            + tolerance_similarity(a.scroll_depth, b.scroll_depth, t.scroll_depth)
            * t.scroll_depth_weight
            + tolerance_similarity(a.form_interactions, b.form_interactions, t.form_interactions)
            * t.form_interactions_weight
        )

    def device_similarity(self, a: BehavioralSignature, b: BehavioralSignature) -> float:
        similarity = 0.0
        if a.device_type == b.device_type:
            similarity += 0.5
        if a.browser_family == b.browser_family:
            similarity += 0.5
        return similarity

    def engagement_similarity(self, a: BehavioralSignature, b: BehavioralSignature) -> float:
        difference = abs(a.engagement_level - b.engagement_level)
        if difference == 0:
            return 1.0
        if difference == 1:
            return 0.5
        return 0.0

    def referral_similarity(self, a: BehavioralSignature, b: BehavioralSignature) -> float:
        """0.7 for the same referrer type; a shared non-empty UTM source scores 1.0."""
        if a.utm_source and a.utm_source == b.utm_source:
            return 1.0
        if a.referrer_type == b.referrer_type:
            return 0.7
        return 0.0
