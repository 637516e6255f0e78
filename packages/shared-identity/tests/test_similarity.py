"""Tests for behavioral similarity scoring."""

from __future__ import annotations

import itertools

import pytest
from visitorgraph.identity.config import SimilarityWeights
from visitorgraph.identity.signature import ReferrerType
from visitorgraph.identity.similarity import (
    BehavioralSimilarityScorer,
    tolerance_similarity,
)


@pytest.fixture
def scorer() -> BehavioralSimilarityScorer:
    """Scorer with default weights and tolerances."""
    return BehavioralSimilarityScorer()


class TestToleranceSimilarity:
    """Tests for tolerance_similarity."""

    def test_identical_is_one(self):
        """Test equal values are fully similar."""
        assert tolerance_similarity(5, 5, 10) == 1.0

    def test_at_tolerance_is_zero(self):
        """Test a difference equal to the tolerance scores zero."""
        assert tolerance_similarity(1, 11, 10) == 0.0

    def test_beyond_tolerance_clamped(self):
        """Test larger differences never go negative."""
        assert tolerance_similarity(0, 100, 10) == 0.0

    def test_linear(self):
        """Test the similarity falls linearly with the difference."""
        assert tolerance_similarity(300, 450, 600) == pytest.approx(0.75)


class TestSubScores:
    """Tests for the individual sub-scores."""

    def test_temporal_one_hour_apart_same_category(self, scorer, make_signature):
        """Test hours one apart in the same category score 0.6 + 0.4."""
        a = make_signature(hour_of_day=14, time_category="afternoon")
        b = make_signature(hour_of_day=15, time_category="afternoon")
        assert scorer.temporal_similarity(a, b) == pytest.approx(1.0)

    def test_temporal_far_apart(self, scorer, make_signature):
        """Test distant hours in different categories score zero."""
        a = make_signature(hour_of_day=9, time_category="morning")
        b = make_signature(hour_of_day=21, time_category="night")
        assert scorer.temporal_similarity(a, b) == 0.0

    def test_device(self, scorer, make_signature):
        """Test device and browser each contribute half."""
        a = make_signature(device_type="desktop", browser_family="chrome")
        assert scorer.device_similarity(a, make_signature(browser_family="firefox")) == 0.5
        assert scorer.device_similarity(a, a) == 1.0

    def test_engagement(self, scorer, make_signature):
        """Test engagement levels score 1.0, 0.5 or 0 by distance."""
        a = make_signature(engagement_level=3)
        assert scorer.engagement_similarity(a, make_signature(engagement_level=3)) == 1.0
        assert scorer.engagement_similarity(a, make_signature(engagement_level=4)) == 0.5
        assert scorer.engagement_similarity(a, make_signature(engagement_level=5)) == 0.0

    def test_referral_utm_overrides(self, scorer, make_signature):
        """Test a shared UTM source beats a referrer type match."""
        a = make_signature(referrer_type=ReferrerType.SEARCH, utm_source="newsletter")
        b = make_signature(referrer_type=ReferrerType.SOCIAL, utm_source="newsletter")
        c = make_signature(referrer_type=ReferrerType.SEARCH)
        assert scorer.referral_similarity(a, b) == 1.0
        assert scorer.referral_similarity(a, c) == 0.7

    def test_empty_utm_does_not_match(self, scorer, make_signature):
        """Test two empty UTM sources do not count as shared."""
        a = make_signature(referrer_type=ReferrerType.SEARCH)
        b = make_signature(referrer_type=ReferrerType.SOCIAL)
        assert scorer.referral_similarity(a, b) == 0.0


class TestScore:
    """Tests for the combined score."""

    def test_identical_signatures_score_one(self, scorer, make_signature):
        """Test a signature with a UTM source is fully similar to itself."""
        signature = make_signature(utm_source="google")
        result = scorer.score(signature, signature)
        assert result.score == pytest.approx(1.0)
        assert {"time_of_day", "device_type", "browser_family", "engagement_level"} <= (
            result.matching_factors
        )

    def test_without_utm_referral_caps_at_seventy_percent(self, scorer, make_signature):
        """Test identical signatures without UTM lose 0.3 of the referral weight."""
        signature = make_signature()
        assert scorer.score(signature, signature).score == pytest.approx(0.97)

    def test_empty_telemetry_scores_zero(self, scorer, make_signature):
        """Test sessions without telemetry carry no behavioral evidence."""
        empty = make_signature(
            pages_visited=0,
            session_duration=0.0,
            avg_time_per_page=0.0,
            click_count=0,
            scroll_depth=0.0,
            form_interactions=0,
            engagement_level=1,
        )

        assert scorer.score(empty, empty).score == 0.0
        assert scorer.score(empty, empty).matching_factors == frozenset()
        assert scorer.score(empty, make_signature()).score == 0.0
        assert scorer.score(make_signature(), empty).score == 0.0

    def test_temporal_contributes_fifteen_percent(self, scorer, make_signature):
        """Test signatures differing only by one hour lose nothing on temporal."""
        a = make_signature(hour_of_day=14)
        b = make_signature(hour_of_day=15)
        result = scorer.score(a, b)

        assert scorer.temporal_similarity(a, b) * scorer.weights.temporal == pytest.approx(0.15)
        assert result.score == pytest.approx(scorer.score(a, a).score)

    def test_pages_one_vs_eleven_is_discarded(self, scorer, make_signature):
        """Test only device similarity in common stays below the 0.60 cutoff."""
        a = make_signature(
            hour_of_day=9,
            time_category="morning",
            pages_visited=1,
            session_duration=0.0,
            avg_time_per_page=0.0,
            click_count=0,
            scroll_depth=0.0,
            form_interactions=0,
            engagement_level=1,
            referrer_type=ReferrerType.SEARCH,
        )
        b = make_signature(
            hour_of_day=21,
            time_category="night",
            pages_visited=11,
            session_duration=1200.0,
            avg_time_per_page=300.0,
            click_count=40,
            scroll_depth=100.0,
            form_interactions=10,
            engagement_level=5,
            referrer_type=ReferrerType.SOCIAL,
        )
        result = scorer.score(a, b)

        assert scorer.navigation_similarity(a, b) == 0.0
        assert result.score == pytest.approx(0.15)
        assert result.score < 0.60

    def test_symmetric(self, scorer, make_signature):
        """Test score(a, b) == score(b, a) across varied signatures."""
        signatures = [
            make_signature(),
            make_signature(hour_of_day=2, time_category="late_night", pages_visited=30),
            make_signature(device_type="mobile", browser_family="safari", engagement_level=1),
            make_signature(referrer_type=ReferrerType.EMAIL, utm_source="spring_sale"),
            make_signature(session_duration=5000.0, click_count=0, scroll_depth=100.0),
        ]
        for a, b in itertools.permutations(signatures, 2):
            assert scorer.score(a, b) == scorer.score(b, a)

    def test_bounded(self, make_signature):
        """Test the score stays in [0, 1] even with skewed weights."""
        scorer = BehavioralSimilarityScorer(
            weights=SimilarityWeights(
                temporal=0.5,
                navigation=0.1,
                interaction=0.1,
                device=0.1,
                engagement=0.1,
                referral=0.1,
            )
        )
        signatures = [
            make_signature(),
            make_signature(pages_visited=0, session_duration=0.0, engagement_level=1),
            make_signature(hour_of_day=23, time_category="late_night", device_type="tablet"),
        ]
        for a, b in itertools.product(signatures, repeat=2):
            assert 0.0 <= scorer.score(a, b).score <= 1.0
