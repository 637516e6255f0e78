"""Tests for visitorgraph.identity.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError
from visitorgraph.identity.config import (
    BigQueryStoreConfig,
    RemoteConfig,
    ResolutionConfig,
    SimilarityTolerances,
    SimilarityWeights,
)


class TestSimilarityWeights:
    """Tests for SimilarityWeights."""

    def test_defaults_sum_to_one(self) -> None:
        """Test the default weights are valid."""
        weights = SimilarityWeights()
        assert weights.navigation == 0.25
        assert weights.referral == 0.10

    def test_rejects_bad_sum(self) -> None:
        """Test weights that do not sum to 1.0 are rejected."""
        with pytest.raises(PydanticValidationError, match="sum to 1.0"):
            SimilarityWeights(temporal=0.5)


class TestSimilarityTolerances:
    """Tests for SimilarityTolerances."""

    def test_rejects_non_positive(self) -> None:
        """Test a zero tolerance is rejected."""
        with pytest.raises(PydanticValidationError, match="pages_visited"):
            SimilarityTolerances(pages_visited=0)


class TestResolutionConfig:
    """Tests for ResolutionConfig."""

    def test_defaults(self) -> None:
        """Test default thresholds and behavioral limits."""
        config = ResolutionConfig()
        assert config.high_confidence_threshold == 0.8
        assert config.medium_confidence_threshold == 0.5
        assert config.behavioral_candidate_limit == 50
        assert config.behavioral_lookback_days == 90
        assert config.enabled_matchers is None

    def test_threshold_order(self) -> None:
        """Test the medium threshold must be below the high threshold."""
        with pytest.raises(PydanticValidationError):
            ResolutionConfig(high_confidence_threshold=0.6, medium_confidence_threshold=0.7)

    def test_threshold_range(self) -> None:
        """Test thresholds outside [0, 1] are rejected."""
        with pytest.raises(PydanticValidationError):
            ResolutionConfig(high_confidence_threshold=1.5)

    def test_from_env(self, monkeypatch) -> None:
        """Test environment variables override defaults."""
        monkeypatch.setenv("VISITORGRAPH_EMAIL_HASH_SALT", "pepper")
        monkeypatch.setenv("VISITORGRAPH_HIGH_CONFIDENCE", "0.9")
        monkeypatch.setenv("VISITORGRAPH_MAX_WORKERS", "2")
        monkeypatch.setenv("VISITORGRAPH_BEHAVIORAL_ENABLED", "false")
        monkeypatch.setenv("VISITORGRAPH_ENABLED_MATCHERS", "email_exact, phone_exact,")

        config = ResolutionConfig.from_env()

        assert config.email_hash_salt == "pepper"
        assert config.high_confidence_threshold == 0.9
        assert config.max_workers == 2
        assert config.behavioral_matching_enabled is False
        assert config.enabled_matchers == ["email_exact", "phone_exact"]

    def test_from_env_defaults(self, monkeypatch) -> None:
        """Test unset variables leave defaults in place."""
        for name in (
            "VISITORGRAPH_EMAIL_HASH_SALT",
            "VISITORGRAPH_HIGH_CONFIDENCE",
            "VISITORGRAPH_ENABLED_MATCHERS",
        ):
            monkeypatch.delenv(name, raising=False)

        config = ResolutionConfig.from_env()
        assert config.email_hash_salt == ""
        assert config.high_confidence_threshold == 0.8


class TestBigQueryStoreConfig:
    """Tests for BigQueryStoreConfig."""

    def test_from_env(self, monkeypatch) -> None:
        """Test project and dataset come from the environment."""
        monkeypatch.setenv("GCP_PROJECT_ID", "my-project")
        monkeypatch.setenv("VISITORGRAPH_BQ_DATASET", "identity")

        config = BigQueryStoreConfig.from_env()

        assert config.project_id == "my-project"
        assert config.dataset == "identity"
        assert config.location == "US"


class TestRemoteConfig:
    """Tests for RemoteConfig."""

    def test_from_env(self, monkeypatch) -> None:
        """Test the remote URL and token come from the environment."""
        monkeypatch.setenv("VISITORGRAPH_REMOTE_URL", "https://attr.example.com")
        monkeypatch.setenv("VISITORGRAPH_REMOTE_TOKEN", "token-1")

        config = RemoteConfig.from_env()

        assert config.base_url == "https://attr.example.com"
        assert config.api_token == "token-1"
        assert "token-1" not in repr(config)
