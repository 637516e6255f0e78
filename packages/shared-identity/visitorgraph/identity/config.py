"""Configuration models for identity resolution."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, model_validator

# Tolerance for floating point comparison of weight sums
_WEIGHT_SUM_EPSILON = 1e-6


class SimilarityWeights(BaseModel):
    """Relative weight of each behavioral sub-score. Must sum to 1.0."""

    temporal: float = 0.15
    navigation: float = 0.25
    interaction: float = 0.20
    device: float = 0.15
    engagement: float = 0.15
    referral: float = 0.10

    @model_validator(mode="after")
    def _check_sum(self) -> SimilarityWeights:
        total = (
            self.temporal
            + self.navigation
            + self.interaction
            + self.device
            + self.engagement
            + self.referral
        )
        if abs(total - 1.0) > _WEIGHT_SUM_EPSILON:
            raise ValueError(f"Similarity weights must sum to 1.0, got {total:.4f}")
        return self


class SimilarityTolerances(BaseModel):
    """Tolerances and inner weights for the tolerance-scaled sub-scores."""

    pages_visited: float = 10.0
    session_duration: float = 600.0  # seconds
    avg_time_per_page: float = 120.0  # seconds
    click_count: float = 20.0
    scroll_depth: float = 100.0  # percent
    form_interactions: float = 5.0

    pages_visited_weight: float = 0.35
    session_duration_weight: float = 0.35
    avg_time_per_page_weight: float = 0.30
    click_count_weight: float = 0.40
    scroll_depth_weight: float = 0.30
    form_interactions_weight: float = 0.30

    @model_validator(mode="after")
    def _check_positive(self) -> SimilarityTolerances:
        for name in (
            "pages_visited",
            "session_duration",
            "avg_time_per_page",
            "click_count",
            "scroll_depth",
            "form_interactions",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"Tolerance '{name}' must be positive")
        return self


class ResolutionConfig(BaseModel):
    """Configuration for the identity resolution engine."""

    email_hash_salt: str = ""
    site_host: str = ""  # Used to classify internal referrers

    high_confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    medium_confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    behavioral_matching_enabled: bool = True
    enabled_matchers: list[str] | None = None  # None means every matcher

    behavioral_lookback_days: int = 90
    behavioral_candidate_limit: int = 50
    behavioral_hour_window: int = 2
    behavioral_min_similarity: float = 0.60
    behavioral_max_results: int = 10
    behavioral_query_timeout: float = 5.0  # seconds

    household_window_days: int = 7

    matcher_timeout: float = 10.0  # seconds
    max_workers: int = 8

    weights: SimilarityWeights = Field(default_factory=SimilarityWeights)
    tolerances: SimilarityTolerances = Field(default_factory=SimilarityTolerances)

    @model_validator(mode="after")
    def _check_thresholds(self) -> ResolutionConfig:
        if self.medium_confidence_threshold >= self.high_confidence_threshold:
            raise ValueError(
                "medium_confidence_threshold must be lower than high_confidence_threshold"
            )
        return self

    @classmethod
    def from_env(cls) -> ResolutionConfig:
        """Load configuration from environment variables."""
        values: dict[str, object] = {
            "email_hash_salt": os.getenv("VISITORGRAPH_EMAIL_HASH_SALT", ""),
            "site_host": os.getenv("VISITORGRAPH_SITE_HOST", ""),
        }

        float_vars = {
            "high_confidence_threshold": "VISITORGRAPH_HIGH_CONFIDENCE",
            "medium_confidence_threshold": "VISITORGRAPH_MEDIUM_CONFIDENCE",
            "behavioral_query_timeout": "VISITORGRAPH_BEHAVIORAL_TIMEOUT",
            "matcher_timeout": "VISITORGRAPH_MATCHER_TIMEOUT",
        }
        for field_name, env_var in float_vars.items():
            raw = os.getenv(env_var)
            if raw:
                values[field_name] = float(raw)

        workers = os.getenv("VISITORGRAPH_MAX_WORKERS")
        if workers:
            values["max_workers"] = int(workers)

        behavioral = os.getenv("VISITORGRAPH_BEHAVIORAL_ENABLED")
        if behavioral:
            values["behavioral_matching_enabled"] = behavioral.lower() in ("1", "true", "yes")

        matchers = os.getenv("VISITORGRAPH_ENABLED_MATCHERS")
        if matchers:
            values["enabled_matchers"] = [m.strip() for m in matchers.split(",") if m.strip()]

        return cls(**values)


class BigQueryStoreConfig(BaseModel):
    """Configuration for the BigQuery-backed observation store."""

    project_id: str | None = None
    dataset: str = "visitorgraph_identity"
    location: str = "US"
    timeout: int = 60

    @classmethod
    def from_env(cls) -> BigQueryStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("GCP_PROJECT_ID") or os.getenv("VISITORGRAPH_PROJECT_ID"),
            dataset=os.getenv("VISITORGRAPH_BQ_DATASET", "visitorgraph_identity"),
            location=os.getenv("VISITORGRAPH_BQ_LOCATION", "US"),
        )


class RemoteConfig(BaseModel):
    """Configuration for HTTP delivery of events and review candidates."""

    base_url: str
    api_token: str | None = Field(default=None, repr=False)
    timeout: float = 10.0
    connect_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> RemoteConfig:
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("VISITORGRAPH_REMOTE_URL", "http://localhost:8000"),
            api_token=os.getenv("VISITORGRAPH_REMOTE_TOKEN"),
        )
