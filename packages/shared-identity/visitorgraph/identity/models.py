"""Match candidates, identity links and resolution results."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from visitorgraph.identity.observation import parse_timestamp


class ConfidenceLevel(str, Enum):
    """Confidence tier of a persisted identity link."""

    HIGH = "high"
    MEDIUM = "medium"


class LinkStatus(str, Enum):
    """Lifecycle status of an identity link."""

    ACTIVE = "active"
    REVOKED = "revoked"


def pair_key(observation_id_1: str, observation_id_2: str) -> tuple[str, str]:
    """Return the order-independent key for a pair of observations."""
    if observation_id_1 <= observation_id_2:
        return (observation_id_1, observation_id_2)
    return (observation_id_2, observation_id_1)


@dataclass(frozen=True)
class MatchCandidate:
    """One observation a matcher believes belongs to the same person.

    Candidates are transient: they are consumed by the aggregator and only
    reach storage serialized inside an IdentityLink's match_data.
    """

    candidate_observation_id: str
    match_type: str
    confidence: float
    matching_factors: frozenset[str] = frozenset()
    collected_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate candidate attributes after initialization."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "candidate_observation_id": self.candidate_observation_id,
            "match_type": self.match_type,
            "confidence": self.confidence,
            "matching_factors": sorted(self.matching_factors),
            "collected_at": self.collected_at.isoformat() if self.collected_at else None,
        }


@dataclass
class IdentityLink:
    """A persisted assertion that two observations belong to one person."""

    observation_id_1: str
    observation_id_2: str
    link_type: str
    link_strength: float
    confidence_level: ConfidenceLevel = ConfidenceLevel.HIGH
    match_data: dict[str, Any] = field(default_factory=dict)
    status: LinkStatus = LinkStatus.ACTIVE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate link attributes after initialization."""
        if self.observation_id_1 == self.observation_id_2:
            raise ValueError("An identity link must join two different observations")
        if not 0.0 <= self.link_strength <= 100.0:
            raise ValueError(
                f"Link strength must be between 0 and 100, got {self.link_strength}"
            )

    @property
    def pair_key(self) -> tuple[str, str]:
        """Order-independent key of the linked pair."""
        return pair_key(self.observation_id_1, self.observation_id_2)

    @property
    def is_active(self) -> bool:
        """Return True if the link has not been revoked."""
        return self.status == LinkStatus.ACTIVE

    def other(self, observation_id: str) -> str:
        """Return the id at the other end of the link."""
        if observation_id == self.observation_id_1:
            return self.observation_id_2
        if observation_id == self.observation_id_2:
            return self.observation_id_1
        raise ValueError(f"Observation {observation_id} is not part of link {self.id}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for storage."""
        return {
            "id": self.id,
            "observation_id_1": self.observation_id_1,
            "observation_id_2": self.observation_id_2,
            "pair_key": "|".join(self.pair_key),
            "link_type": self.link_type,
            "confidence_level": self.confidence_level.value,
            "link_strength": self.link_strength,
            "match_data": json.dumps(self.match_data),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IdentityLink:
        """Create an IdentityLink from a storage row.

        Raises:
            TypeError: If match_data has an unexpected type.
        """
        match_data = data.get("match_data")
        if isinstance(match_data, str):
            match_data = json.loads(match_data)
        elif isinstance(match_data, dict):
            pass  # Already parsed
        elif match_data is None:
            match_data = {}
        else:
            raise TypeError(
                f"Unexpected type for match_data: {type(match_data).__name__}. "
                f"Expected str, dict, or None."
            )

        updated_at = data.get("updated_at")
        return cls(
            id=data["id"],
            observation_id_1=data["observation_id_1"],
            observation_id_2=data["observation_id_2"],
            link_type=data["link_type"],
            confidence_level=ConfidenceLevel(data.get("confidence_level", "high")),
            link_strength=float(data["link_strength"]),
            match_data=match_data,
            status=LinkStatus(data.get("status", "active")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class MatcherDiagnostic:
    """Record of a matcher that failed and contributed no candidates."""

    matcher: str
    error: str
    error_type: str


@dataclass
class ResolutionResult:
    """Outcome of one resolution pass for an observation."""

    observation_id: str
    high: list[IdentityLink] = field(default_factory=list)
    medium: list[MatchCandidate] = field(default_factory=list)
    discarded: int = 0
    diagnostics: list[MatcherDiagnostic] = field(default_factory=list)

    @property
    def linked_observation_ids(self) -> list[str]:
        """Ids of observations linked at high confidence in this pass."""
        return [link.other(self.observation_id) for link in self.high]

    @property
    def has_failures(self) -> bool:
        """Return True if any matcher failed during this pass."""
        return bool(self.diagnostics)
