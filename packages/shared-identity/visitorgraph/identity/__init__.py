"""
VisitorGraph Identity - link anonymous touch points into visitor identities.

Provides:
- Observation model with email, phone and name normalization
- Deterministic, hashed, network and behavioral matchers
- Concurrent candidate aggregation with per-matcher isolation
- Identity link writes with one active link per observation pair
- In-memory and BigQuery stores, HTTP event and review delivery
- Optional forwarding of each resolution pass to a central service

Usage:
    from visitorgraph.identity import (
        IdentityResolutionEngine,
        InMemoryObservationStore,
        InMemoryReviewQueue,
        Observation,
        ObservationSource,
    )

    engine = IdentityResolutionEngine(
        InMemoryObservationStore(),
        review_queue=InMemoryReviewQueue(),
    )
    engine.ingest(Observation(source=ObservationSource.FORM_SUBMISSION, email="user@x.com"))
    result = engine.ingest(
        Observation(source=ObservationSource.ECOMMERCE_ORDER, email="user@x.com")
    )

    for link in result.high:
        print(f"{link.link_type}: {link.link_strength}")
"""

from visitorgraph.identity.aggregator import (
    AggregatedCandidates,
    CandidateAggregator,
    TieredCandidates,
)
from visitorgraph.identity.bigquery_store import BigQueryObservationStore
from visitorgraph.identity.config import (
    BigQueryStoreConfig,
    RemoteConfig,
    ResolutionConfig,
    SimilarityTolerances,
    SimilarityWeights,
)
from visitorgraph.identity.engine import IdentityResolutionEngine
from visitorgraph.identity.events import (
    AttributionEvent,
    AttributionSink,
    InMemoryAttributionSink,
    InMemoryResolutionSink,
    ResolutionEvent,
    ResolutionSink,
)
from visitorgraph.identity.exceptions import (
    DispatchError,
    IdentityResolutionError,
    MatcherError,
    PersistenceError,
    UnknownObservationError,
    ValidationError,
)
from visitorgraph.identity.links import LinkBuilder, LinkWrite, calculate_link_strength
from visitorgraph.identity.matchers import MatchContext, Matcher, MatcherRegistry
from visitorgraph.identity.models import (
    ConfidenceLevel,
    IdentityLink,
    LinkStatus,
    MatchCandidate,
    MatcherDiagnostic,
    ResolutionResult,
)
from visitorgraph.identity.normalizers import (
    FormSubmissionNormalizer,
    LoginNormalizer,
    ObservationNormalizer,
    OrderNormalizer,
    PassiveNormalizer,
    RegistrationNormalizer,
)
from visitorgraph.identity.observation import (
    NameParts,
    Observation,
    ObservationSource,
    normalize_observation,
)
from visitorgraph.identity.remote import (
    HttpAttributionSink,
    HttpResolutionSink,
    HttpReviewQueue,
)
from visitorgraph.identity.review import (
    InMemoryReviewQueue,
    ReviewDispatcher,
    ReviewItem,
    ReviewQueue,
)
from visitorgraph.identity.signature import BehavioralSignature, extract_signature
from visitorgraph.identity.similarity import BehavioralSimilarityScorer, SimilarityResult
from visitorgraph.identity.store import InMemoryObservationStore, ObservationStore

__all__ = [
    # Engine
    "IdentityResolutionEngine",
    # Observations
    "NameParts",
    "Observation",
    "ObservationSource",
    "normalize_observation",
    # Normalizers
    "FormSubmissionNormalizer",
    "LoginNormalizer",
    "ObservationNormalizer",
    "OrderNormalizer",
    "PassiveNormalizer",
    "RegistrationNormalizer",
    # Behavioral
    "BehavioralSignature",
    "BehavioralSimilarityScorer",
    "SimilarityResult",
    "extract_signature",
    # Matching
    "AggregatedCandidates",
    "CandidateAggregator",
    "MatchContext",
    "Matcher",
    "MatcherRegistry",
    "TieredCandidates",
    # Links
    "ConfidenceLevel",
    "IdentityLink",
    "LinkBuilder",
    "LinkStatus",
    "LinkWrite",
    "MatchCandidate",
    "MatcherDiagnostic",
    "ResolutionResult",
    "calculate_link_strength",
    # Collaborators
    "AttributionEvent",
    "AttributionSink",
    "BigQueryObservationStore",
    "HttpAttributionSink",
    "HttpResolutionSink",
    "HttpReviewQueue",
    "InMemoryAttributionSink",
    "InMemoryObservationStore",
    "InMemoryResolutionSink",
    "InMemoryReviewQueue",
    "ObservationStore",
    "ResolutionEvent",
    "ResolutionSink",
    "ReviewDispatcher",
    "ReviewItem",
    "ReviewQueue",
    # Config
    "BigQueryStoreConfig",
    "RemoteConfig",
    "ResolutionConfig",
    "SimilarityTolerances",
    "SimilarityWeights",
    # Exceptions
    "DispatchError",
    "IdentityResolutionError",
    "MatcherError",
    "PersistenceError",
    "UnknownObservationError",
    "ValidationError",
]
