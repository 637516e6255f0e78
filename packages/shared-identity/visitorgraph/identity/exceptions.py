"""Custom exceptions for identity resolution."""

from __future__ import annotations


class IdentityResolutionError(Exception):
    """Base exception for identity resolution errors."""

    pass


class ValidationError(IdentityResolutionError):
    """Raised when an observation field cannot be normalized.

    Observations that fail validation are rejected at ingestion and never
    take part in matching.
    """

    pass


class MatcherError(IdentityResolutionError):
    """Raised when a single matcher's lookup fails.

    The aggregator isolates these: the failing matcher contributes zero
    candidates and the overall resolution continues.
    """

    def __init__(self, matcher: str, message: str):
        super().__init__(f"Matcher '{matcher}' failed: {message}")
        self.matcher = matcher


class PersistenceError(IdentityResolutionError):
    """Raised when a store read or write fails."""

    pass


class DispatchError(IdentityResolutionError):
    """Raised when a review candidate or event cannot be delivered."""

    pass


class UnknownObservationError(IdentityResolutionError):
    """Raised when an observation id is not present in the store."""

    def __init__(self, observation_id: str):
        super().__init__(f"Unknown observation: {observation_id}")
        self.observation_id = observation_id
