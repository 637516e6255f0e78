"""Deterministic matchers: exact equality joins on identity fields."""

from __future__ import annotations

from visitorgraph.identity.matchers.base import MatchContext, Matcher
from visitorgraph.identity.models import MatchCandidate
from visitorgraph.identity.observation import Observation
from visitorgraph.identity.store import ObservationStore


class EmailExactMatcher(Matcher):
    """Exact equality on the normalized email address."""

    name = "email_exact"
    weight = 100
    base_confidence = 0.95

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        if not observation.email:
            return []
        return self._candidates(observation, store.find_by_email(observation.email), ["email"])


class EmailHashMatcher(Matcher):
    """Exact equality on the keyed email digest (privacy-preserving)."""

    name = "email_hash"
    weight = 90
    base_confidence = 0.85

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        if not observation.email_hash:
            return []
        matches = store.find_by_email_hash(observation.email_hash)
        return self._candidates(observation, matches, ["email_hash"])


class PhoneExactMatcher(Matcher):
    """Exact equality on the normalized phone number."""

    name = "phone_exact"
    weight = 85
    base_confidence = 0.80

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        if not observation.phone:
            return []
        return self._candidates(observation, store.find_by_phone(observation.phone), ["phone"])


class NameEmailDomainMatcher(Matcher):
    """Same first and last name at the same email domain.

    Requires both a first and a last name; a lone given name is too common
    to be useful.
    """

    name = "name_email_domain"
    weight = 70
    base_confidence = 0.65

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        domain = observation.email_domain
        if not domain or not observation.name_parts.is_complete:
            return []
        matches = store.find_by_name_and_domain(
            observation.name_parts.first,
            observation.name_parts.last,
            domain,
        )
        return self._candidates(observation, matches, ["full_name", "email_domain"])


class DeviceFingerprintMatcher(Matcher):
    """Exact equality on the client-side device fingerprint."""

    name = "device_fingerprint"
    weight = 60
    base_confidence = 0.55

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        if not observation.device_fingerprint:
            return []
        matches = store.find_by_device_fingerprint(observation.device_fingerprint)
        return self._candidates(observation, matches, ["device_fingerprint"])
