"""Matching algorithms for identity resolution.

Each matcher is a Matcher subclass with a fixed name, weight and base
confidence. MatcherRegistry.default() builds the standard table:

    email_exact          100  0.95
    email_hash            90  0.85
    phone_exact           85  0.80
    name_email_domain     70  0.65
    device_fingerprint    60  0.55
    behavioral_pattern    50  0.0 (each candidate carries its similarity score)
    ip_geolocation        30  0.25
    household_clustering  40  0.35
"""

from visitorgraph.identity.matchers.base import MatchContext, Matcher
from visitorgraph.identity.matchers.behavioral import BehavioralPatternMatcher
from visitorgraph.identity.matchers.deterministic import (
    DeviceFingerprintMatcher,
    EmailExactMatcher,
    EmailHashMatcher,
    NameEmailDomainMatcher,
    PhoneExactMatcher,
)
from visitorgraph.identity.matchers.network import (
    HouseholdClusteringMatcher,
    IpGeolocationMatcher,
)
from visitorgraph.identity.matchers.registry import MatcherRegistry

__all__ = [
    # Base
    "MatchContext",
    "Matcher",
    # Matchers
    "BehavioralPatternMatcher",
    "DeviceFingerprintMatcher",
    "EmailExactMatcher",
    "EmailHashMatcher",
    "HouseholdClusteringMatcher",
    "IpGeolocationMatcher",
    "NameEmailDomainMatcher",
    "PhoneExactMatcher",
    # Registry
    "MatcherRegistry",
]
