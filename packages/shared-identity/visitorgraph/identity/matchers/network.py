"""Network matchers: shared IP address and network bucket heuristics.

Both matchers are low-confidence by construction. Shared NATs, office
networks and public Wi-Fi put unrelated people behind one address, so
neither can reach the high tier on its own.
"""

from __future__ import annotations

from datetime import timedelta

from visitorgraph.identity.matchers.base import MatchContext, Matcher
from visitorgraph.identity.models import MatchCandidate
from visitorgraph.identity.observation import Observation
from visitorgraph.identity.store import ObservationStore

DEFAULT_HOUSEHOLD_WINDOW_DAYS = 7


class IpGeolocationMatcher(Matcher):
    """Observations from the same coarse network bucket (IPv4 /24, IPv6 /48)."""

    name = "ip_geolocation"
    weight = 30
    base_confidence = 0.25

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        bucket = observation.ip_bucket
        if not bucket:
            return []

        same_ip = []
        same_network = []
        for match in store.find_by_ip_bucket(bucket):
            if match.ip_address == observation.ip_address:
                same_ip.append(match)
            else:
                same_network.append(match)

        return self._candidates(observation, same_ip, ["same_ip"]) + self._candidates(
            observation, same_network, ["same_network"]
        )


class HouseholdClusteringMatcher(Matcher):
    """Observations from the client's IP address within a trailing window."""

    name = "household_clustering"
    weight = 40
    base_confidence = 0.35

    def __init__(self, window_days: int = DEFAULT_HOUSEHOLD_WINDOW_DAYS) -> None:
        self.window = timedelta(days=window_days)

    def lookup(
        self,
        observation: Observation,
        store: ObservationStore,
        context: MatchContext,
    ) -> list[MatchCandidate]:
        ip_address = context.client_ip or observation.ip_address
        if not ip_address:
            return []
        matches = store.find_by_ip(ip_address, since=context.now - self.window)
        return self._candidates(observation, matches, ["shared_ip", "household"])
