"""Persistence store interface and in-memory implementation.

The store holds observations and identity links. Matchers only read from it;
the link builder is the single writer of links.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime

from visitorgraph.identity.models import IdentityLink, LinkStatus, pair_key
from visitorgraph.identity.observation import Observation

logger = logging.getLogger(__name__)


class ObservationStore(ABC):
    """Abstract persistence store for observations and identity links.

    Implementations raise PersistenceError for backend failures.
    """

    @abstractmethod
    def save_observation(self, observation: Observation) -> None:
        """Persist a normalized observation."""
        pass  # pragma: no cover

    @abstractmethod
    def get_observation(self, observation_id: str) -> Observation | None:
        """Return an observation by id, or None if unknown."""
        pass  # pragma: no cover

    @abstractmethod
    def find_by_email(self, email: str) -> list[Observation]:
        pass  # pragma: no cover

    @abstractmethod
    def find_by_email_hash(self, email_hash: str) -> list[Observation]:
        pass  # pragma: no cover

    @abstractmethod
    def find_by_phone(self, phone: str) -> list[Observation]:
        pass  # pragma: no cover

    @abstractmethod
    def find_by_device_fingerprint(self, fingerprint: str) -> list[Observation]:
        pass  # pragma: no cover

    @abstractmethod
    def find_by_name_and_domain(
        self, first_name: str, last_name: str, email_domain: str
    ) -> list[Observation]:
        """Return observations with the same first/last name (case-insensitive) and email domain."""
        pass  # pragma: no cover

    @abstractmethod
    def find_by_ip_bucket(self, bucket: str) -> list[Observation]:
        """Return observations whose IP falls in the given network bucket."""
        pass  # pragma: no cover

    @abstractmethod
    def find_by_ip(self, ip_address: str, since: datetime | None = None) -> list[Observation]:
        """Return observations from an IP address, optionally collected after `since`."""
        pass  # pragma: no cover

    @abstractmethod
    def find_behavioral_candidates(
        self,
        observation: Observation,
        since: datetime,
        hour_range: tuple[int, int],
        limit: int,
        timeout: float | None = None,
    ) -> list[Observation]:
        """Return recent observations worth comparing behaviorally.

        Candidates are collected on or after `since`, come from a different
        session than `observation`, and either share its IP address, share
        its device type, or were collected during an hour inside
        `hour_range` (inclusive). Most recent first, at most `limit`.

        Args:
            observation: The observation being resolved.
            since: Start of the lookback window.
            hour_range: Inclusive (low, high) hour-of-day window.
            limit: Maximum number of candidates.
            timeout: Query timeout in seconds, for backends that support one.
        """
        pass  # pragma: no cover

    @abstractmethod
    def get_active_link(self, observation_id_1: str, observation_id_2: str) -> IdentityLink | None:
        """Return the active link for an unordered pair, if any."""
        pass  # pragma: no cover

    @abstractmethod
    def save_link(self, link: IdentityLink) -> IdentityLink:
        """Insert a link, or update the active link for the same pair in place."""
        pass  # pragma: no cover

    @abstractmethod
    def links_for(self, observation_id: str, active_only: bool = True) -> list[IdentityLink]:
        """Return links touching an observation."""
        pass  # pragma: no cover

    @abstractmethod
    def revoke_link(self, link_id: str) -> bool:
        """Mark a link as revoked. Returns True if a link was changed."""
        pass  # pragma: no cover


class InMemoryObservationStore(ObservationStore):
    """Thread-safe in-memory store.

    Suitable for tests and single-process deployments. All data is lost when
    the process exits.

    Example:
        >>> store = InMemoryObservationStore()
        >>> store.save_observation(observation)
        >>> store.get_observation(observation.id) == observation
        True
    """

    def __init__(self) -> None:
        self._observations: dict[str, Observation] = {}
        self._links: dict[str, IdentityLink] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._observations)

    def _snapshot(self) -> list[Observation]:
        with self._lock:
            return list(self._observations.values())

    def save_observation(self, observation: Observation) -> None:
        with self._lock:
            if observation.id in self._observations:
                raise ValueError(f"Observation already stored: {observation.id}")
            self._observations[observation.id] = observation
        logger.debug(f"Stored observation {observation.id} ({observation.source.value})")

    def get_observation(self, observation_id: str) -> Observation | None:
        with self._lock:
            return self._observations.get(observation_id)

    def find_by_email(self, email: str) -> list[Observation]:
        return [o for o in self._snapshot() if o.email == email]

    def find_by_email_hash(self, email_hash: str) -> list[Observation]:
        return [o for o in self._snapshot() if o.email_hash == email_hash]

    def find_by_phone(self, phone: str) -> list[Observation]:
        return [o for o in self._snapshot() if o.phone == phone]

    def find_by_device_fingerprint(self, fingerprint: str) -> list[Observation]:
        return [o for o in self._snapshot() if o.device_fingerprint == fingerprint]

    def find_by_name_and_domain(
        self, first_name: str, last_name: str, email_domain: str
    ) -> list[Observation]:
        first_name = first_name.lower()
        last_name = last_name.lower()
        return [
            o
            for o in self._snapshot()
            if o.name_parts.first.lower() == first_name
            and o.name_parts.last.lower() == last_name
            and o.email_domain == email_domain
        ]

    def find_by_ip_bucket(self, bucket: str) -> list[Observation]:
        return [o for o in self._snapshot() if o.ip_bucket == bucket]

    def find_by_ip(self, ip_address: str, since: datetime | None = None) -> list[Observation]:
        return [
            o
            for o in self._snapshot()
            if o.ip_address == ip_address and (since is None or o.collected_at >= since)
        ]

    def find_behavioral_candidates(
        self,
        observation: Observation,
        since: datetime,
        hour_range: tuple[int, int],
        limit: int,
        timeout: float | None = None,
    ) -> list[Observation]:
        low_hour, high_hour = hour_range
        device_type = observation.device_type

        matches = []
        for candidate in self._snapshot():
            if candidate.id == observation.id or candidate.collected_at < since:
                continue
            if observation.session_id and candidate.session_id == observation.session_id:
                continue
            same_ip = bool(observation.ip_address) and candidate.ip_address == observation.ip_address
            same_device = candidate.device_type == device_type
            in_hours = low_hour <= candidate.collected_at.hour <= high_hour
            if same_ip or same_device or in_hours:
                matches.append(candidate)

        matches.sort(key=lambda o: o.collected_at, reverse=True)
        return matches[:limit]

    def get_active_link(self, observation_id_1: str, observation_id_2: str) -> IdentityLink | None:
        key = pair_key(observation_id_1, observation_id_2)
        with self._lock:
            for link in self._links.values():
                if link.is_active and link.pair_key == key:
                    return link
        return None

    def save_link(self, link: IdentityLink) -> IdentityLink:
        with self._lock:
            existing = self.get_active_link(link.observation_id_1, link.observation_id_2)
            if existing is not None and existing.id != link.id and link.is_active:
                # Keep a single active row per pair
                link = replace(link, id=existing.id, created_at=existing.created_at)
            self._links[link.id] = link
            return link

    def links_for(self, observation_id: str, active_only: bool = True) -> list[IdentityLink]:
        with self._lock:
            links = [
                link
                for link in self._links.values()
                if observation_id in (link.observation_id_1, link.observation_id_2)
            ]
        if active_only:
            links = [link for link in links if link.is_active]
        return sorted(links, key=lambda link: link.created_at)

    def revoke_link(self, link_id: str) -> bool:
        with self._lock:
            link = self._links.get(link_id)
            if link is None or link.status == LinkStatus.REVOKED:
                return False
            self._links[link_id] = replace(link, status=LinkStatus.REVOKED)
            return True
