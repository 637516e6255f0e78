"""Matcher registry: the ordered, immutable table of matching algorithms."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from visitorgraph.identity.config import ResolutionConfig
from visitorgraph.identity.matchers.base import Matcher
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

logger = logging.getLogger(__name__)


class MatcherRegistry:
    """Ordered, immutable collection of matchers.

    Registry order is significant: the aggregator's stable sort keeps
    candidates with equal confidence in this order.

    Example:
        # Standard table
        registry = MatcherRegistry.default(ResolutionConfig())
        [m.name for m in registry]
        # ['email_exact', 'email_hash', 'phone_exact', ...]

        # Narrowed for a single-matcher test
        email_only = registry.select(["email_exact"])
    """

    def __init__(self, matchers: Iterable[Matcher]):
        """Initialize the registry.

        Args:
            matchers: Matchers in evaluation order.

        Raises:
            ValueError: If two matchers share a name.
        """
        self._matchers: tuple[Matcher, ...] = tuple(matchers)
        names = [m.name for m in self._matchers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate matcher names: {', '.join(duplicates)}")

    @classmethod
    def default(cls, config: ResolutionConfig | None = None) -> MatcherRegistry:
        """Build the standard matcher table, honoring config switches."""
        config = config or ResolutionConfig()
        matchers: list[Matcher] = [
            EmailExactMatcher(),
            EmailHashMatcher(),
            PhoneExactMatcher(),
            NameEmailDomainMatcher(),
            DeviceFingerprintMatcher(),
            BehavioralPatternMatcher(config),
            IpGeolocationMatcher(),
            HouseholdClusteringMatcher(window_days=config.household_window_days),
        ]
        if not config.behavioral_matching_enabled:
            matchers = [m for m in matchers if m.name != BehavioralPatternMatcher.name]

        registry = cls(matchers)
        if config.enabled_matchers is not None:
            registry = registry.select(config.enabled_matchers)
        return registry

    def __iter__(self) -> Iterator[Matcher]:
        return iter(self._matchers)

    def __len__(self) -> int:
        return len(self._matchers)

    def __contains__(self, name: object) -> bool:
        return any(m.name == name for m in self._matchers)

    @property
    def names(self) -> list[str]:
        """Matcher names in registry order."""
        return [m.name for m in self._matchers]

    def get(self, name: str) -> Matcher | None:
        """Get a matcher by name.

        Args:
            name: The matcher name to look up.

        Returns:
            The matcher or None if not registered.
        """
        for matcher in self._matchers:
            if matcher.name == name:
                return matcher
        return None

    def select(self, names: Iterable[str]) -> MatcherRegistry:
        """Return a registry limited to the given names, keeping registry order.

        Raises:
            ValueError: If a name is not registered.
        """
        wanted = set(names)
        unknown = wanted - set(self.names)
        if unknown:
            raise ValueError(f"Unknown matchers: {', '.join(sorted(unknown))}")
        logger.debug(f"Selected matchers: {sorted(wanted)}")
        return MatcherRegistry(m for m in self._matchers if m.name in wanted)
