"""Behavioral signature extraction.

A behavioral signature is a normalized feature vector describing one
session's temporal, navigational, interaction, device and referral
characteristics. Signatures are never stored; they are recomputed from an
observation's telemetry whenever two sessions are compared.

The temporal fields come from the comparison instant passed in as ``now``,
not from when the observation was collected, so two signatures extracted at
the same instant always share their hour and weekday.

Example:
    >>> signature = extract_signature(observation, now=datetime.now(UTC))
    >>> signature.engagement_level
    3
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from visitorgraph.identity.observation import Observation

SEARCH_ENGINES = ("google", "bing", "yahoo", "duckduckgo", "baidu")
SOCIAL_PLATFORMS = ("facebook", "twitter", "linkedin", "instagram", "pinterest", "reddit")
HIGH_INTENT_PAGES = ("pricing", "checkout", "quote", "demo", "trial", "contact-sales")


class ReferrerType(str, Enum):
    """Coarse classification of where a session came from."""

    DIRECT = "direct"
    SEARCH = "search"
    SOCIAL = "social"
    EMAIL = "email"
    INTERNAL = "internal"
    REFERRAL = "referral"


@dataclass(frozen=True)
class BehavioralSignature:
    """Normalized behavioral features of one session."""

    # Temporal
    hour_of_day: int = 0
    day_of_week: int = 1
    time_category: str = "late_night"

    # Navigation
    pages_visited: int = 0
    session_duration: float = 0.0
    avg_time_per_page: float = 0.0

    # Interaction
    click_count: int = 0
    scroll_depth: float = 0.0
    form_interactions: int = 0

    # Entry and referral
    entry_page: str = ""
    referrer_type: ReferrerType = ReferrerType.DIRECT
    utm_source: str = ""

    # Device
    device_type: str = "unknown"
    browser_family: str = "other"
    screen_resolution: str = ""

    engagement_level: int = 1
    intent_signals: frozenset[str] = frozenset()

    @property
    def has_telemetry(self) -> bool:
        """True when the session reported any navigation or interaction signal."""
        return any(
            (
                self.pages_visited,
                self.session_duration,
                self.click_count,
                self.scroll_depth,
                self.form_interactions,
            )
        )



def categorize_time(hour: int) -> str:
    """Bucket an hour of day (0-23) into one of seven periods."""
    if 6 <= hour < 9:
        return "early_morning"
    if 9 <= hour < 12:
        return "morning"
    if 12 <= hour < 14:
        return "lunch"
    if 14 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 20:
        return "evening"
    if 20 <= hour < 23:
        return "night"
    return "late_night"


def categorize_referrer(referrer: str | None, site_host: str = "") -> ReferrerType:
    """Classify a referrer URL.

    Args:
        referrer: The referrer URL, possibly empty.
        site_host: Host of the tracked site; referrers containing it are internal.

    Returns:
        The referrer category. Unrecognized referrers are ``REFERRAL``.
    """
    if not referrer:
        return ReferrerType.DIRECT

    referrer = referrer.lower()

    if any(engine in referrer for engine in SEARCH_ENGINES):
        return ReferrerType.SEARCH
    if any(platform in referrer for platform in SOCIAL_PLATFORMS):
        return ReferrerType.SOCIAL
    if "mail" in referrer:
        return ReferrerType.EMAIL
    if site_host and site_host.lower() in referrer:
        return ReferrerType.INTERNAL
    return ReferrerType.REFERRAL


def extract_browser_family(user_agent: str | None) -> str:
    """Return the browser family named in a user agent string."""
    ua = (user_agent or "").lower()

    # Order matters: Edge and Chrome UAs also mention Safari
    if "edge" in ua or "edg/" in ua:
        return "edge"
    if "chrome" in ua:
        return "chrome"
    if "safari" in ua:
        return "safari"
    if "firefox" in ua:
        return "firefox"
    if "opera" in ua:
        return "opera"
    if "msie" in ua or "trident" in ua:
        return "ie"
    return "other"


def calculate_engagement_level(
    pages_visited: float,
    session_duration: float,
    click_count: float,
    scroll_depth: float,
    form_interactions: float,
) -> int:
    """Score session engagement on a 1-5 scale.

    Each signal adds points independently, so raising any one of them
    never lowers the level.
    """
    score = 0

    if pages_visited >= 10:
        score += 2
    elif pages_visited >= 5:
        score += 1

    if session_duration >= 600:  # 10+ minutes
        score += 2
    elif session_duration >= 300:  # 5+ minutes
        score += 1

    if click_count >= 10:
        score += 1
    if scroll_depth >= 75:
        score += 1
    if form_interactions > 0:
        score += 1

    if score >= 6:
        return 5
    if score >= 5:
        return 4
    if score >= 3:
        return 3
    if score >= 1:
        return 2
    return 1


def extract_intent_signals(additional_data: dict[str, Any]) -> frozenset[str]:
    """Collect conversion-intent tags from session telemetry."""
    signals: set[str] = set()

    visited_pages = additional_data.get("visited_pages") or []
    if isinstance(visited_pages, (list, tuple)):
        for page in visited_pages:
            page_text = str(page).lower()
            for intent_page in HIGH_INTENT_PAGES:
                if intent_page in page_text:
                    signals.add(f"visited_{intent_page}")

    if additional_data.get("cart_items"):
        signals.add("has_cart_items")
    if additional_data.get("compared_products"):
        signals.add("compared_products")
    if additional_data.get("downloads"):
        signals.add("downloaded_content")

    return frozenset(signals)


def _as_int(value: Any) -> int:
    """Coerce telemetry to a non-negative int, treating junk as zero."""
    number = _as_float(value)
    return int(number)


def _as_float(value: Any) -> float:
    """Coerce telemetry to a non-negative finite float, treating junk as zero."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def extract_signature(
    observation: Observation,
    now: datetime,
    site_host: str = "",
) -> BehavioralSignature:
    """Derive the behavioral signature of an observation.

    Args:
        observation: The observation whose telemetry is summarized.
        now: The comparison instant; supplies hour of day and weekday.
        site_host: Host of the tracked site, for internal referrer detection.

    Returns:
        The signature. Missing telemetry degrades to zero or empty values.
    """
    data = observation.additional_data or {}

    pages_visited = _as_int(data.get("pages_visited"))
    if not pages_visited and isinstance(data.get("visited_pages"), (list, tuple)):
        pages_visited = len(data["visited_pages"])

    session_duration = _as_float(data.get("session_duration"))
    avg_time_per_page = session_duration / pages_visited if pages_visited > 0 else 0.0

    click_count = _as_int(data.get("click_count"))
    scroll_depth = _as_float(data.get("scroll_depth"))
    form_interactions = _as_int(data.get("form_interactions"))

    return BehavioralSignature(
        hour_of_day=now.hour,
        day_of_week=now.isoweekday(),
        time_category=categorize_time(now.hour),
        pages_visited=pages_visited,
        session_duration=session_duration,
        avg_time_per_page=avg_time_per_page,
        click_count=click_count,
        scroll_depth=scroll_depth,
        form_interactions=form_interactions,
        entry_page=_as_text(data.get("entry_page")),
        referrer_type=categorize_referrer(_as_text(data.get("referrer")), site_host),
        utm_source=_as_text(data.get("utm_source")).lower(),
        device_type=observation.device_type,
        browser_family=extract_browser_family(observation.user_agent),
        screen_resolution=_as_text(data.get("screen_resolution")),
        engagement_level=calculate_engagement_level(
            pages_visited,
            session_duration,
            click_count,
            scroll_depth,
            form_interactions,
        ),
        intent_signals=extract_intent_signals(data),
    )
