"""Observation model and identity field normalization.

An observation is one recorded touch point (form submission, order,
registration, login, or passive page telemetry) carrying partial identity
signals. Observations are immutable: normalization returns a new instance.

Examples:
    Normalizing a raw form observation:
        >>> raw = Observation(
        ...     source=ObservationSource.FORM_SUBMISSION,
        ...     email="  Jane.Doe@Example.COM ",
        ...     phone="(555) 123-4567",
        ...     full_name="Jane Q Doe",
        ... )
        >>> obs = normalize_observation(raw, salt="secret")
        >>> obs.email
        'jane.doe@example.com'
        >>> obs.phone
        '15551234567'
        >>> obs.name_parts.middle
        'Q'
"""

from __future__ import annotations

import hashlib
import hmac
import ipaddress
import re
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from visitorgraph.identity.exceptions import ValidationError

# Email validation pattern: local-part@domain.tld
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15
DEFAULT_COUNTRY_CODE = "1"


class ObservationSource(str, Enum):
    """Kind of touch point that produced an observation."""

    FORM_SUBMISSION = "form_submission"
    ECOMMERCE_ORDER = "ecommerce_order"
    REGISTRATION = "registration"
    LOGIN = "login"
    PASSIVE = "passive"


@dataclass(frozen=True)
class NameParts:
    """A full name split into first, middle and last components."""

    first: str = ""
    middle: str = ""
    last: str = ""

    @property
    def is_complete(self) -> bool:
        """Return True if both first and last name are known."""
        return bool(self.first and self.last)


@dataclass(frozen=True)
class Observation:
    """One recorded touch point with partial identity signals.

    Attributes:
        id: Opaque identifier, assigned on ingestion. Never a content hash.
        source: The kind of touch point.
        email: Normalized lowercase email.
        email_hash: Keyed digest of the normalized email.
        phone: Digits only, with country code.
        full_name: Whitespace-collapsed full name.
        name_parts: Parsed name components.
        device_fingerprint: Opaque client-side fingerprint.
        ip_address: Client IP address.
        user_agent: Client user agent string.
        session_id: Browser session identifier.
        additional_data: Raw telemetry (pages visited, durations, UTM, ...).
        collected_at: When the touch point was captured.
    """

    source: ObservationSource
    id: str = ""
    email: str | None = None
    email_hash: str | None = None
    phone: str | None = None
    full_name: str | None = None
    name_parts: NameParts = field(default_factory=NameParts)
    device_fingerprint: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)
    collected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def email_domain(self) -> str | None:
        """Return the domain part of the email, if any."""
        if not self.email or "@" not in self.email:
            return None
        return self.email.rsplit("@", 1)[1]

    @property
    def device_type(self) -> str:
        """Return the device class reported by telemetry or detected from the UA."""
        reported = self.additional_data.get("device_type")
        if isinstance(reported, str) and reported.strip():
            return reported.strip().lower()
        return detect_device_type(self.user_agent)

    @property
    def ip_bucket(self) -> str | None:
        """Return the coarse network bucket of the IP address.

        IPv4 addresses are bucketed by /24, IPv6 addresses by /48.
        """
        return ip_bucket(self.ip_address)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary for storage."""
        return {
            "id": self.id,
            "source": self.source.value,
            "email": self.email,
            "email_hash": self.email_hash,
            "phone": self.phone,
            "full_name": self.full_name,
            "name_parts": asdict(self.name_parts),
            "device_fingerprint": self.device_fingerprint,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "additional_data": dict(self.additional_data),
            "collected_at": self.collected_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Observation:
        """Create an Observation from a dictionary produced by to_dict().

        Raises:
            ValueError: If 'source' is missing or not a known source.
        """
        if "source" not in data:
            raise ValueError("Missing required field: source")

        name_parts = data.get("name_parts") or {}
        return cls(
            id=str(data.get("id") or ""),
            source=ObservationSource(data["source"]),
            email=data.get("email"),
            email_hash=data.get("email_hash"),
            phone=data.get("phone"),
            full_name=data.get("full_name"),
            name_parts=NameParts(
                first=name_parts.get("first", ""),
                middle=name_parts.get("middle", ""),
                last=name_parts.get("last", ""),
            ),
            device_fingerprint=data.get("device_fingerprint"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            session_id=data.get("session_id"),
            additional_data=dict(data.get("additional_data") or {}),
            collected_at=parse_timestamp(data.get("collected_at")),
        )


def parse_timestamp(value: Any) -> datetime:
    """Parse a timestamp into a timezone-aware UTC datetime.

    Accepts datetimes (naive ones are assumed UTC), ISO 8601 strings
    (including a trailing 'Z') and epoch seconds. Values carrying another
    offset are converted to UTC. Missing values default to the current time.
    """
    if value is None or value == "":
        return datetime.now(UTC)
    if isinstance(value, datetime):
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed.astimezone(UTC) if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def normalize_email(email: str | None) -> str | None:
    """Normalize an email address to lowercase with whitespace stripped.

    Returns:
        The normalized email, or None if no email was supplied.

    Raises:
        ValidationError: If a non-empty value is not a valid email address.

    Examples:
        >>> normalize_email(" User@Example.com ")
        'user@example.com'
        >>> normalize_email("") is None
        True
    """
    if email is None:
        return None
    if not isinstance(email, str):
        raise ValidationError(f"Email must be a string, got {type(email).__name__}")
    email = email.lower().strip()
    if not email:
        return None
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email address: {email!r}")
    return email


def hash_email(email: str, salt: str) -> str:
    """Return the keyed SHA-256 digest of a normalized email."""
    return hmac.new(salt.encode("utf-8"), email.encode("utf-8"), hashlib.sha256).hexdigest()


def normalize_phone(phone: str | None) -> str | None:
    """Normalize a phone number to digits with a country code.

    Ten-digit numbers are assumed to be North American and get the "1"
    country code prepended.

    Raises:
        ValidationError: If the number has too few or too many digits.

    Examples:
        >>> normalize_phone("(555) 123-4567")
        '15551234567'
        >>> normalize_phone("+44 20 7946 0958")
        '442079460958'
    """
    if phone is None:
        return None
    digits = re.sub(r"\D", "", str(phone))
    if not digits and not str(phone).strip():
        return None
    if len(digits) < MIN_PHONE_DIGITS or len(digits) > MAX_PHONE_DIGITS:
        raise ValidationError(f"Invalid phone number: {phone!r}")
    if len(digits) == MIN_PHONE_DIGITS:
        digits = DEFAULT_COUNTRY_CODE + digits
    return digits


def parse_name(full_name: str | None) -> NameParts:
    """Split a full name into first, middle and last parts.

    Examples:
        >>> parse_name("Mary Ann Smith")
        NameParts(first='Mary', middle='Ann', last='Smith')
        >>> parse_name("Cher")
        NameParts(first='Cher', middle='', last='')
    """
    if not full_name:
        return NameParts()
    parts = full_name.split()
    if not parts:
        return NameParts()
    if len(parts) == 1:
        return NameParts(first=parts[0])
    return NameParts(first=parts[0], middle=" ".join(parts[1:-1]), last=parts[-1])


def detect_device_type(user_agent: str | None) -> str:
    """Classify a user agent as tablet, mobile, desktop or unknown."""
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua:
        return "tablet"
    if "mobi" in ua or "iphone" in ua or "android" in ua:
        return "mobile"
    return "desktop"


def ip_bucket(ip_address_value: str | None) -> str | None:
    """Return the coarse network bucket for an IP address, or None if invalid."""
    if not ip_address_value:
        return None
    try:
        address = ipaddress.ip_address(ip_address_value.strip())
    except ValueError:
        return None
    prefix = 24 if address.version == 4 else 48
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


def normalize_observation(observation: Observation, salt: str = "") -> Observation:
    """Return a normalized copy of an observation, assigning an id if needed.

    Args:
        observation: The raw observation.
        salt: Key for the email digest.

    Returns:
        A new Observation with normalized email, digest, phone and name.

    Raises:
        ValidationError: If email or phone cannot be normalized.
    """
    email = normalize_email(observation.email)
    if email:
        email_hash = hash_email(email, salt)
    else:
        email_hash = observation.email_hash.lower().strip() if observation.email_hash else None

    phone = normalize_phone(observation.phone)

    full_name = " ".join(observation.full_name.split()) if observation.full_name else None
    name_parts = parse_name(full_name) if full_name else observation.name_parts

    return replace(
        observation,
        id=observation.id or uuid.uuid4().hex,
        email=email,
        email_hash=email_hash or None,
        phone=phone,
        full_name=full_name or None,
        name_parts=name_parts,
        device_fingerprint=(observation.device_fingerprint or "").strip() or None,
        ip_address=(observation.ip_address or "").strip() or None,
        session_id=(observation.session_id or "").strip() or None,
        collected_at=parse_timestamp(observation.collected_at),
    )
