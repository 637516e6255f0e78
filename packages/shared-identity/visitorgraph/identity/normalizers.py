"""
Observation normalizers - turn raw touch-point records into Observations.

Each normalizer handles one kind of touch point:
- FormSubmissionNormalizer: form plugin payloads (email found anywhere in the payload)
- OrderNormalizer: e-commerce orders (billing fields)
- RegistrationNormalizer: new user accounts
- LoginNormalizer: user logins
- PassiveNormalizer: browser telemetry (fingerprint, session, page stats)

Normalizers only map fields. Validation and digesting happen when the
observation is recorded by the engine.
"""

from __future__ import annotations

import logging
from abc import ABC
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import Any

import pandas as pd

from visitorgraph.identity.observation import (
    EMAIL_PATTERN,
    Observation,
    ObservationSource,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Observation fields a mapped record may fill directly
IDENTITY_FIELDS = (
    "email",
    "email_hash",
    "phone",
    "full_name",
    "device_fingerprint",
    "session_id",
)

COMMON_FIELD_MAP = {
    # Email variants
    "email": "email",
    "email_address": "email",
    "user_email": "email",
    # Phone variants
    "phone": "phone",
    "phone_number": "phone",
    "telephone": "phone",
    "mobile": "phone",
    # Name variants
    "full_name": "full_name",
    "name": "full_name",
    "display_name": "full_name",
    "first_name": "first_name",
    "fname": "first_name",
    "last_name": "last_name",
    "lname": "last_name",
    # Device and network
    "device_fingerprint": "device_fingerprint",
    "fingerprint": "device_fingerprint",
    "ip_address": "ip_address",
    "ip": "ip_address",
    "user_agent": "user_agent",
    "userAgent": "user_agent",
    "session_id": "session_id",
    "sessionId": "session_id",
    # Timestamp variants
    "collected_at": "collected_at",
    "timestamp": "collected_at",
    "created_at": "collected_at",
}


def _clean(value: Any) -> Any:
    """Convert pandas missing values to None and timestamps to datetime."""
    if value is None or isinstance(value, (list, tuple, dict)):
        return value
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if pd.isna(value):
        return None
    if hasattr(value, "item"):
        # numpy scalar
        return value.item()
    return value


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        # Numeric columns holding NaN are read as float
        value = int(value)
    text = str(value).strip()
    return text or None


def find_email(data: Any) -> str | None:
    """Return the first valid email found anywhere in a (possibly nested) payload."""
    if isinstance(data, str):
        candidate = data.strip()
        return candidate if EMAIL_PATTERN.match(candidate) else None
    if isinstance(data, dict):
        values: Iterable[Any] = data.values()
    elif isinstance(data, (list, tuple)):
        values = data
    else:
        return None

    for value in values:
        email = find_email(value)
        if email:
            return email
    return None


def find_field(data: Any, keys: Iterable[str]) -> Any:
    """Return the first non-empty value stored under one of `keys`, searching nested dicts."""
    keys = tuple(keys)
    if isinstance(data, dict):
        for key in keys:
            value = _clean(data.get(key))
            if value not in (None, "", [], {}):
                return value
        nested = data.values()
    elif isinstance(data, (list, tuple)):
        nested = data
    else:
        return None

    for value in nested:
        if isinstance(value, (dict, list, tuple)):
            found = find_field(value, keys)
            if found is not None:
                return found
    return None


class ObservationNormalizer(ABC):
    """Base class for observation normalizers."""

    source: ObservationSource

    # Columns copied into additional_data when present
    extra_fields: tuple[str, ...] = ()

    def __init__(self, field_map: dict[str, str] | None = None):
        """
        Initialize normalizer.

        Args:
            field_map: Mapping of source columns to observation fields.
                Takes precedence over the built-in mappings.
        """
        # Earlier mappings take precedence when several columns fill one field
        self.field_map: dict[str, str] = {}
        for mapping in (field_map or {}, self._default_field_map(), COMMON_FIELD_MAP):
            for source_field, target_field in mapping.items():
                self.field_map.setdefault(source_field, target_field)

    def _default_field_map(self) -> dict[str, str]:
        """Source-specific field mappings."""
        return {}

    def normalize(
        self,
        data: pd.DataFrame | list[dict[str, Any]],
    ) -> list[Observation]:
        """
        Normalize source records to Observation objects.

        Records without any identity signal are skipped.

        Args:
            data: Source data as DataFrame or list of dicts

        Returns:
            List of Observation objects, in input order
        """
        df = self._to_dataframe(data)
        observations = []

        for index, row in df.iterrows():
            record = {key: _clean(value) for key, value in row.to_dict().items()}
            observation = self._build(record)
            if not any(getattr(observation, name) for name in IDENTITY_FIELDS):
                logger.warning(f"{self.source.value} record {index} has no identity signals, skipping")
                continue
            observations.append(observation)

        logger.info(f"Normalized {len(observations)} of {len(df)} {self.source.value} records")
        return observations

    def _to_dataframe(
        self,
        data: pd.DataFrame | list[dict[str, Any]],
    ) -> pd.DataFrame:
        """Convert input to DataFrame."""
        if isinstance(data, pd.DataFrame):
            return data
        return pd.DataFrame(data)

    def _map(self, record: dict[str, Any]) -> dict[str, Any]:
        """Apply the field map. The first non-empty variant of a field wins."""
        mapped: dict[str, Any] = {}
        for source_field, target_field in self.field_map.items():
            value = record.get(source_field)
            if value in (None, "") or target_field in mapped:
                continue
            mapped[target_field] = value
        return mapped

    def _full_name(self, mapped: dict[str, Any]) -> str | None:
        full_name = _text(mapped.get("full_name"))
        if full_name:
            return full_name
        parts = [_text(mapped.get("first_name")), _text(mapped.get("last_name"))]
        return " ".join(p for p in parts if p) or None

    def _additional_data(self, record: dict[str, Any]) -> dict[str, Any]:
        return {
            name: record[name]
            for name in self.extra_fields
            if record.get(name) not in (None, "")
        }

    def _collected_at(self, value: Any) -> datetime:
        if value is None:
            return parse_timestamp(None)
        try:
            return parse_timestamp(value)
        except (TypeError, ValueError):
            logger.warning(f"Unparseable timestamp {value!r}, using current time")
            return parse_timestamp(None)

    def _build(self, record: dict[str, Any]) -> Observation:
        mapped = self._map(record)
        return Observation(
            source=self.source,
            email=_text(mapped.get("email")),
            email_hash=_text(mapped.get("email_hash")),
            phone=_text(mapped.get("phone")),
            full_name=self._full_name(mapped),
            device_fingerprint=_text(mapped.get("device_fingerprint")),
            ip_address=_text(mapped.get("ip_address")),
            user_agent=_text(mapped.get("user_agent")),
            session_id=_text(mapped.get("session_id")),
            additional_data=self._additional_data(record),
            collected_at=self._collected_at(mapped.get("collected_at")),
        )


class FormSubmissionNormalizer(ObservationNormalizer):
    """
    Normalize form plugin submissions.

    Form payloads have arbitrary field names, so the email is taken from the
    first valid address anywhere in the record, and phone and name are
    searched for under common keys, including inside nested field groups.

    Example:
        normalizer = FormSubmissionNormalizer()
        observations = normalizer.normalize([
            {"form_id": "contact", "fields": {"your-email": "jane@example.com"}},
        ])
    """

    source = ObservationSource.FORM_SUBMISSION
    extra_fields = ("form_id", "plugin_type", "page_url")

    PHONE_KEYS = ("phone", "phone_number", "telephone", "tel", "mobile", "your-phone")
    NAME_KEYS = ("full_name", "name", "your-name")

    def _build(self, record: dict[str, Any]) -> Observation:
        observation = super()._build(record)
        return replace(
            observation,
            email=observation.email or find_email(record),
            phone=observation.phone or _text(find_field(record, self.PHONE_KEYS)),
            full_name=observation.full_name or _text(find_field(record, self.NAME_KEYS)),
        )


class OrderNormalizer(ObservationNormalizer):
    """
    Normalize e-commerce orders using billing details.

    The billing address is kept in additional_data["address"].
    """

    source = ObservationSource.ECOMMERCE_ORDER
    extra_fields = ("order_id", "order_total", "payment_method", "card_last4")

    ADDRESS_FIELDS = {
        "billing_address_1": "street",
        "billing_city": "city",
        "billing_state": "state",
        "billing_postcode": "zip",
        "billing_country": "country",
    }

    def _default_field_map(self) -> dict[str, str]:
        return {
            "billing_email": "email",
            "billing_phone": "phone",
            "billing_first_name": "first_name",
            "billing_last_name": "last_name",
            "customer_ip_address": "ip_address",
            "customer_user_agent": "user_agent",
            "date_created": "collected_at",
            "order_date": "collected_at",
        }

    def _additional_data(self, record: dict[str, Any]) -> dict[str, Any]:
        data = super()._additional_data(record)
        address = {
            target: record[source]
            for source, target in self.ADDRESS_FIELDS.items()
            if record.get(source) not in (None, "")
        }
        if address:
            data["address"] = address
        return data


class RegistrationNormalizer(ObservationNormalizer):
    """Normalize new user account records."""

    source = ObservationSource.REGISTRATION
    extra_fields = ("user_id", "user_login", "role")

    def _default_field_map(self) -> dict[str, str]:
        return {
            "registered_at": "collected_at",
            "user_registered": "collected_at",
        }


class LoginNormalizer(ObservationNormalizer):
    """Normalize user login records."""

    source = ObservationSource.LOGIN
    extra_fields = ("user_id", "user_login")

    def _default_field_map(self) -> dict[str, str]:
        return {
            "login_at": "collected_at",
            "last_login": "collected_at",
        }


class PassiveNormalizer(ObservationNormalizer):
    """
    Normalize passive browser telemetry.

    Page and interaction statistics go to additional_data, where the
    behavioral signature extractor reads them.
    """

    source = ObservationSource.PASSIVE
    extra_fields = (
        "pages_visited",
        "visited_pages",
        "session_duration",
        "click_count",
        "scroll_depth",
        "form_interactions",
        "entry_page",
        "referrer",
        "utm_source",
        "screen_resolution",
        "timezone",
        "language",
        "device_type",
        "cart_items",
        "compared_products",
        "downloads",
    )

    # Camel-case names sent by browser scripts
    TELEMETRY_ALIASES = {
        "pageViews": "pages_visited",
        "visitedPages": "visited_pages",
        "sessionDuration": "session_duration",
        "clicks": "click_count",
        "scrollDepth": "scroll_depth",
        "formInteractions": "form_interactions",
        "entryPage": "entry_page",
        "screenResolution": "screen_resolution",
    }

    def _additional_data(self, record: dict[str, Any]) -> dict[str, Any]:
        aliased = dict(record)
        for alias, name in self.TELEMETRY_ALIASES.items():
            if aliased.get(name) in (None, "") and aliased.get(alias) not in (None, ""):
                aliased[name] = aliased[alias]
        return super()._additional_data(aliased)
