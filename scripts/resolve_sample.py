#!/usr/bin/env python3
"""Run identity resolution over a small sample of touch points.

This script:
1. Normalizes sample passive, form, order and login records
2. Ingests them in collection order into an in-memory store, or into
   BigQuery when GCP_PROJECT_ID is set
3. Prints the links written, candidates sent for review and matcher failures
"""

import logging
import os
from datetime import UTC, datetime

from visitorgraph.identity import (
    BigQueryObservationStore,
    FormSubmissionNormalizer,
    IdentityResolutionEngine,
    InMemoryAttributionSink,
    InMemoryObservationStore,
    InMemoryReviewQueue,
    LoginNormalizer,
    OrderNormalizer,
    PassiveNormalizer,
    ResolutionConfig,
)

PASSIVE = [
    {
        "fingerprint": "fp-7f3a",
        "sessionId": "sess-1",
        "ip": "203.0.113.7",
        "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36",
        "pageViews": 6,
        "sessionDuration": 420,
        "clicks": 14,
        "scrollDepth": 80,
        "referrer": "https://www.google.com/",
        "timestamp": "2025-01-15T13:30:00Z",
    },
    {
        "fingerprint": "fp-91bc",
        "sessionId": "sess-2",
        "ip": "198.51.100.23",
        "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36",
        "pageViews": 5,
        "sessionDuration": 380,
        "clicks": 12,
        "scrollDepth": 75,
        "referrer": "https://www.bing.com/",
        "timestamp": "2025-01-15T14:10:00Z",
    },
]

FORMS = [
    {
        "form_id": "contact",
        "plugin_type": "cf7",
        "fields": {"your-name": "Jane Doe", "your-email": "Jane.Doe@acme.com"},
        "ip": "203.0.113.7",
        "fingerprint": "fp-7f3a",
        "timestamp": "2025-01-15T13:40:00Z",
    },
]

ORDERS = [
    {
        "order_id": "ORD-1001",
        "order_total": 150.00,
        "billing_email": "jane.doe@acme.com",
        "billing_phone": "(555) 123-4567",
        "billing_first_name": "Jane",
        "billing_last_name": "Doe",
        "customer_ip_address": "203.0.113.7",
        "date_created": "2025-01-15T14:00:00Z",
    },
]

LOGINS = [
    {
        "email": "j.doe@acme.com",
        "display_name": "Jane Doe",
        "session_id": "sess-3",
        "last_login": "2025-01-15T14:20:00Z",
    },
]


def build_engine() -> tuple[IdentityResolutionEngine, InMemoryAttributionSink, InMemoryReviewQueue]:
    """Create an engine on BigQuery if configured, otherwise in memory."""
    config = ResolutionConfig.from_env()
    sink = InMemoryAttributionSink()
    queue = InMemoryReviewQueue()

    if os.getenv("GCP_PROJECT_ID"):
        store = BigQueryObservationStore()
        store.ensure_tables_exist()
        print(f"Using BigQuery store {store.observations_table}")
    else:
        store = InMemoryObservationStore()
        print("Using in-memory store")

    engine = IdentityResolutionEngine(
        store, config=config, review_queue=queue, attribution_sink=sink
    )
    return engine, sink, queue


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    engine, sink, queue = build_engine()

    observations = (
        PassiveNormalizer().normalize(PASSIVE)
        + FormSubmissionNormalizer().normalize(FORMS)
        + OrderNormalizer().normalize(ORDERS)
        + LoginNormalizer().normalize(LOGINS)
    )
    observations.sort(key=lambda o: o.collected_at)

    print("\n" + "=" * 60)
    print(f"Ingesting {len(observations)} observations")
    print("=" * 60)

    now = datetime(2025, 1, 15, 14, 30, tzinfo=UTC)
    for result in engine.ingest_batch(observations, now=now):
        observation = engine.store.get_observation(result.observation_id)
        print(f"\n{observation.source.value} {result.observation_id}")
        for link in result.high:
            print(
                f"  linked   {link.other(result.observation_id)} "
                f"{link.link_type:22} strength {link.link_strength:.0f}"
            )
        for candidate in result.medium:
            print(
                f"  review   {candidate.candidate_observation_id} "
                f"{candidate.match_type:22} confidence {candidate.confidence:.2f}"
            )
        if result.discarded:
            print(f"  discarded {result.discarded} low-confidence candidates")
        for diagnostic in result.diagnostics:
            print(f"  FAILED   {diagnostic.matcher}: {diagnostic.error}")

    print("\n" + "=" * 60)
    print(f"{len(sink.events)} attribution events, {len(queue)} review items")
    print("=" * 60)


if __name__ == "__main__":
    main()
