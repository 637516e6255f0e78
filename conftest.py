"""Shared pytest fixtures for VisitorGraph packages."""

import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture
def sample_touch_points():
    """One visitor's touch points from three sources."""
    return {
        "form": [
            {
                "form_id": "contact",
                "plugin_type": "cf7",
                "fields": {"your-name": "Jane Doe", "your-email": "Jane@Acme.com"},
                "ip": "203.0.113.7",
                "timestamp": "2025-01-15T13:40:00Z",
            }
        ],
        "order": [
            {
                "order_id": "ORD-001",
                "order_total": 150.00,
                "billing_email": "jane@acme.com",
                "billing_first_name": "Jane",
                "billing_last_name": "Doe",
                "customer_ip_address": "203.0.113.7",
                "date_created": "2025-01-15T14:00:00Z",
            }
        ],
        "passive": [
            {
                "fingerprint": "fp-123",
                "sessionId": "s-1",
                "ip": "203.0.113.7",
                "pageViews": 6,
                "sessionDuration": 420,
                "timestamp": "2025-01-15T13:30:00Z",
            }
        ],
    }
