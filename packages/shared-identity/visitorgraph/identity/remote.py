"""HTTP delivery of attribution events, resolution events and review candidates."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from visitorgraph.identity.config import RemoteConfig
from visitorgraph.identity.events import (
    AttributionEvent,
    AttributionSink,
    ResolutionEvent,
    ResolutionSink,
)
from visitorgraph.identity.exceptions import DispatchError
from visitorgraph.identity.review import ReviewItem, ReviewQueue

logger = logging.getLogger(__name__)

EVENTS_PATH = "/v1/attribution-events"
REVIEW_PATH = "/v1/review-items"
RESOLUTIONS_PATH = "/v1/resolutions"


class _HttpPoster:
    """Shared httpx client handling for the remote collaborators."""

    def __init__(self, config: RemoteConfig | None = None, client: httpx.Client | None = None):
        self.config = config or RemoteConfig.from_env()
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize the HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.api_token:
                headers["Authorization"] = f"Bearer {self.config.api_token}"
            self._client = httpx.Client(
                base_url=self.config.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.config.timeout, connect=self.config.connect_timeout),
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> _HttpPoster:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _post(self, path: str, payload: dict[str, Any]) -> None:
        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DispatchError(
                f"POST {path} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DispatchError(f"POST {path} failed: {e}") from e


class HttpAttributionSink(_HttpPoster, AttributionSink):
    """Post attribution events to a remote attribution service.

    Example:
        >>> with HttpAttributionSink(RemoteConfig(base_url="https://attr.example.com")) as sink:
        ...     sink.emit(event)
    """

    def emit(self, event: AttributionEvent) -> None:
        """Deliver one event.

        Raises:
            DispatchError: If the request fails or returns an error status.
        """
        self._post(EVENTS_PATH, event.to_dict())
        logger.debug(f"Posted attribution event for {event.observation_id_1}")


class HttpReviewQueue(_HttpPoster, ReviewQueue):
    """Post review items to a remote review service."""

    def enqueue(self, item: ReviewItem) -> None:
        self._post(REVIEW_PATH, item.to_dict())


class HttpResolutionSink(_HttpPoster, ResolutionSink):
    """Post each resolution pass to a central identity service.

    Example:
        >>> sink = HttpResolutionSink(RemoteConfig(base_url="https://master.example.com"))
        >>> engine = IdentityResolutionEngine(store, resolution_sink=sink)
    """

    def publish(self, event: ResolutionEvent) -> None:
        """Deliver one event.

        Raises:
            DispatchError: If the request fails or returns an error status.
        """
        self._post(RESOLUTIONS_PATH, event.to_dict())
        logger.debug(f"Posted resolution of {event.observation_id}")
