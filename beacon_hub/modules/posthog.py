from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from ..capabilities.interfaces import ProviderConfig
from ..common.logging import mask_secret
from ..events.models import Event
from .http_base import HttpProviderAdapter, jsonable

logger = structlog.get_logger(__name__)


class PostHogProvider(HttpProviderAdapter):
    """PostHog product analytics via the public capture endpoint.

    After identify(), later events are attributed to the identified user.
    """

    name = "posthog"
    enabled_key = "POSTHOG_ENABLED"
    param_keys = {"api_key": "POSTHOG_API_KEY", "host_url": "POSTHOG_HOST_URL"}

    def __init__(self, *, client: Optional[httpx.AsyncClient] = None, timeout_s: float = 5.0) -> None:
        super().__init__(client=client, timeout_s=timeout_s)
        self.api_key = ""
        self.host_url = ""
        self.distinct_id: Optional[str] = None

    def initialize(self, config: ProviderConfig) -> None:
        self.api_key = config.param("api_key")
        self.host_url = config.param("host_url").rstrip("/")
        logger.info("Initializing PostHog", api_host=self.host_url, api_key=mask_secret(self.api_key))
        self._ready = True

    @property
    def capture_url(self) -> str:
        return f"{self.host_url}/capture/"

    async def _capture(self, event: Event, name: str, properties: dict[str, Any], distinct_id: str) -> None:
        payload = {
            "api_key": self.api_key,
            "event": name,
            "distinct_id": distinct_id,
            "properties": jsonable(properties),
            "timestamp": event.enriched_at,
        }
        await self._post_json(self.capture_url, payload)

    def _distinct_for(self, event: Event) -> str:
        return self.distinct_id or event.anonymous_id or "anonymous"

    def on_page(self, event: Event):
        props = {**event.properties, "$current_url": event.name}
        return self._capture(event, "$pageview", props, self._distinct_for(event))

    def on_track(self, event: Event):
        return self._capture(event, event.name, dict(event.properties), self._distinct_for(event))

    def on_identify(self, event: Event):
        previous = self._distinct_for(event)
        self.distinct_id = event.name
        props: dict[str, Any] = {"$set": dict(event.properties)}
        if previous != event.name:
            props["$anon_distinct_id"] = previous
        return self._capture(event, "$identify", props, event.name)
