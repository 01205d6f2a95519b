from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from ..capabilities.interfaces import ProviderConfig
from ..common.logging import mask_secret
from ..events.models import Event
from .http_base import HttpProviderAdapter, jsonable

logger = structlog.get_logger(__name__)

GTAG_SCRIPT_URL = "https://www.googletagmanager.com/gtag/js"
COLLECT_URL = "https://www.google-analytics.com/mp/collect"


class GoogleAnalyticsProvider(HttpProviderAdapter):
    """GA4 via the Measurement Protocol.

    initialize() loads the gtag script for the measurement id, which fails
    fast on an unknown id. There is no identify concept.
    """

    name = "google-analytics"
    enabled_key = "GA_ENABLED"
    param_keys = {"measurement_id": "GA_TRACKING_ID", "api_secret": "GA_API_SECRET"}
    required_params = ("measurement_id",)

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 5.0,
        script_url: str = GTAG_SCRIPT_URL,
        collect_url: str = COLLECT_URL,
    ) -> None:
        super().__init__(client=client, timeout_s=timeout_s)
        self.script_url = script_url
        self.collect_url = collect_url
        self.measurement_id = ""
        self.api_secret = ""

    async def initialize(self, config: ProviderConfig) -> None:
        self.measurement_id = config.param("measurement_id")
        self.api_secret = config.param("api_secret")
        logger.info("Loading Google Analytics", measurement_id=mask_secret(self.measurement_id))
        resp = await self.client.get(self.script_url, params={"id": self.measurement_id})
        resp.raise_for_status()
        self._ready = True

    async def _send(self, event: Event, name: str, params: dict[str, Any]) -> None:
        query = {"measurement_id": self.measurement_id}
        if self.api_secret:
            query["api_secret"] = self.api_secret
        payload: dict[str, Any] = {
            "client_id": event.anonymous_id or "anonymous",
            "events": [{"name": name, "params": jsonable(params)}],
        }
        ts = params.get("timestamp")
        if isinstance(ts, int) and not isinstance(ts, bool):
            payload["timestamp_micros"] = ts * 1000
        await self._post_json(self.collect_url, payload, params=query)

    def on_page(self, event: Event):
        return self._send(event, "page_view", {**event.properties, "page_path": event.name})

    def on_track(self, event: Event):
        return self._send(event, event.name, dict(event.properties))
