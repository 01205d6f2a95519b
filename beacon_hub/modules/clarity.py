from __future__ import annotations

from typing import Optional

import httpx
import structlog

from ..capabilities.interfaces import ProviderConfig
from ..common.logging import mask_secret
from .http_base import HttpProviderAdapter

logger = structlog.get_logger(__name__)

TAG_URL = "https://www.clarity.ms/tag"


class ClarityProvider(HttpProviderAdapter):
    """Microsoft Clarity session replay.

    Clarity records on its own once its tag is loaded, so page/track/identify
    stay no-ops; initialize() only verifies the project tag is served.
    """

    name = "clarity"
    enabled_key = "CLARITY_ENABLED"
    param_keys = {"project_id": "CLARITY_PROJECT_ID"}

    def __init__(self, *, client: Optional[httpx.AsyncClient] = None, timeout_s: float = 5.0, tag_url: str = TAG_URL) -> None:
        super().__init__(client=client, timeout_s=timeout_s)
        self.tag_url = tag_url.rstrip("/")
        self.project_id = ""

    async def initialize(self, config: ProviderConfig) -> None:
        self.project_id = config.param("project_id")
        logger.info("Loading Microsoft Clarity", project_id=mask_secret(self.project_id))
        resp = await self.client.get(f"{self.tag_url}/{self.project_id}")
        resp.raise_for_status()
        self._ready = True
