from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

import httpx
import structlog

from ..common.errors import RemoteConfigError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RemoteConfigEndpoint:
    url: str
    api_key: Optional[str] = None
    method: Literal["GET", "POST"] = "POST"
    timeout_s: float = 10.0


class HttpConfigSource:
    """Fetch the flat analytics config map from an edge function.

    Contract:
    - one request, no pagination
    - 2xx with a non-empty JSON object -> that object
    - anything else -> RemoteConfigError
    """

    def __init__(self, endpoint: RemoteConfigEndpoint, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.endpoint = endpoint
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.endpoint.api_key:
            headers["apikey"] = self.endpoint.api_key
            headers["Authorization"] = f"Bearer {self.endpoint.api_key}"
        return headers

    async def _request(self, client: httpx.AsyncClient) -> httpx.Response:
        if self.endpoint.method == "GET":
            return await client.get(self.endpoint.url, headers=self._headers())
        return await client.post(self.endpoint.url, headers=self._headers(), json={})

    async def __call__(self) -> dict[str, Any]:
        try:
            if self._client is not None:
                resp = await self._request(self._client)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self.endpoint.timeout_s)) as client:
                    resp = await self._request(client)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            logger.error("Failed to load remote configuration", url=self.endpoint.url, error=str(e))
            raise RemoteConfigError(f"remote configuration request failed: {e}") from e
        except ValueError as e:
            logger.error("Remote configuration is not JSON", url=self.endpoint.url, error=str(e))
            raise RemoteConfigError("remote configuration is not valid JSON") from e

        if not isinstance(data, dict):
            raise RemoteConfigError(f"remote configuration must be a JSON object, got {type(data).__name__}")
        if not data:
            raise RemoteConfigError("no configuration data received")
        return data
