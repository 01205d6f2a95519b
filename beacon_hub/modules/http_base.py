from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic_core import to_jsonable_python

from ..capabilities.interfaces import BaseProviderAdapter


def jsonable(properties: dict[str, Any]) -> dict[str, Any]:
    """Make a property bag JSON-safe (datetimes, enums, dataclasses...)."""
    return to_jsonable_python(properties, fallback=str)


class HttpProviderAdapter(BaseProviderAdapter):
    """Provider that talks to its backend over HTTP.

    The client is created lazily unless injected; an injected client is
    owned by the caller and not closed here.
    """

    def __init__(self, *, client: Optional[httpx.AsyncClient] = None, timeout_s: float = 5.0) -> None:
        super().__init__()
        self._client = client
        self._owns_client = client is None
        self.timeout_s = timeout_s

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s))
        return self._client

    async def _post_json(self, url: str, payload: dict[str, Any], *, params: Optional[dict[str, str]] = None) -> None:
        resp = await self.client.post(url, json=payload, params=params)
        resp.raise_for_status()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
