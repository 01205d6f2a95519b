from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ApiError(Exception):
    """统一的业务错误，用于转换成契约规定的错误响应结构。"""
    code: str
    message: str
    http_status: int = 400
    data: Optional[dict[str, Any]] = None


class TelemetryError(Exception):
    """Base class for dispatch pipeline errors.

    None of these are fatal to the host application: they are caught and logged
    inside the pipeline, the worst outcome being lost analytics data.
    """


class RemoteConfigError(TelemetryError):
    """Remote configuration fetch failed or returned an empty payload."""


class ProviderInitError(TelemetryError):
    """A provider's initialize raised (sync), rejected (async) or timed out."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        self.message = message
        super().__init__(f"Provider '{provider_name}' failed to initialize: {message}")


class DispatchError(TelemetryError):
    """A single on_track / on_page / on_identify call raised."""

    def __init__(self, provider_name: str, event_kind: str, message: str) -> None:
        self.provider_name = provider_name
        self.event_kind = event_kind
        self.message = message
        super().__init__(f"Provider '{provider_name}' failed to handle {event_kind}: {message}")
