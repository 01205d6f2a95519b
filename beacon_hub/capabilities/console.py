from __future__ import annotations

import structlog

from ..events.models import Event
from .interfaces import BaseProviderAdapter, HandlerResult, ProviderConfig

logger = structlog.get_logger(__name__)


class ConsoleProvider(BaseProviderAdapter):
    """Debug provider: writes every event to the log.

    Only active when ANALYTICS_DEBUG is truthy.
    """

    name = "console"
    enabled_key = "ANALYTICS_DEBUG"
    enabled_default = "false"

    def __init__(self, *, level: str = "debug") -> None:
        super().__init__()
        self._log = getattr(logger, level)

    def initialize(self, config: ProviderConfig) -> HandlerResult:
        logger.info("Console analytics initialized")
        self._ready = True
        return None

    def _emit(self, label: str, event: Event) -> None:
        self._log(label, event_name=event.name, properties=event.properties)

    def on_page(self, event: Event) -> HandlerResult:
        self._emit("Page", event)
        return None

    def on_track(self, event: Event) -> HandlerResult:
        self._emit("Event", event)
        return None

    def on_identify(self, event: Event) -> HandlerResult:
        self._emit("User", event)
        return None
