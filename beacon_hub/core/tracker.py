from __future__ import annotations

import traceback
from typing import Any, Mapping, Optional

import structlog

from ..events.catalog import EventType, event_name
from .dispatch import DispatchCore
from .identity import IdentityManager, IdentityTraits

logger = structlog.get_logger(__name__)


class Tracker:
    """Producer API. Every call is fire-and-forget and never raises."""

    def __init__(self, *, dispatch: DispatchCore, identity: IdentityManager) -> None:
        self.dispatch = dispatch
        self.identity = identity

    def track_event(self, event_type: EventType | str, properties: Optional[Mapping[str, Any]] = None) -> None:
        self.dispatch.track(event_name(event_type), properties)

    def track_page(self, path: str, properties: Optional[Mapping[str, Any]] = None) -> None:
        self.dispatch.page(path, properties)

    def identify_user(self, user_id: str, traits: Optional[Mapping[str, Any]] = None) -> None:
        self.dispatch.identify(user_id, traits)

    def identify_anonymous_user(self) -> Optional[IdentityTraits]:
        """Identify the current anonymous session; None if identity storage failed."""
        try:
            return self.identity.identify_session(self.dispatch)
        except Exception:
            logger.exception("Anonymous identify failed")
            return None

    def track_error(
        self,
        error: BaseException,
        context: str,
        additional_data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.track_event(
            EventType.CONFIGURATION_ERROR,
            {
                "errorCode": type(error).__name__,
                "errorMessage": str(error),
                "errorStack": stack,
                "context": context,
                **(additional_data or {}),
            },
        )
