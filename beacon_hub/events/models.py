from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from ..common.time_util import now_ms, utc_now_iso


class EventKind(str, Enum):
    TRACK = "track"
    PAGE = "page"
    IDENTIFY = "identify"


@dataclass(frozen=True)
class Event:
    """An enriched event as handed to provider adapters.

    Note:
    - `name` is the event name (track), the path (page) or the user id (identify).
    - `properties` already contains identity fields and the capture timestamp.
    """

    kind: EventKind
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    enriched_at: str = ""

    @property
    def anonymous_id(self) -> Optional[str]:
        return self.properties.get("anonymousId")


def enrich_properties(
    system: Mapping[str, Any],
    caller: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Merge system context with caller properties; caller keys win on conflict."""
    return {**system, **(caller or {})}


def build_event(
    kind: EventKind,
    name: str,
    *,
    anonymous_id: str,
    session_id: str,
    properties: Optional[Mapping[str, Any]] = None,
) -> Event:
    system = {
        "anonymousId": anonymous_id,
        "sessionId": session_id,
        "timestamp": now_ms(),
    }
    merged = enrich_properties(system, properties)
    if kind is EventKind.PAGE:
        merged["path"] = name
    return Event(kind=kind, name=name, properties=merged, enriched_at=utc_now_iso())
