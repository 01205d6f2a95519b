from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional

from ..capabilities.interfaces import ProviderAdapter, ProviderConfig
from ..common.time_util import utc_now_iso
from ..events.models import Event


class ProviderState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ProviderRegistration:
    """Dispatch-core-owned record for one active provider.

    Transitions: pending -> ready | pending -> failed. Both are terminal.
    """

    adapter: ProviderAdapter
    config: ProviderConfig
    state: ProviderState = ProviderState.PENDING
    pending_queue: Deque[Event] = field(default_factory=deque)
    last_changed_at_utc: str = field(default_factory=utc_now_iso)
    error: Optional[str] = None
    delivered: int = 0
    dropped: int = 0
    failures: int = 0

    @property
    def name(self) -> str:
        return self.adapter.name


@dataclass(frozen=True)
class ProviderStatus:
    name: str
    state: ProviderState
    queued: int
    delivered: int
    dropped: int
    failures: int
    last_changed_at_utc: str
    error: Optional[str] = None


class ProviderRegistry:
    """Ordered provider registrations; sealed once bootstrap has registered everything."""

    def __init__(self) -> None:
        self._items: Dict[str, ProviderRegistration] = {}
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def add(self, adapter: ProviderAdapter, config: ProviderConfig) -> ProviderRegistration:
        if self._sealed:
            raise RuntimeError("provider registry is sealed; providers cannot be added after bootstrap")
        if adapter.name in self._items:
            raise ValueError(f"provider '{adapter.name}' is already registered")
        reg = ProviderRegistration(adapter=adapter, config=config)
        self._items[adapter.name] = reg
        return reg

    def get(self, name: str) -> ProviderRegistration:
        return self._items[name]

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __iter__(self):
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> list[ProviderStatus]:
        return [
            ProviderStatus(
                name=r.name,
                state=r.state,
                queued=len(r.pending_queue),
                delivered=r.delivered,
                dropped=r.dropped,
                failures=r.failures,
                last_changed_at_utc=r.last_changed_at_utc,
                error=r.error,
            )
            for r in self._items.values()
        ]
