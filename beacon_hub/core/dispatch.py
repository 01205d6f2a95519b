"""Dispatch core: enrichment, per-provider queueing and fan-out.

Every registered provider is in one of three states:

- pending: events are appended to its queue in call order
- ready: events are handed to the adapter immediately
- failed: events are dropped (the failure itself is logged once)

When a provider turns ready its queue is replayed once, in order, and then
discarded. Events produced before bootstrap has registered the providers are
held in a backlog and routed as soon as registration closes.

All of this runs on a single event loop; nothing here awaits between reading
and mutating a queue, so producers never observe a half-flushed provider.
"""
from __future__ import annotations

import asyncio
import inspect
from collections import deque
from functools import partial
from typing import Any, Awaitable, Deque, Mapping, Optional

import structlog

from ..capabilities.interfaces import ProviderAdapter, ProviderConfig
from ..common.errors import DispatchError, ProviderInitError
from ..common.time_util import utc_now_iso
from ..events.models import Event, EventKind, build_event
from .identity import IdentityManager
from .registry import ProviderRegistration, ProviderRegistry, ProviderState, ProviderStatus

logger = structlog.get_logger(__name__)


class DispatchCore:
    """Owns provider registrations and their queues.

    Constructed once at startup and injected wherever events are produced.
    """

    def __init__(
        self,
        *,
        identity: IdentityManager,
        registry: Optional[ProviderRegistry] = None,
        init_timeout_s: Optional[float] = None,
    ) -> None:
        self.identity = identity
        self.registry = registry or ProviderRegistry()
        self.init_timeout_s = init_timeout_s
        self._inflight: set[asyncio.Future[Any]] = set()
        # events produced before bootstrap finished registering providers
        self._backlog: Deque[Event] = deque()

    # -------------------------
    # Registration & lifecycle
    # -------------------------

    def register(self, adapter: ProviderAdapter, config: ProviderConfig) -> ProviderRegistration:
        reg = self.registry.add(adapter, config)
        logger.info("Provider registered", provider=adapter.name)
        return reg

    def seal(self) -> None:
        """Close registration and hand the backlog to the registered providers."""
        if self.registry.sealed:
            return
        self.registry.seal()
        backlog, self._backlog = self._backlog, deque()
        logger.info("Provider registration closed", providers=len(self.registry), backlog=len(backlog))
        for event in backlog:
            self._route(event)

    def state(self, name: str) -> ProviderState:
        return self.registry.get(name).state

    def snapshot(self) -> list[ProviderStatus]:
        return self.registry.snapshot()

    async def start(self, name: str) -> ProviderState:
        """Run the provider's initialize and settle its state.

        Sync raise, async rejection and (if configured) timeout all end in
        `failed`; anything else ends in `ready`.
        """
        reg = self.registry.get(name)
        if reg.state is not ProviderState.PENDING:
            return reg.state

        try:
            result = reg.adapter.initialize(reg.config)
            if inspect.isawaitable(result):
                if self.init_timeout_s is not None:
                    await asyncio.wait_for(result, timeout=self.init_timeout_s)
                else:
                    await result
        except asyncio.TimeoutError:
            self._mark_failed(reg, ProviderInitError(name, f"initialize timed out after {self.init_timeout_s}s"))
        except Exception as e:
            self._mark_failed(reg, ProviderInitError(name, str(e) or type(e).__name__))
        else:
            self._mark_ready(reg)
        return reg.state

    def _mark_ready(self, reg: ProviderRegistration) -> None:
        reg.state = ProviderState.READY
        reg.last_changed_at_utc = utc_now_iso()
        queued = len(reg.pending_queue)
        logger.info("Provider ready", provider=reg.name, queued=queued)
        # Events routed while replaying go to the back of the queue, so the
        # adapter still sees call order.
        while reg.pending_queue:
            self._deliver(reg, reg.pending_queue.popleft())

    def _mark_failed(self, reg: ProviderRegistration, err: ProviderInitError) -> None:
        reg.state = ProviderState.FAILED
        reg.last_changed_at_utc = utc_now_iso()
        reg.error = err.message
        discarded = len(reg.pending_queue)
        reg.dropped += discarded
        reg.pending_queue.clear()
        logger.error("Provider initialization failed", provider=reg.name, error=err.message, discarded=discarded)

    # -------------------------
    # Producer-facing operations
    # -------------------------

    def track(self, event_name: str, properties: Optional[Mapping[str, Any]] = None) -> None:
        self._emit(EventKind.TRACK, event_name, properties)

    def page(self, path: str, properties: Optional[Mapping[str, Any]] = None) -> None:
        self._emit(EventKind.PAGE, path, properties)

    def identify(self, user_id: str, traits: Optional[Mapping[str, Any]] = None) -> None:
        self._emit(EventKind.IDENTIFY, user_id, traits)

    def _emit(self, kind: EventKind, name: str, properties: Optional[Mapping[str, Any]]) -> None:
        try:
            event = build_event(
                kind,
                name,
                anonymous_id=self.identity.get_anonymous_id(),
                session_id=self.identity.get_session_id(),
                properties=properties,
            )
        except Exception:
            # identity storage trouble must not reach the producer
            logger.exception("Event enrichment failed; event dropped", event_kind=kind.value, event_name=name)
            return
        self.dispatch(event)

    def dispatch(self, event: Event) -> None:
        """Route an already-enriched event to every registration.

        Until seal() the set of providers is unknown, so events wait in the
        backlog instead.
        """
        if not self.registry.sealed:
            self._backlog.append(event)
            return
        self._route(event)

    def _route(self, event: Event) -> None:
        for reg in self.registry:
            if reg.state is ProviderState.READY and not reg.pending_queue:
                self._deliver(reg, event)
            elif reg.state is ProviderState.FAILED:
                reg.dropped += 1
            else:
                reg.pending_queue.append(event)

    # -------------------------
    # Delivery
    # -------------------------

    def _handler(self, adapter: ProviderAdapter, kind: EventKind):
        if kind is EventKind.TRACK:
            return adapter.on_track
        if kind is EventKind.PAGE:
            return adapter.on_page
        return adapter.on_identify

    def _deliver(self, reg: ProviderRegistration, event: Event) -> None:
        try:
            result = self._handler(reg.adapter, event.kind)(event)
        except Exception as e:
            self._record_failure(reg, event, e)
            return
        reg.delivered += 1
        if inspect.isawaitable(result):
            self._spawn(reg, event, result)

    def _spawn(self, reg: ProviderRegistration, event: Event, result: Awaitable[Any]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            self._record_failure(reg, event, RuntimeError("no running event loop for asynchronous delivery"))
            return
        task = asyncio.ensure_future(result)
        self._inflight.add(task)
        task.add_done_callback(partial(self._on_delivery_done, reg, event))

    def _on_delivery_done(self, reg: ProviderRegistration, event: Event, task: asyncio.Future[Any]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._record_failure(reg, event, exc)

    def _record_failure(self, reg: ProviderRegistration, event: Event, exc: BaseException) -> None:
        reg.failures += 1
        err = DispatchError(reg.name, event.kind.value, str(exc) or type(exc).__name__)
        logger.warning("Provider dispatch failed", provider=reg.name, event_name=event.name, error=str(err))

    # -------------------------
    # Shutdown
    # -------------------------

    async def drain(self) -> None:
        """Wait for asynchronous deliveries started so far."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for reg in self.registry:
            try:
                await reg.adapter.aclose()
            except Exception as e:
                logger.warning("Provider close failed", provider=reg.name, error=str(e))
