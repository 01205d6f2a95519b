from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from ..capabilities.interfaces import ProviderAdapter
from ..common.errors import RemoteConfigError
from .config import ConfigResolver, ConfigSnapshot, log_config_summary
from .dispatch import DispatchCore
from .registry import ProviderState

logger = structlog.get_logger(__name__)


@dataclass
class BootstrapResult:
    snapshot: ConfigSnapshot
    registered: list[str]
    skipped: list[str]
    remote_error: Optional[str] = None
    tasks: dict[str, asyncio.Task[ProviderState]] = field(default_factory=dict)


class BootstrapSequencer:
    """Startup: config -> activation filter -> register -> concurrent initialize.

    run() returns as soon as configuration is resolved and every provider's
    initialize has been started; callers gate on that, not on readiness.
    Events tracked in the meantime are queued by the dispatch core.
    """

    def __init__(
        self,
        *,
        resolver: ConfigResolver,
        dispatch: DispatchCore,
        adapters: Sequence[ProviderAdapter],
    ) -> None:
        self.resolver = resolver
        self.dispatch = dispatch
        self.adapters = list(adapters)
        self.result: Optional[BootstrapResult] = None
        self._lock = asyncio.Lock()

    async def run(self) -> BootstrapResult:
        async with self._lock:
            if self.result is None:
                self.result = await self._run_once()
            return self.result

    async def _run_once(self) -> BootstrapResult:
        logger.info("Initializing analytics")
        remote_error: Optional[str] = None
        try:
            snapshot = await self.resolver.resolve()
        except RemoteConfigError as e:
            remote_error = str(e)
            snapshot = self.resolver.snapshot
            logger.warning("Remote configuration unavailable; using local defaults", error=remote_error)
        log_config_summary(snapshot)

        registered: list[str] = []
        skipped: list[str] = []
        for adapter in self.adapters:
            config = adapter.build_config(snapshot.get)
            if not adapter.activation_predicate(config):
                skipped.append(adapter.name)
                logger.info("Provider inactive", provider=adapter.name, enabled=config.enabled)
                continue
            self.dispatch.register(adapter, config)
            registered.append(adapter.name)
        self.dispatch.seal()

        tasks = {
            name: asyncio.create_task(self.dispatch.start(name), name=f"provider-init:{name}")
            for name in registered
        }
        return BootstrapResult(
            snapshot=snapshot,
            registered=registered,
            skipped=skipped,
            remote_error=remote_error,
            tasks=tasks,
        )

    async def wait_settled(self) -> dict[str, ProviderState]:
        """Wait until every started provider is ready or failed."""
        result = self.result or await self.run()
        if result.tasks:
            await asyncio.gather(*result.tasks.values())
        return {name: self.dispatch.state(name) for name in result.registered}
