from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from ..events.models import Event

Lookup = Callable[[str, str], str]
HandlerResult = Optional[Awaitable[Any]]

_TRUE_VALUES = ("1", "true", "yes", "on")


def is_truthy(raw: str | None) -> bool:
    return (raw or "").strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class ProviderConfig:
    """Activation bundle for one provider, read from the resolved config.

    Evaluated once at registration; later config changes are not observed.
    """

    name: str
    enabled: bool
    activation_params: Mapping[str, str] = field(default_factory=dict)

    def param(self, key: str) -> str:
        return self.activation_params.get(key, "")


class ProviderAdapter(Protocol):
    """Provider interface (dispatch core depends on interface, not implementation).

    Handlers may return an awaitable; the dispatch core schedules it and
    does not wait for it.
    """

    name: str

    def build_config(self, lookup: Lookup) -> ProviderConfig:
        ...

    def activation_predicate(self, config: ProviderConfig) -> bool:
        ...

    def initialize(self, config: ProviderConfig) -> HandlerResult:
        ...

    def on_page(self, event: Event) -> HandlerResult:
        ...

    def on_track(self, event: Event) -> HandlerResult:
        ...

    def on_identify(self, event: Event) -> HandlerResult:
        ...

    def is_ready(self) -> bool:
        ...

    async def aclose(self) -> None:
        ...


class BaseProviderAdapter:
    """Total default implementation of ProviderAdapter.

    Every handler is a no-op, so backends without a page or identify concept
    simply don't override them.

    Subclasses declare:
    - `param_keys`: activation param name -> config key
    - `required_params`: params that must be non-empty (default: all of them)
    - `enabled_key` / `enabled_default`: the on/off flag
    """

    name: str = "base"
    enabled_key: Optional[str] = None
    enabled_default: str = "true"
    param_keys: Mapping[str, str] = {}
    required_params: Optional[tuple[str, ...]] = None

    def __init__(self) -> None:
        self._ready = False

    def build_config(self, lookup: Lookup) -> ProviderConfig:
        enabled = True
        if self.enabled_key:
            enabled = is_truthy(lookup(self.enabled_key, self.enabled_default))
        params = {param: lookup(key, "") for param, key in self.param_keys.items()}
        return ProviderConfig(name=self.name, enabled=enabled, activation_params=params)

    def activation_predicate(self, config: ProviderConfig) -> bool:
        required = self.required_params if self.required_params is not None else tuple(self.param_keys)
        return config.enabled and all(config.param(p).strip() for p in required)

    def initialize(self, config: ProviderConfig) -> HandlerResult:
        self._ready = True
        return None

    def on_page(self, event: Event) -> HandlerResult:
        return None

    def on_track(self, event: Event) -> HandlerResult:
        return None

    def on_identify(self, event: Event) -> HandlerResult:
        return None

    def is_ready(self) -> bool:
        return self._ready

    async def aclose(self) -> None:
        return None
