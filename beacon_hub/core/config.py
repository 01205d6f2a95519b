from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional

import structlog
from pydantic import BaseModel, Field

from ..common.errors import RemoteConfigError
from ..common.logging import mask_secret

logger = structlog.get_logger(__name__)

# -------------------------
# Hub (process) settings
# -------------------------


class RemoteConfigSettings(BaseModel):
    """Where the analytics key-value config is fetched from.

    Notes:
    - `url` is the full endpoint (e.g. "<project>/functions/v1/get-config").
    - Without a url the hub runs on local defaults only.
    """

    enabled: bool = True
    url: Optional[str] = None
    api_key: Optional[str] = None
    method: Literal["GET", "POST"] = "POST"
    timeout_s: float = 10.0


class HubConfig(BaseModel):
    """Hub runtime configuration loaded from file + env overrides."""

    app_name: str = "beacon-hub"
    db_path: str = "data/beacon_hub.db"
    log_level: str = "INFO"
    log_json: bool = False
    user_agent: str = ""
    # None = wait for initialize forever
    init_timeout_s: Optional[float] = None

    remote: RemoteConfigSettings = Field(default_factory=RemoteConfigSettings)


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Load configuration from JSON file with environment overrides.

    - default < config file < environment variables (including those loaded from .env)
    - self-healing:
        * if config file is missing: write a default config (best-effort)
        * if config file is corrupted: backup the bad file then write a default config (best-effort)
    - never crash the hub due to config issues
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        repo_root = Path(__file__).resolve().parents[2]
        self.default_path = repo_root / "config" / "beacon_hub.json"
        self.environ = os.environ if environ is None else environ

    def _default_data(self) -> dict:
        return HubConfig().model_dump()

    def _write_default(self, cfg_path: Path) -> None:
        cfg_path.parent.mkdir(parents=True, exist_ok=True)
        cfg_path.write_text(
            json.dumps(self._default_data(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    def _heal(self, cfg_path: Path) -> None:
        try:
            self._write_default(cfg_path)
        except OSError as e:
            logger.warning("Could not write default config", path=str(cfg_path), error=str(e))

    def _resolve_path(self) -> Path:
        cfg_path = Path(self.environ.get("BEACON_HUB_CONFIG_PATH", str(self.default_path)))
        if not cfg_path.is_absolute():
            # interpret relative paths from repo root (not process CWD)
            cfg_path = self.default_path.parent.parent / cfg_path
        return cfg_path

    def _read_file(self, cfg_path: Path) -> dict:
        if not cfg_path.exists():
            self._heal(cfg_path)
            return self._default_data()
        try:
            data = json.loads(cfg_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
            return data
        except (OSError, ValueError) as e:
            ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            backup = cfg_path.with_suffix(cfg_path.suffix + f".bad-{ts}")
            logger.warning("Config file unreadable; restoring defaults", path=str(cfg_path), backup=str(backup), error=str(e))
            try:
                cfg_path.replace(backup)
            except OSError:
                pass
            self._heal(cfg_path)
            return self._default_data()

    def load(self) -> HubConfig:
        data = self._read_file(self._resolve_path())
        env = self.environ

        for key, env_name in (
            ("app_name", "BEACON_HUB_APP_NAME"),
            ("db_path", "BEACON_HUB_DB_PATH"),
            ("log_level", "BEACON_HUB_LOG_LEVEL"),
            ("user_agent", "BEACON_HUB_USER_AGENT"),
        ):
            v = env.get(env_name)
            if v is not None and v.strip() != "":
                data[key] = v
        if env.get("BEACON_HUB_LOG_JSON"):
            data["log_json"] = _env_bool(env["BEACON_HUB_LOG_JSON"])
        if env.get("BEACON_HUB_INIT_TIMEOUT_S"):
            try:
                data["init_timeout_s"] = float(env["BEACON_HUB_INIT_TIMEOUT_S"])
            except ValueError:
                pass

        remote = dict(data.get("remote") or {})
        if env.get("BEACON_HUB_REMOTE_ENABLED") is not None:
            remote["enabled"] = _env_bool(env["BEACON_HUB_REMOTE_ENABLED"])
        if env.get("BEACON_HUB_REMOTE_URL"):
            remote["url"] = env["BEACON_HUB_REMOTE_URL"]
        if env.get("BEACON_HUB_REMOTE_API_KEY"):
            remote["api_key"] = env["BEACON_HUB_REMOTE_API_KEY"]
        if env.get("BEACON_HUB_REMOTE_METHOD"):
            remote["method"] = env["BEACON_HUB_REMOTE_METHOD"].strip().upper()
        if env.get("BEACON_HUB_REMOTE_TIMEOUT_S"):
            try:
                remote["timeout_s"] = float(env["BEACON_HUB_REMOTE_TIMEOUT_S"])
            except ValueError:
                pass
        data["remote"] = remote

        return HubConfig.model_validate(data)


# -------------------------
# Analytics key-value config
# -------------------------

# Known analytics keys and their local defaults.
LOCAL_DEFAULTS: Mapping[str, str] = MappingProxyType(
    {
        "ANALYTICS_DEBUG": "false",
        "GA_ENABLED": "true",
        "GA_TRACKING_ID": "",
        "GA_API_SECRET": "",
        "CLARITY_ENABLED": "true",
        "CLARITY_PROJECT_ID": "",
        "POSTHOG_ENABLED": "true",
        "POSTHOG_API_KEY": "",
        "POSTHOG_HOST_URL": "",
    }
)

_SECRET_KEYS = ("GA_TRACKING_ID", "GA_API_SECRET", "CLARITY_PROJECT_ID", "POSTHOG_API_KEY")

ConfigFetch = Callable[[], Awaitable[Mapping[str, Any]]]


def load_local_defaults(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Known keys with their defaults, overridden by same-named env vars."""
    env = os.environ if environ is None else environ
    out = dict(LOCAL_DEFAULTS)
    for key in LOCAL_DEFAULTS:
        v = env.get(key)
        if v is not None:
            out[key] = v
    return out


@dataclass(frozen=True)
class ConfigSnapshot:
    """Read-only view of the merged config. `source` is "remote" or "local"."""

    values: Mapping[str, str] = field(default_factory=dict)
    source: str = "local"

    def get(self, key: str, default: str = "") -> str:
        v = self.values.get(key)
        if v is None or v == "":
            return default
        return v

    def masked(self) -> dict[str, str]:
        return {k: (mask_secret(v) if k in _SECRET_KEYS else v) for k, v in self.values.items()}


def _freeze(values: Mapping[str, str], source: str) -> ConfigSnapshot:
    return ConfigSnapshot(values=MappingProxyType(dict(values)), source=source)


def _stringify(raw: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in raw.items():
        if v is None:
            continue
        if isinstance(v, bool):
            out[str(k)] = "true" if v else "false"
        elif isinstance(v, (dict, list)):
            out[str(k)] = json.dumps(v, ensure_ascii=False)
        else:
            out[str(k)] = str(v)
    return out


class ConfigResolver:
    """Local defaults + one remote override, frozen once resolved.

    - before resolve(): get_value() reads the local defaults, never blocks
    - resolve(): remote wins per key; on failure the local defaults are frozen
      and RemoteConfigError is raised to the caller
    - after resolve(): the snapshot never changes for the process lifetime
    """

    def __init__(self, local_defaults: Mapping[str, str], fetch: Optional[ConfigFetch] = None) -> None:
        self.local_defaults: Mapping[str, str] = MappingProxyType(dict(local_defaults))
        self._fetch = fetch
        self._snapshot: Optional[ConfigSnapshot] = None
        self._lock = asyncio.Lock()

    @property
    def resolved(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Resolved snapshot, or the local defaults if resolve() has not finished."""
        if self._snapshot is not None:
            return self._snapshot
        return _freeze(self.local_defaults, "local")

    def get_value(self, key: str, default: str = "") -> str:
        return self.snapshot.get(key, default)

    async def resolve(self) -> ConfigSnapshot:
        # overlapping callers share the first fetch and its outcome
        async with self._lock:
            if self._snapshot is not None:
                return self._snapshot
            return await self._resolve_once()

    async def _resolve_once(self) -> ConfigSnapshot:
        if self._fetch is None:
            self._snapshot = _freeze(self.local_defaults, "local")
            raise RemoteConfigError("no remote configuration source configured")

        try:
            remote = await self._fetch()
        except RemoteConfigError:
            self._snapshot = _freeze(self.local_defaults, "local")
            raise
        except Exception as e:
            self._snapshot = _freeze(self.local_defaults, "local")
            raise RemoteConfigError(f"remote configuration fetch failed: {e}") from e

        if not remote:
            self._snapshot = _freeze(self.local_defaults, "local")
            raise RemoteConfigError("no configuration data received")

        merged = dict(self.local_defaults)
        merged.update(_stringify(remote))
        self._snapshot = _freeze(merged, "remote")
        logger.info("Remote configuration applied", keys=sorted(_stringify(remote)))
        return self._snapshot


def log_config_summary(snapshot: ConfigSnapshot) -> None:
    """Log which providers are configured, secrets masked."""
    logger.info(
        "Analytics configuration",
        source=snapshot.source,
        google_analytics={
            "enabled": snapshot.get("GA_ENABLED", "true"),
            "trackingId": mask_secret(snapshot.get("GA_TRACKING_ID")),
        },
        clarity={
            "enabled": snapshot.get("CLARITY_ENABLED", "true"),
            "projectId": mask_secret(snapshot.get("CLARITY_PROJECT_ID")),
        },
        posthog={
            "enabled": snapshot.get("POSTHOG_ENABLED", "true"),
            "apiKey": mask_secret(snapshot.get("POSTHOG_API_KEY")),
            "hostUrl": snapshot.get("POSTHOG_HOST_URL") or "disabled",
        },
        debug=snapshot.get("ANALYTICS_DEBUG", "false"),
    )
