from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .api.http import router as http_router
from .capabilities.console import ConsoleProvider
from .capabilities.interfaces import ProviderAdapter
from .common.dotenv import load_dotenv_auto
from .common.errors import ApiError
from .common.logging import configure_logging
from .common.trace import new_trace_id
from .core.bootstrap import BootstrapSequencer
from .core.config import LOCAL_DEFAULTS, ConfigFetch, ConfigManager, ConfigResolver, HubConfig, load_local_defaults
from .core.dispatch import DispatchCore
from .core.identity import IdentityManager
from .core.tracker import Tracker
from .models import ErrorEnvelope
from .modules.clarity import ClarityProvider
from .modules.google_analytics import GoogleAnalyticsProvider
from .modules.posthog import PostHogProvider
from .modules.remote_config import HttpConfigSource, RemoteConfigEndpoint
from .storage.db import SqliteKeyValueStore
from .storage.kv import MemoryKeyValueStore


def build_adapters() -> list[ProviderAdapter]:
    """Every known provider; the bootstrap decides which ones activate."""
    return [ConsoleProvider(), GoogleAnalyticsProvider(), ClarityProvider(), PostHogProvider()]


def build_config_fetch(cfg: HubConfig) -> Optional[ConfigFetch]:
    """Remote source from config, or None (local defaults only)."""
    if not cfg.remote.enabled or not cfg.remote.url:
        return None
    return HttpConfigSource(
        RemoteConfigEndpoint(
            url=cfg.remote.url,
            api_key=cfg.remote.api_key,
            method=cfg.remote.method,
            timeout_s=cfg.remote.timeout_s,
        )
    )


def create_app(
    *,
    config: Optional[HubConfig] = None,
    adapters: Optional[Sequence[ProviderAdapter]] = None,
    config_fetch: Optional[ConfigFetch] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FastAPI:
    # Load .env (best-effort). Environment variables set by the process take precedence.
    if environ is None:
        load_dotenv_auto(override=False, allow_keys=set(LOCAL_DEFAULTS), allow_prefixes={"BEACON_HUB_"})

    cfg = config or ConfigManager(environ=environ).load()
    configure_logging(json_output=cfg.log_json, level=cfg.log_level)

    app = FastAPI(title="Beacon Hub")
    app.state.config = cfg

    # CORS (dev-friendly; tighten in prod)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Dependency injection via app.state
    repo_root = Path(__file__).resolve().parent.parent  # <repo>
    db_path = cfg.db_path
    if db_path != ":memory:" and not Path(db_path).is_absolute():
        db_file = repo_root / db_path
        db_file.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(db_file)

    app.state.store = SqliteKeyValueStore(db_path=db_path)
    app.state.identity = IdentityManager(
        durable=app.state.store,
        volatile=MemoryKeyValueStore(),
        user_agent=cfg.user_agent,
    )
    app.state.dispatch = DispatchCore(identity=app.state.identity, init_timeout_s=cfg.init_timeout_s)
    app.state.tracker = Tracker(dispatch=app.state.dispatch, identity=app.state.identity)

    resolver = ConfigResolver(
        load_local_defaults(environ),
        fetch=config_fetch if config_fetch is not None else build_config_fetch(cfg),
    )
    app.state.resolver = resolver
    app.state.sequencer = BootstrapSequencer(
        resolver=resolver,
        dispatch=app.state.dispatch,
        adapters=adapters if adapters is not None else build_adapters(),
    )

    @app.on_event("startup")
    async def _startup() -> None:
        # The app starts serving once config is resolved; providers may still be pending.
        await app.state.sequencer.run()
        app.state.tracker.identify_anonymous_user()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.dispatch.aclose()
        app.state.store.close()

    @app.exception_handler(ApiError)
    async def api_error_handler(_, exc: ApiError):
        body = ErrorEnvelope(code=exc.code, message=exc.message, trace_id=new_trace_id(), data=exc.data or {})
        return JSONResponse(status_code=exc.http_status, content=body.model_dump())

    app.include_router(http_router, prefix="/v1")
    return app
