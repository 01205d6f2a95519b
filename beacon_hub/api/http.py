from __future__ import annotations

from fastapi import APIRouter, Request

from ..common.errors import ApiError
from ..common.time_util import utc_now_iso
from ..common.trace import new_trace_id
from ..core.bootstrap import BootstrapSequencer
from ..core.dispatch import DispatchCore
from ..core.registry import ProviderStatus
from ..models import OkEnvelope, ProviderItem, ProvidersResponse

router = APIRouter()


def ok(trace_id: str, data: dict):
    return OkEnvelope(trace_id=trace_id, data=data)


def _item(s: ProviderStatus) -> ProviderItem:
    return ProviderItem(
        name=s.name,
        state=s.state.value,
        queued=s.queued,
        delivered=s.delivered,
        dropped=s.dropped,
        failures=s.failures,
        last_changed_at_utc=s.last_changed_at_utc,
        error=s.error,
    )


@router.get("/health")
def health_check(request: Request):
    trace_id = new_trace_id()
    return ok(trace_id, {"service": request.app.state.config.app_name, "time_utc": utc_now_iso()}).model_dump()


@router.get("/providers")
def list_providers(request: Request):
    trace_id = new_trace_id()
    dispatch: DispatchCore = request.app.state.dispatch
    sequencer: BootstrapSequencer = request.app.state.sequencer
    result = sequencer.result
    resp = ProvidersResponse(
        config_source=result.snapshot.source if result else "local",
        items=[_item(s) for s in dispatch.snapshot()],
        inactive=list(result.skipped) if result else [],
    )
    return ok(trace_id, resp.model_dump()).model_dump()


@router.get("/providers/{name}")
def get_provider(request: Request, name: str):
    trace_id = new_trace_id()
    dispatch: DispatchCore = request.app.state.dispatch
    for s in dispatch.snapshot():
        if s.name == name:
            return ok(trace_id, _item(s).model_dump()).model_dump()
    raise ApiError(code="NOT_FOUND", message=f"Provider '{name}' is not active", http_status=404)
