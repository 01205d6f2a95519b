from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

ProviderStateName = Literal["pending", "ready", "failed"]


# -------------------------
# HTTP envelopes & errors
# -------------------------

class OkEnvelope(BaseModel):
    status: Literal["ok"] = "ok"
    trace_id: str
    data: Any


class ErrorEnvelope(BaseModel):
    status: Literal["error"] = "error"
    code: str
    message: str
    trace_id: str
    data: Any = Field(default_factory=dict)


# -------------------------
# Providers
# -------------------------

class ProviderItem(BaseModel):
    name: str
    state: ProviderStateName
    queued: int
    delivered: int
    dropped: int
    failures: int
    last_changed_at_utc: str
    error: Optional[str] = None


class ProvidersResponse(BaseModel):
    config_source: Literal["local", "remote"]
    items: List[ProviderItem]
    inactive: List[str] = Field(default_factory=list)
