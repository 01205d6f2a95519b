from __future__ import annotations

import uuid


def new_id() -> str:
    """Generate an opaque identifier (UUID4 hex)."""
    return uuid.uuid4().hex


def new_prefixed_id(prefix: str) -> str:
    """Generate a namespaced id such as ``anon_<uuid>`` or ``session_<uuid>``.

    The prefix keeps anonymous ids, session ids and real user ids apart when
    they end up in the same backend column.
    """
    return f"{prefix}_{uuid.uuid4()}"


def new_trace_id() -> str:
    """Generate trace_id (same format as IDs)."""
    return new_id()
