from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from ..common.time_util import utc_now_iso
from ..common.trace import new_prefixed_id
from ..storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

ANONYMOUS_ID_KEY = "anonymousId"
FIRST_SEEN_KEY = "firstSeen"
SESSION_COUNT_KEY = "sessionCount"
SESSION_ID_KEY = "sessionId"

_TABLET_RE = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobi))", re.IGNORECASE)
_MOBILE_RE = re.compile(
    r"Mobile|Android|iP(hone|od)|IEMobile|BlackBerry|Kindle|Silk-Accelerated|(hpw|web)OS|Opera M(obi|ini)"
)
# Edge and Chrome both carry "Chrome/"; Edge must be tested first.
_BROWSER_SIGNATURES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Edge", re.compile(r"Edg/([0-9.]+)")),
    ("Chrome", re.compile(r"Chrome/([0-9.]+)")),
    ("Firefox", re.compile(r"Firefox/([0-9.]+)")),
    ("Safari", re.compile(r"Version/([0-9.]+).*Safari")),
)
UNKNOWN_BROWSER = "Unknown Browser"


def classify_device(user_agent: str) -> str:
    """Return ``tablet``, ``mobile`` or ``desktop``.

    Tablets match most mobile heuristics too, so they are checked first.
    """
    if _TABLET_RE.search(user_agent):
        return "tablet"
    if _MOBILE_RE.search(user_agent):
        return "mobile"
    return "desktop"


def classify_browser(user_agent: str) -> str:
    """Return ``"<Name> <version>"`` for the first matching signature."""
    for name, pattern in _BROWSER_SIGNATURES:
        m = pattern.search(user_agent)
        if m:
            return f"{name} {m.group(1)}"
    return UNKNOWN_BROWSER


@dataclass(frozen=True)
class IdentityTraits:
    first_seen: str
    last_seen: str
    session_count: int
    device_type: str
    browser_info: str
    session_id: str
    is_anonymous: bool = True

    def as_properties(self) -> dict[str, Any]:
        return {
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "sessionCount": self.session_count,
            "deviceType": self.device_type,
            "browserInfo": self.browser_info,
            "sessionId": self.session_id,
            "isAnonymous": self.is_anonymous,
        }


class IdentifySink(Protocol):
    def identify(self, user_id: str, traits: dict[str, Any] | None = None) -> None:
        ...


class IdentityManager:
    """Anonymous device id, per-session id and session counter.

    - durable: survives restarts (anonymous id, first seen, session count)
    - volatile: lives for one session (session id)

    Both ids are created lazily on first access.
    """

    def __init__(self, *, durable: KeyValueStore, volatile: KeyValueStore, user_agent: str = "") -> None:
        self.durable = durable
        self.volatile = volatile
        self.user_agent = user_agent

    def get_anonymous_id(self) -> str:
        existing = self.durable.get(ANONYMOUS_ID_KEY)
        if existing:
            return existing

        candidate = new_prefixed_id("anon")
        anonymous_id = self.durable.set_if_absent(ANONYMOUS_ID_KEY, candidate)
        if anonymous_id == candidate:
            self.durable.set_if_absent(FIRST_SEEN_KEY, utc_now_iso())
            self.durable.set_if_absent(SESSION_COUNT_KEY, "1")
            logger.info("Anonymous id created", anonymous_id=anonymous_id)
        return anonymous_id

    def get_session_id(self) -> str:
        existing = self.volatile.get(SESSION_ID_KEY)
        if existing:
            return existing

        candidate = new_prefixed_id("session")
        session_id = self.volatile.set_if_absent(SESSION_ID_KEY, candidate)
        if session_id == candidate:
            # every new session bumps the counter, the first one included
            count = self.durable.increment(SESSION_COUNT_KEY)
            logger.info("Session started", session_id=session_id, session_count=count)
        return session_id

    def session_count(self) -> int:
        raw = self.durable.get(SESSION_COUNT_KEY)
        try:
            return int(raw) if raw else 1
        except ValueError:
            return 1

    def build_traits(self) -> IdentityTraits:
        self.get_anonymous_id()
        session_id = self.get_session_id()
        now = utc_now_iso()
        return IdentityTraits(
            first_seen=self.durable.get(FIRST_SEEN_KEY) or now,
            last_seen=now,
            session_count=self.session_count(),
            device_type=classify_device(self.user_agent),
            browser_info=classify_browser(self.user_agent),
            session_id=session_id,
        )

    def identify_session(self, sink: IdentifySink) -> IdentityTraits:
        """Send the anonymous identity through ``sink.identify`` and return the traits."""
        traits = self.build_traits()
        sink.identify(self.get_anonymous_id(), traits.as_properties())
        return traits
