"""
cache/session.py -- TTL-bounded authentication snapshot in the request session.

Avoids a provider round trip on every request by keeping the result of the
last successful authentication in the request's own session store (Starlette's
request.session in the FastAPI app; any MutableMapping works).

Layout: one dict under the single key "stytch". write() assigns a fresh dict,
so readers never see a mix of old and new fields. clear() pops the key and is
a no-op when nothing is stored.

Validity: an entry is usable while now - authenticated_at < ttl. Expired,
absent and unreadable entries (tampered, or written by an older layout) all
read as None -- callers cannot tell them apart and do not need to.

Usage:
    cache = SessionCache(request.session, ttl=settings.session_timeout)
    snapshot = cache.read()          # ConsumerSession | BusinessSession | None
    cache.write(snapshot)
    cache.clear()
"""

import logging
import time
from collections.abc import MutableMapping
from typing import Any, Callable, Optional

from auth.models import BusinessSession, ConsumerSession, Session
from core.models import TenancyMode

logger = logging.getLogger("stytchbridge.cache")

SESSION_KEY = "stytch"
_DEFAULT_TTL = 60 * 60  # 1 hour in seconds

_BUSINESS_FIELDS = (
    "member_id",
    "external_organization_id",
    "organization_name",
    "organization_slug",
    "member_email",
    "member_status",
)


class SessionCache:
    def __init__(
        self,
        store: MutableMapping,
        ttl: int = _DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.ttl = ttl
        self._clock = clock

    def raw(self) -> Optional[dict[str, Any]]:
        """Return the stored dict as-is (expired or not), or None."""
        value = self._store.get(SESSION_KEY)
        return dict(value) if isinstance(value, dict) else None

    def read(self) -> Optional[Session]:
        """Return the cached session if it exists and hasn't expired."""
        data = self.raw()
        if data is None:
            return None
        try:
            session = _dict_to_session(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable session snapshot: %s", e)
            return None
        if self._clock() - session.authenticated_at >= self.ttl:
            return None
        return session

    def is_valid(self) -> bool:
        return self.read() is not None

    def write(self, session: Session) -> None:
        """Store session, replacing any existing entry."""
        self._store[SESSION_KEY] = _session_to_dict(session)

    def clear(self) -> None:
        self._store.pop(SESSION_KEY, None)

    def expires_at(self) -> Optional[float]:
        data = self.raw()
        if data is None or "authenticated_at" not in data:
            return None
        return data["authenticated_at"] + self.ttl


# ---------------------------------------------------------------------------
# Mappers -- the stored dict must stay JSON-serializable for cookie sessions
# ---------------------------------------------------------------------------


def _session_to_dict(session: Session) -> dict[str, Any]:
    data: dict[str, Any] = {
        "user_id": session.local_user_id,
        "stytch_user_id": session.external_user_id,
        "authenticated_at": session.authenticated_at,
        "client_type": session.tenancy_mode.value,
        "email": session.email,
        "name": session.display_name,
    }
    if isinstance(session, BusinessSession):
        for name in _BUSINESS_FIELDS:
            data[name] = getattr(session, name)
    return data


def _dict_to_session(data: dict[str, Any]) -> Session:
    mode = TenancyMode(data["client_type"])
    common = {
        "local_user_id": data["user_id"],
        "external_user_id": data.get("stytch_user_id"),
        "authenticated_at": int(data["authenticated_at"]),
        "email": data.get("email"),
        "display_name": data.get("name"),
    }
    # Business fields are written only for BusinessSession, so their presence
    # is what distinguishes the two shapes under business mode.
    if mode is TenancyMode.BUSINESS and "external_organization_id" in data:
        return BusinessSession(**common, **{name: data.get(name) for name in _BUSINESS_FIELDS})
    return ConsumerSession(**common, tenancy_mode=mode)
