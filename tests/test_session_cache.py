"""
tests/test_session_cache.py -- Unit tests for cache/session.py.

Coverage:
  - Round trip for both snapshot shapes
  - TTL boundary: one second before expiry hits, one second after misses
  - clear() idempotence
  - Unreadable entries read as absent
"""

from __future__ import annotations

from auth.models import BusinessSession, ConsumerSession
from cache.session import SESSION_KEY, SessionCache
from core.models import TenancyMode
from conftest import Clock

T = 1_700_000_000
TTL = 3600


def _consumer(authenticated_at: int = T) -> ConsumerSession:
    return ConsumerSession(
        local_user_id=7,
        external_user_id="user-test-1",
        authenticated_at=authenticated_at,
        email="ada@example.com",
        display_name="Ada Lovelace",
    )


def _business(authenticated_at: int = T) -> BusinessSession:
    return BusinessSession(
        local_user_id=9,
        external_user_id="member-test-1",
        authenticated_at=authenticated_at,
        email="grace@acme.test",
        display_name="Grace Hopper",
        member_id="member-test-1",
        external_organization_id="organization-test-1",
        organization_name="Acme",
        organization_slug="acme",
        member_email="grace@acme.test",
        member_status="active",
    )


class TestRoundTrip:
    def test_consumer_session_round_trip(self) -> None:
        store: dict = {}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        cache.write(_consumer())
        assert cache.read() == _consumer()

    def test_business_session_round_trip(self) -> None:
        store: dict = {}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        cache.write(_business())
        snapshot = cache.read()
        assert isinstance(snapshot, BusinessSession)
        assert snapshot == _business()

    def test_consumer_written_under_business_mode_keeps_its_shape(self) -> None:
        """A business-mode bridge without organization linking writes a ConsumerSession."""
        store: dict = {}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        session = ConsumerSession(
            local_user_id=1,
            external_user_id="member-test-1",
            authenticated_at=T,
            tenancy_mode=TenancyMode.BUSINESS,
        )
        cache.write(session)
        assert cache.read() == session
        assert "external_organization_id" not in store[SESSION_KEY]

    def test_layout_is_a_single_key(self) -> None:
        store: dict = {"other": 1}
        SessionCache(store, ttl=TTL, clock=Clock(T)).write(_consumer())
        assert set(store) == {"other", SESSION_KEY}
        assert store[SESSION_KEY]["user_id"] == 7
        assert store[SESSION_KEY]["stytch_user_id"] == "user-test-1"
        assert store[SESSION_KEY]["client_type"] == "consumer"

    def test_write_replaces_previous_entry(self) -> None:
        store: dict = {}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        cache.write(_business())
        cache.write(_consumer())
        assert "member_id" not in store[SESSION_KEY]


class TestExpiry:
    def test_valid_just_before_expiry(self) -> None:
        store: dict = {}
        SessionCache(store, ttl=TTL, clock=Clock(T)).write(_consumer())
        cache = SessionCache(store, ttl=TTL, clock=Clock(T + TTL - 1))
        assert cache.is_valid()
        assert cache.read() is not None

    def test_invalid_just_after_expiry(self) -> None:
        store: dict = {}
        SessionCache(store, ttl=TTL, clock=Clock(T)).write(_consumer())
        cache = SessionCache(store, ttl=TTL, clock=Clock(T + TTL + 1))
        assert not cache.is_valid()
        assert cache.read() is None

    def test_expired_entry_still_visible_as_raw(self) -> None:
        store: dict = {}
        SessionCache(store, ttl=TTL, clock=Clock(T)).write(_consumer())
        cache = SessionCache(store, ttl=TTL, clock=Clock(T + TTL + 1))
        assert cache.raw()["user_id"] == 7

    def test_expires_at(self) -> None:
        store: dict = {}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        assert cache.expires_at() is None
        cache.write(_consumer())
        assert cache.expires_at() == T + TTL


class TestClear:
    def test_clear_removes_entry(self) -> None:
        store: dict = {}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        cache.write(_consumer())
        cache.clear()
        assert cache.read() is None
        assert SESSION_KEY not in store

    def test_clear_twice_is_a_no_op(self) -> None:
        store: dict = {"other": 1}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        cache.clear()
        cache.clear()
        assert store == {"other": 1}


class TestUnreadable:
    def test_missing_fields_read_as_absent(self) -> None:
        store: dict = {SESSION_KEY: {"user_id": 1}}
        assert SessionCache(store, ttl=TTL, clock=Clock(T)).read() is None

    def test_unknown_client_type_reads_as_absent(self) -> None:
        store: dict = {
            SESSION_KEY: {"user_id": 1, "authenticated_at": T, "client_type": "enterprise"},
        }
        assert SessionCache(store, ttl=TTL, clock=Clock(T)).read() is None

    def test_non_dict_entry_reads_as_absent(self) -> None:
        store: dict = {SESSION_KEY: "tampered"}
        cache = SessionCache(store, ttl=TTL, clock=Clock(T))
        assert cache.read() is None
        assert cache.raw() is None
