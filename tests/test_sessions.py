"""Tests for the in-memory session registry."""
from datetime import datetime, timedelta, timezone

from lmproxy.services.sessions import SessionRegistry


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def test_create_session_returns_unique_ids():
    registry = SessionRegistry(workspace="/work")
    first = registry.create_session()
    second = registry.create_session()

    assert first != second
    assert len(registry) == 2
    assert registry.get(first).workspace == "/work"


def test_resolve_reuses_client_session_id():
    """Client-supplied ids are accepted as-is, even when unknown."""
    registry = SessionRegistry()
    assert registry.resolve("client-session") == "client-session"
    assert len(registry) == 0


def test_resolve_creates_session_without_header():
    registry = SessionRegistry()
    session_id = registry.resolve(None)
    assert session_id in registry
    assert registry.resolve("") in registry


def test_touch_updates_last_used():
    clock = FakeClock()
    registry = SessionRegistry(clock=clock)
    session_id = registry.create_session()

    clock.advance(30)
    registry.resolve(session_id)

    session = registry.get(session_id)
    assert session.last_used_at - session.created_at == timedelta(seconds=30)


def test_sessions_kept_forever_without_ttl():
    clock = FakeClock()
    registry = SessionRegistry(clock=clock)
    old = registry.create_session()

    clock.advance(10 ** 6)
    registry.create_session()

    assert old in registry


def test_expired_sessions_evicted_on_create():
    clock = FakeClock()
    registry = SessionRegistry(ttl_seconds=60, clock=clock)
    stale = registry.create_session()
    active = registry.create_session()

    clock.advance(45)
    registry.touch(active)
    clock.advance(30)
    fresh = registry.create_session()

    assert stale not in registry
    assert active in registry
    assert fresh in registry
