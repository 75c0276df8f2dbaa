"""Tests for session stores and the timeout-bounded wrapper."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from taskgate.service.errors import StoreUnavailableError
from taskgate.service.sessions import BoundedSessionStore
from taskgate.storage.memory import MemorySessionStore
from taskgate.storage.models import Session
from taskgate.storage.redis_cache import RedisSessionStore


class SlowSessionStore(MemorySessionStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def get(self, session_id):
        await asyncio.sleep(self.delay)
        return await super().get(session_id)


class BrokenSessionStore(MemorySessionStore):
    async def create(self, user_id, ttl_seconds):
        raise RedisConnectionError("connection refused")


class RejectingSessionStore(MemorySessionStore):
    """Reachable backend that refuses commands, e.g. an ACL or read-only replica."""

    async def get(self, session_id):
        raise ResponseError("NOPERM this user has no permissions to run the 'get' command")

    async def create(self, user_id, ttl_seconds):
        raise ResponseError("READONLY You can't write against a read only replica.")


class TestSessionModel:
    def test_session_id_is_64_hex_chars(self):
        sess = Session.new("user-1", ttl_seconds=60)
        assert len(sess.id) == 64
        int(sess.id, 16)

    def test_ids_are_unique(self):
        ids = {Session.new("user-1", ttl_seconds=60).id for _ in range(50)}
        assert len(ids) == 50

    def test_zero_ttl_is_already_expired(self):
        assert Session.new("user-1", ttl_seconds=0).is_expired()


class TestMemorySessionStore:
    async def test_create_then_get_returns_record(self):
        store = MemorySessionStore()
        sess = await store.create("user-1", 3600)
        fetched = await store.get(sess.id)
        assert fetched is not None
        assert fetched.user_id == "user-1"
        assert fetched.expires_at > datetime.now(timezone.utc)

    async def test_get_after_destroy_is_absent(self):
        store = MemorySessionStore()
        sess = await store.create("user-1", 3600)
        await store.destroy(sess.id)
        assert await store.get(sess.id) is None

    async def test_destroy_is_idempotent(self):
        store = MemorySessionStore()
        sess = await store.create("user-1", 3600)
        await store.destroy(sess.id)
        await store.destroy(sess.id)
        await store.destroy("never-existed")

    async def test_expired_session_is_absent(self):
        store = MemorySessionStore()
        sess = await store.create("user-1", 3600)
        store.sessions[sess.id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        assert await store.get(sess.id) is None

    async def test_destroy_user_sessions_only_touches_that_user(self):
        store = MemorySessionStore()
        a1 = await store.create("alice", 3600)
        a2 = await store.create("alice", 3600)
        b1 = await store.create("bob", 3600)
        assert await store.destroy_user_sessions("alice") == 2
        assert await store.get(a1.id) is None
        assert await store.get(a2.id) is None
        assert await store.get(b1.id) is not None

    async def test_sweep_removes_expired_records(self):
        store = MemorySessionStore()
        live = await store.create("alice", 3600)
        stale = await store.create("alice", 3600)
        store.sessions[stale.id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        assert await store.sweep_expired() == 1
        assert stale.id not in store.sessions
        assert live.id in store.sessions


class TestBoundedSessionStore:
    async def test_passes_through_results(self):
        bounded = BoundedSessionStore(MemorySessionStore(), timeout_seconds=1.0)
        sess = await bounded.create("user-1", 60)
        assert (await bounded.get(sess.id)).user_id == "user-1"

    async def test_timeout_maps_to_store_unavailable(self):
        bounded = BoundedSessionStore(SlowSessionStore(delay=0.5), timeout_seconds=0.05)
        with pytest.raises(StoreUnavailableError) as exc_info:
            await bounded.get("anything")
        assert exc_info.value.status_code == 500

    async def test_backend_connection_error_maps_to_store_unavailable(self):
        bounded = BoundedSessionStore(BrokenSessionStore(), timeout_seconds=1.0)
        with pytest.raises(StoreUnavailableError):
            await bounded.create("user-1", 60)

    async def test_command_errors_map_to_store_unavailable(self):
        bounded = BoundedSessionStore(RejectingSessionStore(), timeout_seconds=1.0)
        with pytest.raises(StoreUnavailableError) as exc_info:
            await bounded.get("some-session-id")
        assert exc_info.value.message == "Session store unavailable"
        with pytest.raises(StoreUnavailableError):
            await bounded.create("user-1", 60)


class TestRedisSessionStoreHelpers:
    def test_ttl_is_clamped_to_one_second(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        assert RedisSessionStore._ttl_seconds(past) == 1

    def test_ttl_treats_naive_datetimes_as_utc(self):
        future = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(seconds=120)
        assert 100 < RedisSessionStore._ttl_seconds(future) <= 120

    def test_keys_are_namespaced(self):
        assert RedisSessionStore._session_key("abc") == "auth:session:abc"
        assert RedisSessionStore._user_sessions_key("u1") == "auth:user_sessions:u1"
