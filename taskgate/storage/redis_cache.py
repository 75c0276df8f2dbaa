from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

from taskgate.storage.errors import StoreBackendError
from taskgate.storage.models import Session


class RedisSessionStore:
    """Session store backed by Redis keys with native expiry.

    ``auth:session:{id}`` holds the JSON record with ``EX`` set to the
    remaining lifetime; ``auth:user_sessions:{user_id}`` indexes a user's
    session ids for bulk revocation.
    """

    DEFAULT_OPERATION_TIMEOUT = 3.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"auth:session:{session_id}"

    @staticmethod
    def _user_sessions_key(user_id: str) -> str:
        return f"auth:user_sessions:{user_id}"

    @staticmethod
    def _ttl_seconds(expires_at: datetime) -> int:
        """Remaining lifetime clamped to at least 1 second; Redis rejects EX <= 0."""
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))

    def verify_connection(self) -> None:
        """Assert Redis connectivity at startup."""
        # Short-lived sync client so the async pool is not bound to a temporary loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def create(self, user_id: str, ttl_seconds: int) -> Session:
        sess = Session.new(user_id=user_id, ttl_seconds=ttl_seconds)
        payload = json.dumps(
            {
                "user_id": sess.user_id,
                "created_at": sess.created_at.isoformat(),
                "expires_at": sess.expires_at.isoformat(),
            }
        )
        ttl = self._ttl_seconds(sess.expires_at)
        pipe = self.client.pipeline()
        pipe.set(self._session_key(sess.id), payload, ex=ttl)
        pipe.sadd(self._user_sessions_key(user_id), sess.id)
        pipe.expire(self._user_sessions_key(user_id), ttl)
        await pipe.execute()
        return sess

    async def get(self, session_id: str) -> Optional[Session]:
        raw = await self.client.get(self._session_key(session_id))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            sess = Session(
                id=session_id,
                user_id=data["user_id"],
                created_at=datetime.fromisoformat(data["created_at"]),
                expires_at=datetime.fromisoformat(data["expires_at"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise StoreBackendError(f"malformed session record: {exc}") from exc
        # Key expiry has one-second granularity; re-check the absolute time
        if sess.is_expired():
            return None
        return sess

    async def destroy(self, session_id: str) -> None:
        raw = await self.client.get(self._session_key(session_id))
        pipe = self.client.pipeline()
        pipe.delete(self._session_key(session_id))
        if raw:
            try:
                user_id = json.loads(raw).get("user_id")
            except json.JSONDecodeError:
                user_id = None
            if user_id:
                pipe.srem(self._user_sessions_key(user_id), session_id)
        await pipe.execute()

    async def destroy_user_sessions(self, user_id: str) -> int:
        user_sessions_key = self._user_sessions_key(user_id)
        session_ids = await self.client.smembers(user_sessions_key)
        if not session_ids:
            return 0
        pipe = self.client.pipeline()
        for session_id in session_ids:
            pipe.delete(self._session_key(session_id))
        pipe.delete(user_sessions_key)
        results = await pipe.execute()
        return sum(1 for deleted in results[:-1] if deleted)

    async def sweep_expired(self) -> int:
        # Redis evicts expired keys itself
        return 0

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.close()
        await self.client.connection_pool.disconnect()
