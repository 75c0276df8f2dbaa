from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, Protocol, TypeVar

from redis.exceptions import RedisError

from taskgate.logging import get_logger
from taskgate.service.errors import StoreUnavailableError
from taskgate.storage.errors import StoreBackendError
from taskgate.storage.models import Session

logger = get_logger(__name__)

T = TypeVar("T")


class SessionStore(Protocol):
    async def create(self, user_id: str, ttl_seconds: int) -> Session:
        ...

    async def get(self, session_id: str) -> Optional[Session]:
        ...

    async def destroy(self, session_id: str) -> None:
        ...

    async def destroy_user_sessions(self, user_id: str) -> int:
        ...

    async def sweep_expired(self) -> int:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


class BoundedSessionStore:
    """Wrap a session store so every call has a deadline.

    Timeouts and backend connection failures surface as
    ``StoreUnavailableError`` instead of hanging the request.
    """

    def __init__(self, inner: SessionStore, timeout_seconds: float = 3.0) -> None:
        self.inner = inner
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error(
                "session_store_timeout", operation=operation, timeout=self.timeout_seconds
            )
            raise StoreUnavailableError() from exc
        except (RedisError, StoreBackendError) as exc:
            logger.error(
                "session_store_failed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailableError() from exc

    async def create(self, user_id: str, ttl_seconds: int) -> Session:
        return await self._call("create", self.inner.create(user_id, ttl_seconds))

    async def get(self, session_id: str) -> Optional[Session]:
        return await self._call("get", self.inner.get(session_id))

    async def destroy(self, session_id: str) -> None:
        await self._call("destroy", self.inner.destroy(session_id))

    async def destroy_user_sessions(self, user_id: str) -> int:
        return await self._call(
            "destroy_user_sessions", self.inner.destroy_user_sessions(user_id)
        )

    async def sweep_expired(self) -> int:
        return await self._call("sweep_expired", self.inner.sweep_expired())

    async def ping(self) -> bool:
        return await self._call("ping", self.inner.ping())

    async def close(self) -> None:
        await self.inner.close()


async def run_session_sweeper(store: BoundedSessionStore, interval_seconds: float) -> None:
    """Background loop dropping expired sessions until cancelled."""
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await store.sweep_expired()
            except StoreUnavailableError:
                # logged by the bounded store; retry next interval
                continue
    except asyncio.CancelledError:
        logger.info("session_sweeper_cancelled")
        raise
