from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse, urlunparse

from fastapi import Request
from redis.exceptions import RedisError

from taskgate.config import AuthMode, SessionBackend, Settings
from taskgate.logging import get_logger
from taskgate.service.auth import AuthService
from taskgate.service.avatars import AvatarStore
from taskgate.service.credentials import (
    CredentialIssuer,
    SessionCredentialIssuer,
    TokenCredentialIssuer,
)
from taskgate.service.email import EmailService
from taskgate.service.sessions import BoundedSessionStore
from taskgate.service.tasks import TaskService
from taskgate.service.tokens import TokenCodec
from taskgate.service.users import UserAdminService
from taskgate.storage.memory import MemorySessionStore, MemoryStore
from taskgate.storage.redis_cache import RedisSessionStore

logger = get_logger(__name__)


def _mask_url_password(url: str) -> str:
    """Mask the password in a connection URL for safe logging."""
    parsed = urlparse(url)
    if parsed.password:
        netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@")
        return urlunparse(parsed._replace(netloc=netloc))
    return url


class Container:
    """Service instances for one application.

    Built once per app and stored on ``app.state.container``; request
    handlers reach it through the ``get_container`` dependency.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[MemoryStore] = None,
        session_backend: Optional[object] = None,
        email: Optional[EmailService] = None,
    ) -> None:
        self.settings = settings
        self.store = store or MemoryStore(
            fs_root=settings.shared_fs_root, persist=settings.persist_state
        )
        self.session_backend = session_backend or self._build_session_backend(settings)
        self.sessions = BoundedSessionStore(
            self.session_backend, timeout_seconds=settings.session_store_timeout_seconds
        )
        self.codec = TokenCodec(settings.jwt_secret, settings.jwt_issuer)
        self.issuer = self._build_issuer(settings)
        self.email = email or EmailService.from_settings(settings)
        self.avatars = AvatarStore(settings.shared_fs_root)
        self.auth = AuthService(
            self.store, self.issuer, settings, email=self.email, avatars=self.avatars
        )
        self.tasks = TaskService(self.store, allow_reset=not settings.is_production)
        self.users = UserAdminService(self.auth)
        logger.info(
            "container_initialized",
            auth_mode=settings.auth_mode.value,
            session_backend=type(self.session_backend).__name__,
            environment=settings.environment.value,
        )

    @staticmethod
    def _build_session_backend(settings: Settings):
        if settings.session_backend == SessionBackend.REDIS:
            logger.info("session_backend_redis", redis_url=_mask_url_password(settings.redis_url))
            store = RedisSessionStore(
                settings.redis_url, socket_timeout=settings.session_store_timeout_seconds
            )
            try:
                store.verify_connection()
            except RedisError as exc:
                # requests fail with StoreUnavailableError until Redis answers
                logger.error("session_backend_unreachable", error=str(exc))
            return store
        return MemorySessionStore()

    def _build_issuer(self, settings: Settings) -> CredentialIssuer:
        if settings.auth_mode == AuthMode.TOKEN:
            return TokenCredentialIssuer(self.codec, settings.credential_ttl_seconds)
        return SessionCredentialIssuer(self.sessions, settings.credential_ttl_seconds)

    async def close(self) -> None:
        await self.sessions.close()


def get_container(request: Request) -> Container:
    return request.app.state.container
