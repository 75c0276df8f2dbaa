from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from taskgate.logging import get_logger, hash_identifier
from taskgate.service.sessions import BoundedSessionStore
from taskgate.service.tokens import TokenCodec
from taskgate.storage.models import User

logger = get_logger(__name__)


@dataclass
class Credential:
    """Freshly issued proof of identity handed to the client."""

    value: str
    kind: str
    expires_at: datetime
    max_age_seconds: int


@dataclass
class ResolvedCredential:
    user_id: str
    kind: str
    session_id: Optional[str] = None
    issued_at: Optional[float] = None


class CredentialIssuer(Protocol):
    kind: str

    async def issue(self, user: User) -> Credential:
        ...

    async def resolve(self, raw: str) -> Optional[ResolvedCredential]:
        ...

    async def revoke(self, raw: str) -> None:
        ...

    async def revoke_user(self, user_id: str) -> int:
        ...


class SessionCredentialIssuer:
    """Opaque session ids backed by the session store."""

    kind = "session"

    def __init__(self, sessions: BoundedSessionStore, ttl_seconds: int) -> None:
        self.sessions = sessions
        self.ttl_seconds = ttl_seconds

    async def issue(self, user: User) -> Credential:
        sess = await self.sessions.create(user.id, self.ttl_seconds)
        logger.info("session_created", user_id=user.id, session_hash=hash_identifier(sess.id))
        return Credential(
            value=sess.id,
            kind=self.kind,
            expires_at=sess.expires_at,
            max_age_seconds=self.ttl_seconds,
        )

    async def resolve(self, raw: str) -> Optional[ResolvedCredential]:
        sess = await self.sessions.get(raw)
        if sess is None:
            return None
        return ResolvedCredential(
            user_id=sess.user_id,
            kind=self.kind,
            session_id=sess.id,
            issued_at=sess.created_at.timestamp(),
        )

    async def revoke(self, raw: str) -> None:
        await self.sessions.destroy(raw)
        logger.info("session_destroyed", session_hash=hash_identifier(raw))

    async def revoke_user(self, user_id: str) -> int:
        revoked = await self.sessions.destroy_user_sessions(user_id)
        if revoked:
            logger.info("user_sessions_revoked", user_id=user_id, count=revoked)
        return revoked


class TokenCredentialIssuer:
    """Self-contained signed tokens; the server keeps no per-token state.

    Revocation is coarse: a token issued before the user's last password
    change is rejected by the authenticator.
    """

    kind = "token"

    def __init__(self, codec: TokenCodec, ttl_seconds: int) -> None:
        self.codec = codec
        self.ttl_seconds = ttl_seconds

    async def issue(self, user: User) -> Credential:
        now = time.time()
        token = self.codec.encode(user.id, self.ttl_seconds, now=now)
        return Credential(
            value=token,
            kind=self.kind,
            expires_at=datetime.fromtimestamp(now + self.ttl_seconds, tz=timezone.utc),
            max_age_seconds=self.ttl_seconds,
        )

    async def resolve(self, raw: str) -> Optional[ResolvedCredential]:
        claims = self.codec.decode(raw)
        if claims is None:
            return None
        return ResolvedCredential(user_id=claims.sub, kind=self.kind, issued_at=claims.iat)

    async def revoke(self, raw: str) -> None:
        # client-side only; the cookie is cleared by the caller
        return None

    async def revoke_user(self, user_id: str) -> int:
        return 0
