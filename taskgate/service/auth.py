from __future__ import annotations

import asyncio
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from taskgate.config import Settings
from taskgate.logging import get_logger, hash_identifier
from taskgate.service.avatars import AvatarStore
from taskgate.service.credentials import Credential, CredentialIssuer
from taskgate.service.email import EmailService
from taskgate.service.errors import (
    DeliveryError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    ServerError,
    StoreUnavailableError,
    ValidationError,
)
from taskgate.service.validation import (
    enforce,
    normalize_email,
    validate_email,
    validate_name,
    validate_password,
)
from taskgate.storage.errors import ConstraintViolation
from taskgate.storage.memory import MemoryStore
from taskgate.storage.models import User

logger = get_logger(__name__)


@dataclass
class AuthContext:
    """Identity attached to an authenticated request."""

    user: User
    credential: str
    kind: str
    session_id: Optional[str] = None


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    """Account lifecycle and credential handling.

    Password hashing and SMTP delivery run in worker threads so the event
    loop keeps serving other requests while argon2 burns CPU.
    """

    def __init__(
        self,
        store: MemoryStore,
        issuer: CredentialIssuer,
        settings: Settings,
        *,
        email: Optional[EmailService] = None,
        avatars: Optional[AvatarStore] = None,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.settings = settings
        self.email = email or EmailService()
        self.avatars = avatars or AvatarStore(settings.shared_fs_root)
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # password primitives
    def _hash_password(self, password: str) -> Tuple[str, str]:
        return self._pwd_hasher.hash(password), "argon2id"

    def _verify_hash(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerificationError):
            return False

    async def hash_password(self, password: str) -> Tuple[str, str]:
        return await asyncio.to_thread(self._hash_password, password)

    async def verify_password(self, user_id: Optional[str], password: str) -> bool:
        """Check ``password`` for ``user_id``; unknown users still pay for a hash."""
        record = self.store.get_password_record(user_id) if user_id else None
        if record is None:
            if self._dummy_hash is None:
                self._dummy_hash = (await self.hash_password(secrets.token_hex(16)))[0]
            await asyncio.to_thread(self._verify_hash, self._dummy_hash, password)
            return False
        stored_hash, _algo = record
        return await asyncio.to_thread(self._verify_hash, stored_hash, password)

    async def set_password(self, user_id: str, password: str) -> None:
        pwd_hash, algo = await self.hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)

    # account lifecycle
    async def register(self, name: str, email: str, password: str) -> Tuple[User, Credential]:
        name = enforce(validate_name, name)
        email = enforce(validate_email, email)
        password = enforce(validate_password, password)
        if self.store.get_user_by_email(email):
            raise DuplicateEmailError()
        password_record = await self.hash_password(password)
        try:
            user = self.store.create_user(email=email, name=name, password=password_record)
        except ConstraintViolation as exc:
            raise DuplicateEmailError() from exc
        credential = await self.issuer.issue(user)
        self.logger.info("user_registered", user_id=user.id)
        return user, credential

    async def login(self, email: Optional[str], password: Optional[str]) -> Tuple[User, Credential]:
        if not email or not password:
            raise ValidationError("Please provide an email and password")
        user = self.store.get_user_by_email(normalize_email(email))
        if not await self.verify_password(user.id if user else None, password) or user is None:
            self.logger.warning("login_failed", email_hash=hash_identifier(email))
            raise InvalidCredentialsError()
        credential = await self.issuer.issue(user)
        self.logger.info("login_succeeded", user_id=user.id, kind=credential.kind)
        return user, credential

    async def logout(self, raw_credential: Optional[str]) -> None:
        """Revoke the presented credential. Unknown or missing values are a no-op."""
        if not raw_credential:
            return
        await self.issuer.revoke(raw_credential)

    async def rotate_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        raw_credential: Optional[str] = None,
    ) -> Credential:
        if not await self.verify_password(user.id, current_password or ""):
            self.logger.warning("password_rotation_rejected", user_id=user.id)
            raise InvalidCredentialsError()
        new_password = enforce(validate_password, new_password)
        await self.set_password(user.id, new_password)
        if raw_credential:
            await self.issuer.revoke(raw_credential)
        await self.issuer.revoke_user(user.id)
        credential = await self.issuer.issue(user)
        self.logger.info("password_rotated", user_id=user.id)
        return credential

    async def request_password_reset(self, email: str, reset_url_base: str) -> None:
        """Email a reset link if the account exists. Returns normally either way."""
        user = self.store.get_user_by_email(normalize_email(email or ""))
        if not user:
            self.logger.info("password_reset_unknown_email", email_hash=hash_identifier(email or ""))
            return
        token = secrets.token_hex(20)
        expires_at = self._now() + timedelta(minutes=self.settings.reset_token_ttl_minutes)
        self.store.set_reset_token(user.id, hash_reset_token(token), expires_at)
        reset_url = f"{reset_url_base.rstrip('/')}/{token}"
        sent = await asyncio.to_thread(self.email.send_password_reset, user.email, reset_url)
        if not sent:
            self.store.clear_reset_token(user.id)
            self.logger.error("password_reset_delivery_failed", user_id=user.id)
            raise DeliveryError()
        self.logger.info("password_reset_requested", user_id=user.id)

    async def reset_password(self, token: str, new_password: str) -> Tuple[User, Credential]:
        user = self.store.get_user_by_reset_token(hash_reset_token(token or ""), self._now())
        if not user:
            self.logger.warning("password_reset_invalid_token", token_prefix=(token or "")[:8])
            raise InvalidOrExpiredTokenError("Invalid token")
        new_password = enforce(validate_password, new_password)
        await self.set_password(user.id, new_password)
        self.store.clear_reset_token(user.id)
        await self.issuer.revoke_user(user.id)
        user = self.store.get_user(user.id) or user
        credential = await self.issuer.issue(user)
        self.logger.info("password_reset_completed", user_id=user.id)
        return user, credential

    async def update_details(
        self, user: User, *, name: Optional[str] = None, email: Optional[str] = None
    ) -> User:
        if name is not None:
            name = enforce(validate_name, name)
        if email is not None:
            email = enforce(validate_email, email)
        try:
            updated = self.store.update_user(user.id, name=name, email=email)
        except ConstraintViolation as exc:
            raise DuplicateEmailError() from exc
        if updated is None:
            raise InvalidCredentialsError()
        return updated

    async def update_avatar(
        self, user: User, content_type: Optional[str], data: bytes
    ) -> User:
        if not content_type or not content_type.startswith("image"):
            raise ValidationError("Please upload an image file")
        limit = self.settings.max_upload_bytes
        if len(data) > limit:
            raise ValidationError(f"Please upload an image less than {limit}")
        if user.avatar:
            try:
                await asyncio.to_thread(self.avatars.delete, user.avatar.public_id)
            except OSError as exc:
                self.logger.warning(
                    "avatar_delete_failed", user_id=user.id, error=str(exc)
                )
        try:
            avatar = await asyncio.to_thread(self.avatars.upload, user.id, data, content_type)
        except OSError as exc:
            self.logger.error("avatar_upload_failed", user_id=user.id, error=str(exc))
            raise ServerError("Problem with file upload") from exc
        updated = self.store.update_user(user.id, avatar=avatar)
        if updated is None:
            raise InvalidCredentialsError()
        return updated

    # request authentication
    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, value = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        return value.strip() or None

    def extract_credential(
        self,
        cookie_value: Optional[str],
        authorization: Optional[str],
        auth_token_header: Optional[str] = None,
    ) -> Optional[str]:
        """Pick the request credential: cookie, then Bearer, then X-Auth-Token."""
        for candidate in (
            cookie_value,
            self._extract_bearer(authorization),
            auth_token_header,
        ):
            if candidate and candidate.strip():
                return candidate.strip()
        return None

    async def authenticate(
        self,
        cookie_value: Optional[str],
        authorization: Optional[str],
        auth_token_header: Optional[str] = None,
    ) -> Optional[AuthContext]:
        raw = self.extract_credential(cookie_value, authorization, auth_token_header)
        if raw is None:
            return None
        try:
            resolved = await self.issuer.resolve(raw)
            if resolved is None:
                return None
            user = self.store.get_user(resolved.user_id)
            if user is None:
                self.logger.warning("credential_user_missing", user_id=resolved.user_id)
                return None
            if (
                resolved.kind == "token"
                and user.password_changed_at is not None
                and (resolved.issued_at or 0) < user.password_changed_at.timestamp()
            ):
                self.logger.info("token_predates_password_change", user_id=user.id)
                return None
        except StoreUnavailableError:
            raise
        except Exception as exc:
            self.logger.warning(
                "authentication_error", error_type=type(exc).__name__, error=str(exc)
            )
            return None
        return AuthContext(
            user=user, credential=raw, kind=resolved.kind, session_id=resolved.session_id
        )
