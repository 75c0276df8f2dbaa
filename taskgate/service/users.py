from __future__ import annotations

from typing import List, Optional

from taskgate.logging import get_logger
from taskgate.service.auth import AuthService
from taskgate.service.errors import DuplicateEmailError, NotFoundError
from taskgate.service.validation import (
    enforce,
    validate_email,
    validate_name,
    validate_password,
)
from taskgate.storage.errors import ConstraintViolation
from taskgate.storage.models import Role, User

logger = get_logger(__name__)


class UserAdminService:
    """Administrative account management; callers are already role-gated."""

    def __init__(self, auth: AuthService) -> None:
        self.auth = auth
        self.store = auth.store

    def list_users(self, limit: int = 100) -> List[User]:
        return self.store.list_users(limit=limit)

    def get(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found with id of {user_id}")
        return user

    async def create(
        self, name: str, email: str, password: str, role: Role | str = Role.USER
    ) -> User:
        name = enforce(validate_name, name)
        email = enforce(validate_email, email)
        password = enforce(validate_password, password)
        password_record = await self.auth.hash_password(password)
        try:
            user = self.store.create_user(
                email=email, name=name, role=Role(role), password=password_record
            )
        except ConstraintViolation as exc:
            raise DuplicateEmailError() from exc
        logger.info("admin_user_created", user_id=user.id, role=user.role.value)
        return user

    async def update(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Role | str | None = None,
    ) -> User:
        if name is not None:
            name = enforce(validate_name, name)
        if email is not None:
            email = enforce(validate_email, email)
        try:
            updated = self.store.update_user(user_id, name=name, email=email, role=role)
        except ConstraintViolation as exc:
            raise DuplicateEmailError() from exc
        if updated is None:
            raise NotFoundError(f"User not found with id of {user_id}")
        if role is not None:
            logger.info("user_role_changed", user_id=user_id, role=updated.role.value)
        return updated

    async def delete(self, user_id: str) -> None:
        user = self.get(user_id)
        await self.auth.issuer.revoke_user(user.id)
        self.store.delete_user(user.id)
        logger.info("admin_user_deleted", user_id=user.id)
