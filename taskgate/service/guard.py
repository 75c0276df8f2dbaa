"""Authorization decisions: role gates and ownership gates.

Everything here is a pure function of the caller's identity and the
resource's ownership metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, Iterable

from taskgate.service.errors import ForbiddenError
from taskgate.storage.models import Role, Task, User


class AccessIntent(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class ResourceFlags:
    is_public: bool = False
    shared_with: AbstractSet[str] = field(default_factory=frozenset)


def role_allows(role: Role | str, required: Iterable[Role | str]) -> bool:
    """The role must be listed; admin is not implied and has to be named."""
    return Role(role) in {Role(r) for r in required}


def require_role(user: User, *roles: Role | str) -> None:
    if not role_allows(user.role, roles):
        raise ForbiddenError(
            f"User role {user.role.value} is not authorized to access this route"
        )


def can_access(
    user: User, owner_id: str, flags: ResourceFlags, intent: AccessIntent
) -> bool:
    if user.role == Role.ADMIN or user.id == owner_id:
        return True
    if intent == AccessIntent.READ:
        # sharing grants read only
        return flags.is_public or user.id in flags.shared_with
    return False


def task_flags(task: Task) -> ResourceFlags:
    return ResourceFlags(is_public=task.is_public, shared_with=frozenset(task.shared_with))


def require_task_access(user: User, task: Task, intent: AccessIntent, action: str) -> None:
    if not can_access(user, task.owner_id, task_flags(task), intent):
        raise ForbiddenError(f"User {user.id} is not authorized to {action} this task")
