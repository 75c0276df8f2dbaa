from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Closed set of account roles. ``Role("owner")`` raises ValueError."""

    USER = "user"
    PUBLISHER = "publisher"
    ADMIN = "admin"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


@dataclass
class Avatar:
    public_id: str
    url: str


@dataclass
class User:
    id: str
    email: str
    name: str
    role: Role = Role.USER
    created_at: datetime = field(default_factory=utcnow)
    avatar: Optional[Avatar] = None
    reset_password_token: Optional[str] = None
    reset_password_expires_at: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.role = Role(self.role)

    @classmethod
    def new(cls, email: str, name: str, role: Role | str = Role.USER) -> "User":
        return cls(id=str(uuid.uuid4()), email=email, name=name, role=Role(role))


@dataclass
class Session:
    """Server-side login record keyed by an unguessable opaque id."""

    id: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def new(cls, user_id: str, ttl_seconds: int) -> "Session":
        now = utcnow()
        return cls(
            id=secrets.token_hex(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class Task:
    id: str
    owner_id: str
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[datetime] = None
    labels: list[str] = field(default_factory=list)
    is_public: bool = False
    shared_with: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.priority = TaskPriority(self.priority)
        self.status = TaskStatus(self.status)
        self.shared_with = set(self.shared_with)

    @classmethod
    def new(cls, owner_id: str, title: str, **fields) -> "Task":
        return cls(id=str(uuid.uuid4()), owner_id=owner_id, title=title, **fields)
