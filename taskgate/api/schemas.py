from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskgate.service.validation import validate_email, validate_name, validate_password
from taskgate.storage.models import Role, Task, TaskPriority, TaskStatus, User


class Envelope(BaseModel):
    """Response wrapper: ``{success, data}`` or ``{success: false, error}``."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    token: Optional[str] = None
    count: Optional[int] = None
    details: Optional[Any] = None
    stack: Optional[str] = None


def success_envelope(data: Any, **extra: Any) -> dict:
    return Envelope(success=True, data=data, **extra).model_dump(mode="json", exclude_none=True)


def error_envelope(message: str, *, details: Any = None, stack: Optional[str] = None) -> dict:
    envelope = Envelope(success=False, error=message, details=details, stack=stack)
    return envelope.model_dump(mode="json", exclude_none=True)


class _StrictRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class RegisterRequest(_StrictRequest):
    name: str
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return validate_name(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password(value)


class LoginRequest(_StrictRequest):
    # Presence is checked by the service so both fields may be omitted here
    email: Optional[str] = None
    password: Optional[str] = None


class UpdateDetailsRequest(_StrictRequest):
    name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: Optional[str]) -> Optional[str]:
        return validate_name(value) if value is not None else None

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        return validate_email(value) if value is not None else None


class UpdatePasswordRequest(_StrictRequest):
    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return validate_password(value)


class ForgotPasswordRequest(_StrictRequest):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return validate_email(value)


class ResetPasswordRequest(_StrictRequest):
    password: str

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password(value)


class AvatarResponse(BaseModel):
    public_id: str
    url: str


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: Role
    avatar: Optional[AvatarResponse] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            avatar=(
                AvatarResponse(public_id=user.avatar.public_id, url=user.avatar.url)
                if user.avatar
                else None
            ),
            created_at=user.created_at,
        )


def user_payload(user: User) -> dict:
    return UserResponse.from_user(user).model_dump(mode="json")


class TaskRequest(_StrictRequest):
    title: str = Field(min_length=1, max_length=150)
    description: str = Field(default="", max_length=2000)
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    labels: List[str] = Field(default_factory=list, max_length=10)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Please add a task title")
        return stripped


class TaskUpdateRequest(_StrictRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=150)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    labels: Optional[List[str]] = Field(default=None, max_length=10)


class ShareRequest(_StrictRequest):
    user_ids: Optional[List[str]] = Field(default=None, alias="userIds")
    is_public: Optional[bool] = Field(default=None, alias="isPublic")


class TaskResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    description: str
    priority: TaskPriority
    status: TaskStatus
    due_date: Optional[datetime] = None
    labels: List[str]
    is_public: bool
    shared_with: List[str]
    created_at: datetime
    updated_at: datetime


def task_payload(task: Task) -> dict:
    return TaskResponse(
        id=task.id,
        owner_id=task.owner_id,
        title=task.title,
        description=task.description,
        priority=task.priority,
        status=task.status,
        due_date=task.due_date,
        labels=list(task.labels),
        is_public=task.is_public,
        shared_with=sorted(task.shared_with),
        created_at=task.created_at,
        updated_at=task.updated_at,
    ).model_dump(mode="json")


class AdminUserCreateRequest(RegisterRequest):
    role: Role = Role.USER


class AdminUserUpdateRequest(UpdateDetailsRequest):
    role: Optional[Role] = None
