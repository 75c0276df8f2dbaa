from __future__ import annotations

from typing import Any, Iterable, List, Optional

from taskgate.logging import get_logger
from taskgate.service.errors import ForbiddenError, NotFoundError, ValidationError
from taskgate.service.guard import AccessIntent, require_role, require_task_access
from taskgate.storage.memory import MemoryStore
from taskgate.storage.models import Role, Task, User

logger = get_logger(__name__)

_EDITABLE_FIELDS = {"title", "description", "priority", "status", "due_date", "labels"}


class TaskService:
    """Task records behind the authorization guard.

    Reads pass for owner, admin, public tasks and users the task is shared
    with; every mutation requires owner or admin.
    """

    def __init__(self, store: MemoryStore, *, allow_reset: bool = True) -> None:
        self.store = store
        self.allow_reset = allow_reset

    def _load(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found with id of {task_id}")
        return task

    def create(self, user: User, title: str, **fields: Any) -> Task:
        task = self.store.create_task(
            user.id, title, **{k: v for k, v in fields.items() if k in _EDITABLE_FIELDS}
        )
        logger.info("task_created", task_id=task.id, owner_id=user.id)
        return task

    def list_visible(self, user: User) -> List[Task]:
        if user.role == Role.ADMIN:
            return self.store.list_tasks()
        return self.store.list_tasks(visible_to=user.id)

    def get(self, user: User, task_id: str) -> Task:
        task = self._load(task_id)
        require_task_access(user, task, AccessIntent.READ, "access")
        return task

    def update(self, user: User, task_id: str, **fields: Any) -> Task:
        task = self._load(task_id)
        require_task_access(user, task, AccessIntent.WRITE, "update")
        changes = {k: v for k, v in fields.items() if k in _EDITABLE_FIELDS}
        updated = self.store.update_task(task.id, **changes)
        if updated is None:
            raise NotFoundError(f"Task not found with id of {task_id}")
        return updated

    def delete(self, user: User, task_id: str) -> None:
        task = self._load(task_id)
        require_task_access(user, task, AccessIntent.WRITE, "delete")
        self.store.delete_task(task.id)
        logger.info("task_deleted", task_id=task.id, actor_id=user.id)

    def share(
        self,
        user: User,
        task_id: str,
        *,
        user_ids: Optional[Iterable[str]] = None,
        is_public: Optional[bool] = None,
    ) -> Task:
        task = self._load(task_id)
        require_task_access(user, task, AccessIntent.WRITE, "share")
        changes: dict[str, Any] = {}
        if user_ids is not None:
            recipients = set(user_ids)
            unknown = sorted(uid for uid in recipients if self.store.get_user(uid) is None)
            if unknown:
                raise ValidationError(
                    "Cannot share with unknown users", detail={"user_ids": unknown}
                )
            recipients.discard(task.owner_id)
            changes["shared_with"] = recipients
        if is_public is not None:
            changes["is_public"] = is_public
        updated = self.store.update_task(task.id, **changes) if changes else task
        logger.info(
            "task_shared",
            task_id=task.id,
            shared_count=len(updated.shared_with),
            is_public=updated.is_public,
        )
        return updated

    def toggle_public(self, user: User, task_id: str) -> Task:
        task = self._load(task_id)
        require_task_access(user, task, AccessIntent.WRITE, "modify")
        return self.store.update_task(task.id, is_public=not task.is_public) or task

    def reset_all(self, user: User) -> int:
        require_role(user, Role.ADMIN)
        if not self.allow_reset:
            raise ForbiddenError("Resetting all tasks is not allowed in production")
        removed = self.store.clear_tasks()
        logger.warning("tasks_reset", actor_id=user.id, count=removed)
        return removed
