from __future__ import annotations

import copy
import json
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from taskgate.logging import get_logger
from taskgate.storage.errors import ConstraintViolation
from taskgate.storage.models import Avatar, Role, Session, Task, User, utcnow


class MemoryStore:
    """In-process credential and task store.

    Users, password records and tasks live in dictionaries guarded by one
    ``RLock``. With ``persist=True`` every mutation is snapshotted to
    ``<fs_root>/state/memory_store.json`` and reloaded on start.
    """

    def __init__(self, fs_root: str = "/tmp/taskgate", *, persist: bool = False) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.tasks: Dict[str, Task] = {}
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.persist = persist
        if persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Hold the lock for one mutation; undo it if the snapshot cannot be written."""
        with self._data_lock:
            if not self.persist:
                yield
                return
            saved = (
                copy.deepcopy(self.users),
                dict(self.credentials),
                copy.deepcopy(self.tasks),
            )
            try:
                yield
            except Exception:
                self.users, self.credentials, self.tasks = saved
                raise

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    # users
    def create_user(
        self,
        email: str,
        name: str,
        *,
        role: Role | str = Role.USER,
        password: Optional[tuple[str, str]] = None,
    ) -> User:
        """Insert a user, together with its ``(hash, algo)`` password record when given."""
        with self._transaction():
            if self._find_by_email(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(email=email, name=name, role=role)
            self.users[user.id] = user
            if password is not None:
                self.credentials[user.id] = password
                user.password_changed_at = utcnow()
            self._persist_state()
            return replace(user)

    def _find_by_email(self, email: str) -> Optional[User]:
        lowered = email.lower()
        return next((u for u in self.users.values() if u.email.lower() == lowered), None)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = self._find_by_email(email)
            return replace(user) if user else None

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            results = sorted(self.users.values(), key=lambda u: u.created_at, reverse=True)
            return [replace(u) for u in results[:limit]]

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Role | str | None = None,
        avatar: Optional[Avatar] = None,
    ) -> Optional[User]:
        with self._transaction():
            user = self.users.get(user_id)
            if not user:
                return None
            if email is not None and email.lower() != user.email.lower():
                if self._find_by_email(email):
                    raise ConstraintViolation("email already exists", {"field": "email"})
            if name is not None:
                user.name = name
            if email is not None:
                user.email = email
            if role is not None:
                user.role = Role(role)
            if avatar is not None:
                user.avatar = avatar
            self._persist_state()
            return replace(user)

    def delete_user(self, user_id: str) -> bool:
        with self._transaction():
            if self.users.pop(user_id, None) is None:
                return False
            self.credentials.pop(user_id, None)
            for task_id in [t.id for t in self.tasks.values() if t.owner_id == user_id]:
                self.tasks.pop(task_id, None)
            for task in self.tasks.values():
                task.shared_with.discard(user_id)
            self._persist_state()
            return True

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._transaction():
            user = self.users.get(user_id)
            if not user:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)
            user.password_changed_at = utcnow()
            self._persist_state()

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # password reset
    def set_reset_token(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        with self._transaction():
            user = self.users.get(user_id)
            if not user:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            user.reset_password_token = token_hash
            user.reset_password_expires_at = expires_at
            self._persist_state()

    def clear_reset_token(self, user_id: str) -> None:
        with self._transaction():
            user = self.users.get(user_id)
            if not user:
                return
            user.reset_password_token = None
            user.reset_password_expires_at = None
            self._persist_state()

    def get_user_by_reset_token(self, token_hash: str, now: datetime) -> Optional[User]:
        with self._data_lock:
            for user in self.users.values():
                if (
                    user.reset_password_token == token_hash
                    and user.reset_password_expires_at is not None
                    and user.reset_password_expires_at > now
                ):
                    return replace(user)
            return None

    # tasks
    def create_task(self, owner_id: str, title: str, **fields) -> Task:
        with self._transaction():
            if owner_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": owner_id})
            task = Task.new(owner_id=owner_id, title=title, **fields)
            self.tasks[task.id] = task
            self._persist_state()
            return self._copy_task(task)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._data_lock:
            task = self.tasks.get(task_id)
            return self._copy_task(task) if task else None

    def update_task(self, task_id: str, **fields) -> Optional[Task]:
        with self._transaction():
            task = self.tasks.get(task_id)
            if not task:
                return None
            updated = replace(task, **fields, updated_at=utcnow())
            self.tasks[task_id] = updated
            self._persist_state()
            return self._copy_task(updated)

    def delete_task(self, task_id: str) -> bool:
        with self._transaction():
            removed = self.tasks.pop(task_id, None) is not None
            if removed:
                self._persist_state()
            return removed

    def list_tasks(self, *, visible_to: Optional[str] = None) -> List[Task]:
        """List tasks, restricted to those ``visible_to`` can read when given."""
        with self._data_lock:
            tasks: Iterable[Task] = self.tasks.values()
            if visible_to is not None:
                tasks = [
                    t for t in tasks
                    if t.owner_id == visible_to or t.is_public or visible_to in t.shared_with
                ]
            ordered = sorted(tasks, key=lambda t: t.created_at, reverse=True)
            return [self._copy_task(t) for t in ordered]

    def clear_tasks(self) -> int:
        with self._transaction():
            count = len(self.tasks)
            self.tasks.clear()
            self._persist_state()
            return count

    @staticmethod
    def _copy_task(task: Task) -> Task:
        return replace(task, shared_with=set(task.shared_with), labels=list(task.labels))

    # persistence
    def _snapshot(self) -> dict:
        return {
            "users": [
                {**self._serialize_user(u), "password": self._serialize_password(u.id)}
                for u in self.users.values()
            ],
            "tasks": [self._serialize_task(t) for t in self.tasks.values()],
        }

    def _serialize_password(self, user_id: str) -> Optional[dict]:
        record = self.credentials.get(user_id)
        if record is None:
            return None
        return {"hash": record[0], "algo": record[1]}

    def _persist_state(self) -> None:
        if not self.persist:
            return
        path = self._state_path()
        scratch = path.with_suffix(".tmp")
        try:
            scratch.write_text(json.dumps(self._snapshot(), indent=2))
            scratch.replace(path)
        except OSError as exc:
            raise RuntimeError(f"could not write store snapshot to {path}: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        if not path.exists():
            return False
        data = json.loads(path.read_text())
        users: Dict[str, User] = {}
        credentials: Dict[str, tuple[str, str]] = {}
        for raw in data.get("users", []):
            # unknown roles raise here rather than loading a half-valid account
            user = self._deserialize_user(raw)
            users[user.id] = user
            password = raw.get("password")
            if password:
                credentials[user.id] = (password["hash"], password.get("algo", ""))
        self.users = users
        self.credentials = credentials
        self.tasks = {t["id"]: self._deserialize_task(t) for t in data.get("tasks", [])}
        self.logger.info("memory_store_loaded", users=len(users), tasks=len(self.tasks))
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role.value,
            "created_at": self._serialize_datetime(user.created_at),
            "avatar": (
                {"public_id": user.avatar.public_id, "url": user.avatar.url}
                if user.avatar
                else None
            ),
            "reset_password_token": user.reset_password_token,
            "reset_password_expires_at": self._serialize_datetime(
                user.reset_password_expires_at
            ),
            "password_changed_at": self._serialize_datetime(user.password_changed_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        avatar = data.get("avatar")
        return User(
            id=str(data["id"]),
            email=data["email"],
            name=data.get("name", ""),
            role=Role(data.get("role", "user")),
            created_at=self._deserialize_datetime(data["created_at"]),
            avatar=Avatar(**avatar) if avatar else None,
            reset_password_token=data.get("reset_password_token"),
            reset_password_expires_at=self._deserialize_datetime(
                data.get("reset_password_expires_at")
            ),
            password_changed_at=self._deserialize_datetime(data.get("password_changed_at")),
        )

    def _serialize_task(self, task: Task) -> dict:
        return {
            "id": task.id,
            "owner_id": task.owner_id,
            "title": task.title,
            "description": task.description,
            "priority": task.priority.value,
            "status": task.status.value,
            "due_date": self._serialize_datetime(task.due_date),
            "labels": list(task.labels),
            "is_public": task.is_public,
            "shared_with": sorted(task.shared_with),
            "created_at": self._serialize_datetime(task.created_at),
            "updated_at": self._serialize_datetime(task.updated_at),
        }

    def _deserialize_task(self, data: dict) -> Task:
        return Task(
            id=str(data["id"]),
            owner_id=data["owner_id"],
            title=data["title"],
            description=data.get("description", ""),
            priority=data.get("priority", "Medium"),
            status=data.get("status", "Pending"),
            due_date=self._deserialize_datetime(data.get("due_date")),
            labels=data.get("labels", []),
            is_public=bool(data.get("is_public", False)),
            shared_with=set(data.get("shared_with", [])),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )


class MemorySessionStore:
    """Async session store for single-process deployments and tests.

    Expired records are filtered on read and removed by ``sweep_expired``.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    async def create(self, user_id: str, ttl_seconds: int) -> Session:
        sess = Session.new(user_id=user_id, ttl_seconds=ttl_seconds)
        with self._lock:
            self.sessions[sess.id] = sess
        return replace(sess)

    async def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            sess = self.sessions.get(session_id)
            if sess is None:
                return None
            if sess.is_expired():
                self.sessions.pop(session_id, None)
                return None
            return replace(sess)

    async def destroy(self, session_id: str) -> None:
        with self._lock:
            self.sessions.pop(session_id, None)

    async def destroy_user_sessions(self, user_id: str) -> int:
        with self._lock:
            stale = [sid for sid, sess in self.sessions.items() if sess.user_id == user_id]
            for sid in stale:
                self.sessions.pop(sid, None)
            return len(stale)

    async def sweep_expired(self) -> int:
        now = utcnow()
        with self._lock:
            expired = [sid for sid, sess in self.sessions.items() if sess.is_expired(now)]
            for sid in expired:
                self.sessions.pop(sid, None)
        if expired:
            self.logger.info("sessions_swept", count=len(expired))
        return len(expired)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
