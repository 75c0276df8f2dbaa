import json
from datetime import timedelta

import pytest

from taskgate.storage.errors import ConstraintViolation
from taskgate.storage.memory import MemoryStore
from taskgate.storage.models import Role, utcnow


class TestUsers:
    def test_email_uniqueness_ignores_case(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        store.create_user("alice@example.com", "Alice")
        with pytest.raises(ConstraintViolation):
            store.create_user("ALICE@example.com", "Other")

    def test_returned_users_are_copies(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        user = store.create_user("alice@example.com", "Alice")
        user.role = Role.ADMIN
        assert store.get_user(user.id).role == Role.USER

    def test_update_rejects_unknown_role(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        user = store.create_user("alice@example.com", "Alice")
        with pytest.raises(ValueError):
            store.update_user(user.id, role="owner")

    def test_delete_removes_owned_tasks_and_shares(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        alice = store.create_user("alice@example.com", "Alice")
        bob = store.create_user("bob@example.com", "Bob")
        bobs = store.create_task(bob.id, "Bob's task")
        shared = store.create_task(alice.id, "Shared", shared_with={bob.id})
        store.delete_user(bob.id)
        assert store.get_task(bobs.id) is None
        assert store.get_task(shared.id).shared_with == set()

    def test_reset_token_lookup_honours_expiry(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        user = store.create_user("alice@example.com", "Alice")
        now = utcnow()
        store.set_reset_token(user.id, "hashed", now + timedelta(minutes=10))
        assert store.get_user_by_reset_token("hashed", now).id == user.id
        assert store.get_user_by_reset_token("hashed", now + timedelta(minutes=11)) is None
        assert store.get_user_by_reset_token("other", now) is None


class TestPersistence:
    def test_state_survives_restart(self, tmp_path):
        store = MemoryStore(str(tmp_path), persist=True)
        alice = store.create_user("alice@example.com", "Alice", role=Role.PUBLISHER)
        store.save_password(alice.id, "hash", "argon2id")
        task = store.create_task(alice.id, "Persist me", labels=["a"], is_public=True)

        reloaded = MemoryStore(str(tmp_path), persist=True)
        user = reloaded.get_user(alice.id)
        assert user.role == Role.PUBLISHER
        assert user.password_changed_at is not None
        assert reloaded.get_password_record(alice.id) == ("hash", "argon2id")
        restored = reloaded.get_task(task.id)
        assert restored.title == "Persist me"
        assert restored.labels == ["a"]
        assert restored.is_public is True

    def test_unknown_persisted_role_is_rejected(self, tmp_path):
        store = MemoryStore(str(tmp_path), persist=True)
        store.create_user("alice@example.com", "Alice")
        path = tmp_path / "state" / "memory_store.json"
        state = json.loads(path.read_text())
        state["users"][0]["role"] = "superuser"
        path.write_text(json.dumps(state))
        with pytest.raises(ValueError):
            MemoryStore(str(tmp_path), persist=True)

    def test_no_file_written_without_persist(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        store.create_user("alice@example.com", "Alice")
        assert not (tmp_path / "state").exists()


class TestFailedSnapshot:
    @staticmethod
    def _block_snapshot(tmp_path):
        # a directory where the scratch file goes makes every write fail
        (tmp_path / "state" / "memory_store.tmp").mkdir(parents=True)

    def test_failed_create_leaves_no_user_behind(self, tmp_path):
        store = MemoryStore(str(tmp_path), persist=True)
        self._block_snapshot(tmp_path)
        with pytest.raises(RuntimeError):
            store.create_user("bob@example.com", "Bob", password=("hash", "argon2id"))
        assert store.get_user_by_email("bob@example.com") is None
        assert store.list_users() == []

    def test_email_is_free_again_once_disk_recovers(self, tmp_path):
        store = MemoryStore(str(tmp_path), persist=True)
        self._block_snapshot(tmp_path)
        with pytest.raises(RuntimeError):
            store.create_user("bob@example.com", "Bob")
        (tmp_path / "state" / "memory_store.tmp").rmdir()
        user = store.create_user("bob@example.com", "Bob", password=("hash", "argon2id"))
        assert store.get_password_record(user.id) == ("hash", "argon2id")

    def test_failed_update_keeps_previous_values(self, tmp_path):
        store = MemoryStore(str(tmp_path), persist=True)
        alice = store.create_user("alice@example.com", "Alice")
        task = store.create_task(alice.id, "Original")
        self._block_snapshot(tmp_path)
        with pytest.raises(RuntimeError):
            store.update_user(alice.id, name="Changed", role=Role.ADMIN)
        with pytest.raises(RuntimeError):
            store.update_task(task.id, title="Changed")
        with pytest.raises(RuntimeError):
            store.delete_user(alice.id)
        assert store.get_user(alice.id).name == "Alice"
        assert store.get_user(alice.id).role == Role.USER
        assert store.get_task(task.id).title == "Original"

    def test_create_user_stores_password_atomically(self, tmp_path):
        store = MemoryStore(str(tmp_path))
        user = store.create_user("carol@example.com", "Carol", password=("hash", "argon2id"))
        assert store.get_password_record(user.id) == ("hash", "argon2id")
        assert user.password_changed_at is not None
