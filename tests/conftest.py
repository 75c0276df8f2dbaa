import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Set env before anything reads Settings
_test_tmp_dir = tempfile.mkdtemp(prefix="taskgate_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from taskgate.app import create_app  # noqa: E402
from taskgate.config import Settings, reset_settings_cache  # noqa: E402
from taskgate.service.container import Container  # noqa: E402
from taskgate.service.email import EmailService  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class RecordingEmailService(EmailService):
    """Captures outgoing reset links instead of talking to SMTP."""

    def __init__(self, *, succeed: bool = True) -> None:
        super().__init__()
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    def send_password_reset(self, to_email: str, reset_url: str) -> bool:
        self.sent.append((to_email, reset_url))
        return self.succeed


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "environment": "test",
        "jwt_secret": TEST_SECRET,
        "shared_fs_root": str(tmp_path),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def email_service():
    return RecordingEmailService()


@pytest.fixture
def container(settings, email_service):
    return Container(settings, email=email_service)


@pytest.fixture
def client(container):
    return TestClient(create_app(container=container))


def register(client, email="alice@example.com", password="Secret123", name="Alice"):
    return client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": password},
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
