import os
import tempfile
from datetime import datetime, timedelta, timezone

_TMP_DIR = tempfile.mkdtemp(prefix="scoped-grants-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'audit.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["RATE_LIMIT"] = "30/minute"
os.environ.pop("GRANT_SNAPSHOT_PATH", None)

import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core import config  # noqa: E402
from app.features.permissions.lifecycle import GrantLifecycle  # noqa: E402
from app.features.permissions.resolution import GrantResolver  # noqa: E402
from app.features.permissions.store import GrantStore  # noqa: E402


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> GrantStore:
    return GrantStore()


@pytest.fixture
def lifecycle(store: GrantStore, clock: FrozenClock) -> GrantLifecycle:
    return GrantLifecycle(store, clock=clock)


@pytest.fixture
def resolver(store: GrantStore, clock: FrozenClock) -> GrantResolver:
    return GrantResolver(store, clock=clock)


def make_token(user_id: str, is_admin: bool = False, **claims) -> str:
    payload = {"sub": user_id, "is_admin": is_admin, **claims}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def auth_headers(user_id: str, is_admin: bool = False) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, is_admin=is_admin)}"}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "GRANT_SNAPSHOT_PATH", None)
    from app.main import app, limiter

    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
