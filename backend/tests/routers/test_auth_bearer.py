from datetime import timedelta
from typing import Any, AsyncIterator

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from spacebook.config import get_settings
from spacebook.deps import get_current_requester, get_session
from spacebook.domain.snapshots import Requester
from spacebook.models import UserRole
from spacebook.utils.auth import create_access_token


class DummySession:
    def __init__(self, role: UserRole | None) -> None:
        self.role = role

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> UserRole | None:
        return self.role

    async def rollback(self) -> None:
        return None


def _make_app(role: UserRole | None) -> TestClient:
    app = FastAPI()

    async def override_get_session() -> AsyncIterator[DummySession]:
        session = DummySession(role=role)
        yield session

    app.dependency_overrides[get_session] = override_get_session

    @app.get("/protected")
    async def protected(requester: Requester = Depends(get_current_requester)) -> dict[str, Any]:
        return {"user_id": requester.user_id, "role": requester.role.value}

    return TestClient(app)


def _token(secret: str, *, expired: bool = False) -> str:
    delta = timedelta(seconds=-1) if expired else timedelta(minutes=30)
    return create_access_token(user_id=123, secret=secret, expires_delta=delta)


@pytest.fixture(autouse=True)
def _auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def test_protected_accepts_valid_token() -> None:
    client = _make_app(role=UserRole.STUDENT)
    token = _token("testsecret")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json() == {"user_id": 123, "role": "Student"}


def test_protected_rejects_missing_header() -> None:
    client = _make_app(role=UserRole.STUDENT)
    res = client.get("/protected")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate", "").lower().startswith("bearer")


def test_protected_rejects_invalid_token() -> None:
    client = _make_app(role=UserRole.STUDENT)
    res = client.get("/protected", headers={"Authorization": "Bearer invalid"})
    assert res.status_code == 401


def test_protected_rejects_expired_token() -> None:
    client = _make_app(role=UserRole.STUDENT)
    token = _token("testsecret", expired=True)
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_protected_rejects_token_for_other_secret() -> None:
    client = _make_app(role=UserRole.STUDENT)
    token = _token("not-the-secret")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_protected_rejects_when_user_not_found() -> None:
    client = _make_app(role=None)
    token = _token("testsecret")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401
