from datetime import timedelta
from typing import Any

import pytest
from fastapi import HTTPException
from spacebook.config import Settings, get_settings
from spacebook.deps import get_current_requester
from spacebook.models import UserRole
from spacebook.utils.auth import create_access_token, decode_access_token, extract_bearer_token
from sqlalchemy.exc import ProgrammingError


class DummySession:
    def __init__(self, role: UserRole | None | Exception) -> None:
        self.role = role
        self.rollbacks = 0

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> UserRole | None:
        if isinstance(self.role, Exception):
            raise self.role
        return self.role

    async def rollback(self) -> None:
        self.rollbacks += 1


@pytest.fixture(autouse=True)
def _set_auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def _token(user_id: int = 123, **kwargs: Any) -> str:
    settings = Settings(auth_secret="testsecret")
    return create_access_token(user_id=user_id, secret=settings.auth_secret, algorithm=settings.auth_algorithm, **kwargs)


@pytest.mark.asyncio
async def test_get_current_requester_accepts_valid_token() -> None:
    session = DummySession(role=UserRole.SPACE_MANAGER)
    requester = await get_current_requester(authorization=f"Bearer {_token()}", session=session)  # type: ignore[arg-type]
    assert requester.user_id == 123
    assert requester.role == UserRole.SPACE_MANAGER
    assert requester.is_elevated
    # the lookup transaction is closed before the request's own unit of work begins
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_get_current_requester_rejects_missing_header() -> None:
    session = DummySession(role=UserRole.STUDENT)
    with pytest.raises(HTTPException) as excinfo:
        await get_current_requester(authorization=None, session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401
    assert excinfo.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_get_current_requester_rejects_expired_token() -> None:
    session = DummySession(role=UserRole.STUDENT)
    token = _token(user_id=1, expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_requester(authorization=f"Bearer {token}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_requester_rejects_when_user_missing() -> None:
    session = DummySession(role=None)
    with pytest.raises(HTTPException) as excinfo:
        await get_current_requester(authorization=f"Bearer {_token(user_id=99)}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_requester_handles_missing_users_table() -> None:
    session = DummySession(role=ProgrammingError("missing", None, Exception("cause")))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_requester(authorization=f"Bearer {_token(user_id=1)}", session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 500
    assert session.rollbacks == 1


def test_extract_bearer_token_rejects_other_schemes() -> None:
    with pytest.raises(ValueError):
        extract_bearer_token("Basic dXNlcjpwdw==")
    with pytest.raises(ValueError):
        extract_bearer_token("Bearer   ")
    assert extract_bearer_token("bearer abc.def") == "abc.def"


def test_decode_rejects_token_signed_with_other_secret() -> None:
    token = create_access_token(user_id=5, secret="another-secret")
    with pytest.raises(ValueError):
        decode_access_token(token, secret="testsecret", algorithms=["HS256"])


def test_decode_rejects_non_positive_user_id() -> None:
    token = create_access_token(user_id=0, secret="testsecret")
    with pytest.raises(ValueError):
        decode_access_token(token, secret="testsecret", algorithms=["HS256"])
