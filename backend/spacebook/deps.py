import logging
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.services import BookingPolicy
from .domain.snapshots import Requester
from .infrastructure.repositories import SqlAlchemyRequesterRepository
from .notifications.notifier import BookingNotifier
from .utils.auth import decode_access_token, extract_bearer_token

logger = logging.getLogger(__name__)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_current_requester(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Requester:
    settings = get_settings()
    try:
        token = extract_bearer_token(authorization)
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers=_UNAUTHORIZED_HEADERS,
        ) from exc

    try:
        role = await SqlAlchemyRequesterRepository(session).get_role(user_id)
    except ProgrammingError as exc:
        await session.rollback()
        logger.exception("users table unavailable while authenticating user %s", user_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user store unavailable") from exc
    # End the autobegun read so the unit of work can open its own transaction on this session.
    await session.rollback()
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers=_UNAUTHORIZED_HEADERS,
        )
    return Requester(user_id=user_id, role=role)


def get_notifier(request: Request) -> BookingNotifier:
    return request.app.state.notifier


def get_booking_policy() -> BookingPolicy:
    return get_settings().booking_policy()
