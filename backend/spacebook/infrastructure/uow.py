from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.repositories import BookingUnitOfWork
from .repositories import SqlAlchemyRequesterRepository, SqlAlchemyReservationRepository, SqlAlchemySpaceRepository


class SqlAlchemyUnitOfWork(BookingUnitOfWork):
    """Repositories bound to one session. Each `begin()` block is one transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.spaces = SqlAlchemySpaceRepository(session)
        self.requesters = SqlAlchemyRequesterRepository(session)
        self.reservations = SqlAlchemyReservationRepository(session)

    def begin(self) -> AsyncContextManager[Any]:
        # Commits on clean exit, rolls back before any exception propagates.
        return self.session.begin()


@asynccontextmanager
async def open_unit_of_work(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[SqlAlchemyUnitOfWork]:
    async with session_factory() as session:
        yield SqlAlchemyUnitOfWork(session)
