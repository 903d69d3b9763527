from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Tuple

from sqlalchemy import ColumnElement, Select, and_, func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import ConflictError, DuplicateConfirmationCodeError, StoreBusyError
from ..domain.repositories import HistoryKind, RequesterRepository, ReservationRepository, SpaceRepository
from ..domain.snapshots import EnrichedReservation, OperatingHours, Recipient, SpaceDetails, SpaceSnapshot
from ..models import (
    Building,
    Campus,
    CancellationReason,
    Reservation,
    ReservationStatus,
    SpaceStatus,
    StudySpace,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

# PostgreSQL: lock_not_available, deadlock_detected, serialization_failure.
_PG_CONTENTION_CODES = {"55P03", "40P01", "40001"}
# MySQL: ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK.
_MYSQL_CONTENTION_CODES = {1205, 1213}

CONFIRMATION_CODE_CONSTRAINT = "uq_reservations_confirmation_code"
_FINISHED_STATUSES = (ReservationStatus.CANCELLED, ReservationStatus.COMPLETED, ReservationStatus.NO_SHOW)


def is_lock_contention(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _PG_CONTENTION_CODES:
        return True
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int) and args[0] in _MYSQL_CONTENTION_CODES:
        return True
    message = str(exc).lower()
    return "lock wait timeout" in message or "deadlock" in message


@asynccontextmanager
async def translate_lock_errors() -> AsyncIterator[None]:
    """Surface lock waits that ran out as a retryable failure, never as a conflict."""
    try:
        yield
    except DBAPIError as exc:
        if is_lock_contention(exc):
            logger.warning("lock contention in booking store: %s", exc.orig)
            raise StoreBusyError("The booking store is busy, please retry") from exc
        raise


def overlap_stmt(
    owner: ColumnElement[Any],
    starts_at: datetime,
    ends_at: datetime,
    exclude_id: int | None,
) -> Select[Tuple[Reservation]]:
    """Locked read of confirmed rows overlapping [starts_at, ends_at) for one owner column."""
    stmt = select(Reservation).where(
        owner,
        Reservation.status == ReservationStatus.CONFIRMED,
        Reservation.starts_at < ends_at,
        Reservation.ends_at > starts_at,
    )
    if exclude_id is not None:
        stmt = stmt.where(Reservation.id != exclude_id)
    return stmt.order_by(Reservation.id).with_for_update()


def active_future_stmt(user_id: int, now: datetime) -> Select[Tuple[int]]:
    """Locked read of a user's confirmed future rows, counted against the latest committed state."""
    return (
        select(Reservation.id)
        .where(
            Reservation.user_id == user_id,
            Reservation.status == ReservationStatus.CONFIRMED,
            Reservation.starts_at > now,
        )
        .with_for_update()
    )


def _hours(opens: Any, closes: Any) -> Optional[OperatingHours]:
    if opens is None or closes is None:
        return None
    return OperatingHours(opens_at=opens, closes_at=closes)


def _space_details(space: StudySpace, building: Building, campus: Campus) -> SpaceDetails:
    return SpaceDetails(
        space_id=space.id,
        name=space.name,
        room_number=space.room_number,
        floor=space.floor,
        capacity=space.capacity,
        room_type=space.room_type,
        noise_level=space.noise_level,
        building_id=building.id,
        building_name=building.name,
        campus_id=campus.id,
        campus_name=campus.name,
        weekday_hours=_hours(space.weekday_opens_at, space.weekday_closes_at),
        weekend_hours=_hours(space.weekend_opens_at, space.weekend_closes_at),
        amenities=list(space.amenities or []),
        accessibility_features=list(space.accessibility_features or []),
    )


def _history_filters(
    user_id: int,
    *,
    now: datetime,
    kind: HistoryKind | None,
    status: ReservationStatus | None,
) -> list[ColumnElement[bool]]:
    filters: list[ColumnElement[bool]] = [Reservation.user_id == user_id]
    if kind == "upcoming":
        filters.append(and_(Reservation.starts_at > now, Reservation.status == ReservationStatus.CONFIRMED))
    elif kind == "past":
        filters.append(or_(Reservation.starts_at <= now, Reservation.status.in_(_FINISHED_STATUSES)))
    if status is not None:
        filters.append(Reservation.status == status)
    return filters


class SqlAlchemySpaceRepository(SpaceRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_snapshot(self, space_id: int) -> SpaceSnapshot | None:
        space = await self.session.scalar(
            select(StudySpace).where(StudySpace.id == space_id, StudySpace.status != SpaceStatus.DELETED)
        )
        if not isinstance(space, StudySpace):
            return None
        return SpaceSnapshot(
            space_id=space.id,
            status=space.status,
            weekday_hours=_hours(space.weekday_opens_at, space.weekday_closes_at),
            weekend_hours=_hours(space.weekend_opens_at, space.weekend_closes_at),
        )

    async def lock_status(self, space_id: int) -> SpaceStatus | None:
        async with translate_lock_errors():
            return await self.session.scalar(
                select(StudySpace.status).where(StudySpace.id == space_id).with_for_update()
            )


class SqlAlchemyRequesterRepository(RequesterRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock(self, user_id: int) -> None:
        async with translate_lock_errors():
            await self.session.scalar(select(User.id).where(User.id == user_id).with_for_update())

    async def get_role(self, user_id: int) -> UserRole | None:
        return await self.session.scalar(select(User.role).where(User.id == user_id))

    async def get_recipient(self, user_id: int) -> Recipient | None:
        user = await self.session.scalar(select(User).where(User.id == user_id))
        if not isinstance(user, User):
            return None
        return Recipient(
            email=user.email,
            full_name=user.full_name,
            email_verified=user.email_verified,
            preferences=user.notification_preferences,
        )


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def count_active_future(self, user_id: int, *, now: datetime) -> int:
        async with translate_lock_errors():
            ids = (await self.session.scalars(active_future_stmt(user_id, now))).all()
        return len(ids)

    async def find_overlapping_for_space(
        self,
        space_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> List[Reservation]:
        stmt = overlap_stmt(Reservation.space_id == space_id, starts_at, ends_at, exclude_id)
        async with translate_lock_errors():
            return list((await self.session.scalars(stmt)).all())

    async def find_overlapping_for_user(
        self,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> List[Reservation]:
        stmt = overlap_stmt(Reservation.user_id == user_id, starts_at, ends_at, exclude_id)
        async with translate_lock_errors():
            return list((await self.session.scalars(stmt)).all())

    async def confirmation_code_exists(self, code: str) -> bool:
        stmt = select(Reservation.id).where(Reservation.confirmation_code == code)
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        user_id: int,
        space_id: int,
        starts_at: datetime,
        ends_at: datetime,
        purpose: str | None,
        confirmation_code: str,
        now: datetime,
    ) -> Reservation:
        reservation = Reservation(
            user_id=user_id,
            space_id=space_id,
            starts_at=starts_at,
            ends_at=ends_at,
            purpose=purpose,
            status=ReservationStatus.CONFIRMED,
            confirmation_code=confirmation_code,
            created_at=now,
            updated_at=now,
        )
        try:
            # SAVEPOINT so a rejected insert leaves the outer transaction and its locks intact.
            async with translate_lock_errors(), self.session.begin_nested():
                self.session.add(reservation)
                await self.session.flush()
        except IntegrityError as exc:
            if CONFIRMATION_CODE_CONSTRAINT in str(exc.orig) or "confirmation_code" in str(exc.orig):
                raise DuplicateConfirmationCodeError("confirmation code already taken") from exc
            raise ConflictError("Space is already booked at this time") from exc
        return reservation

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        stmt = select(Reservation).where(Reservation.id == reservation_id).with_for_update()
        async with translate_lock_errors():
            result = await self.session.scalar(stmt)
        return result if isinstance(result, Reservation) else None

    async def update_status(
        self,
        reservation: Reservation,
        *,
        status: ReservationStatus,
        reason: CancellationReason | None,
        now: datetime,
    ) -> Reservation:
        reservation.status = status
        reservation.updated_at = now
        if status == ReservationStatus.CANCELLED:
            reservation.cancelled_at = now
            reservation.cancellation_reason = reason
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_with_space_details(self, reservation_id: int) -> EnrichedReservation | None:
        stmt: Select[Tuple[Reservation, StudySpace, Building, Campus]] = (
            select(Reservation, StudySpace, Building, Campus)
            .join(StudySpace, Reservation.space_id == StudySpace.id)
            .join(Building, StudySpace.building_id == Building.id)
            .join(Campus, Building.campus_id == Campus.id)
            .where(Reservation.id == reservation_id)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        reservation, space, building, campus = row
        return EnrichedReservation(reservation=reservation, space=_space_details(space, building, campus))

    async def list_by_user(
        self,
        user_id: int,
        *,
        now: datetime,
        kind: HistoryKind | None = None,
        status: ReservationStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> List[EnrichedReservation]:
        stmt: Select[Tuple[Reservation, StudySpace, Building, Campus]] = (
            select(Reservation, StudySpace, Building, Campus)
            .join(StudySpace, Reservation.space_id == StudySpace.id)
            .join(Building, StudySpace.building_id == Building.id)
            .join(Campus, Building.campus_id == Campus.id)
            .where(*_history_filters(user_id, now=now, kind=kind, status=status))
            .order_by(Reservation.starts_at.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = await self.session.execute(stmt)
        return [
            EnrichedReservation(reservation=res, space=_space_details(space, building, campus))
            for res, space, building, campus in rows.all()
        ]

    async def count_by_user(
        self,
        user_id: int,
        *,
        now: datetime,
        kind: HistoryKind | None = None,
        status: ReservationStatus | None = None,
    ) -> int:
        stmt = select(func.count(Reservation.id)).where(
            *_history_filters(user_id, now=now, kind=kind, status=status)
        )
        return int(await self.session.scalar(stmt) or 0)
