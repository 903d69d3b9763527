from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncContextManager, Literal, Protocol

from ..models import CancellationReason, Reservation, ReservationStatus, SpaceStatus, UserRole
from .snapshots import EnrichedReservation, Recipient, SpaceSnapshot

HistoryKind = Literal["upcoming", "past"]


class SpaceRepository(Protocol):
    async def get_snapshot(self, space_id: int) -> SpaceSnapshot | None: ...

    async def lock_status(self, space_id: int) -> SpaceStatus | None: ...


class RequesterRepository(Protocol):
    async def lock(self, user_id: int) -> None: ...

    async def get_role(self, user_id: int) -> UserRole | None: ...

    async def get_recipient(self, user_id: int) -> Recipient | None: ...


class ReservationRepository(Protocol):
    async def count_active_future(self, user_id: int, *, now: datetime) -> int: ...

    async def find_overlapping_for_space(
        self,
        space_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]: ...

    async def find_overlapping_for_user(
        self,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]: ...

    async def confirmation_code_exists(self, code: str) -> bool: ...

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
    ) -> Reservation: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def update_status(
        self,
        reservation: Reservation,
        *,
        status: ReservationStatus,
        reason: CancellationReason | None,
        now: datetime,
    ) -> Reservation: ...

    async def get_with_space_details(self, reservation_id: int) -> EnrichedReservation | None: ...

    async def list_by_user(
        self,
        user_id: int,
        *,
        now: datetime,
        kind: HistoryKind | None = None,
        status: ReservationStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[EnrichedReservation]: ...

    async def count_by_user(
        self,
        user_id: int,
        *,
        now: datetime,
        kind: HistoryKind | None = None,
        status: ReservationStatus | None = None,
    ) -> int: ...


class BookingUnitOfWork(Protocol):
    spaces: SpaceRepository
    requesters: RequesterRepository
    reservations: ReservationRepository

    def begin(self) -> AsyncContextManager[Any]: ...
