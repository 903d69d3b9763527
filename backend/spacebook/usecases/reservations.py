from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, cast

from ..domain.confirmation import claim_confirmation_code
from ..domain.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from ..domain.repositories import BookingUnitOfWork, HistoryKind, ReservationRepository
from ..domain.services import (
    BookingPolicy,
    BookingRequest,
    check_booking_request,
    check_operating_hours,
    check_quota,
    ensure_cancellable,
    resolve_cancellation_reason,
)
from ..domain.snapshots import EnrichedReservation, Requester
from ..models import Reservation, ReservationStatus, SpaceStatus
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class ReservationNotifier(Protocol):
    def booking_confirmed(self, reservation_id: int) -> None: ...

    def booking_cancelled(self, reservation_id: int) -> None: ...


@dataclass(frozen=True)
class ReservationStatistics:
    total: int
    upcoming: int
    past: int
    cancelled: int


@dataclass(frozen=True)
class ReservationHistory:
    statistics: ReservationStatistics
    page: int
    limit: int
    upcoming: list[EnrichedReservation] = field(default_factory=list)
    past: list[EnrichedReservation] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.statistics.total / self.limit) if self.limit else 0


async def create_reservation(
    uow: BookingUnitOfWork,
    notifier: ReservationNotifier,
    *,
    requester_id: int,
    request: BookingRequest,
    policy: BookingPolicy,
    now: datetime | None = None,
) -> EnrichedReservation:
    """
    Grant a window on a space to a requester, or raise.

    Everything from validation to insert runs in one transaction. The requester
    row, then the space row, then every overlapping candidate are locked in that
    order, so of two transactions contending for the same space-time the second
    waits and re-reads the first's committed row.
    """
    now = now or utc_now_naive()
    async with uow.begin():
        result = check_booking_request(request, policy=policy, now=now)
        if not result.valid:
            raise ValidationFailedError(result.errors)
        starts_at, ends_at = cast(datetime, result.starts_at), cast(datetime, result.ends_at)
        space_id: int = request.space_id

        snapshot = await uow.spaces.get_snapshot(space_id)
        if snapshot is None:
            raise NotFoundError("Space not found")
        if snapshot.status != SpaceStatus.AVAILABLE:
            raise ConflictError("Space is not available for booking")

        check_operating_hours(snapshot, starts_at, ends_at, policy.timezone)

        await uow.requesters.lock(requester_id)
        active = await uow.reservations.count_active_future(requester_id, now=now)
        check_quota(active, policy.max_active_reservations)

        if await uow.reservations.find_overlapping_for_user(requester_id, starts_at, ends_at):
            raise ConflictError("You already have a reservation at this time")

        if await uow.spaces.lock_status(space_id) != SpaceStatus.AVAILABLE:
            raise ConflictError("Space is not available for booking")
        if await uow.reservations.find_overlapping_for_space(space_id, starts_at, ends_at):
            raise ConflictError("Space is already booked at this time")

        reservation = await _insert_with_unique_code(
            uow.reservations,
            policy=policy,
            user_id=requester_id,
            space_id=space_id,
            starts_at=starts_at,
            ends_at=ends_at,
            purpose=request.purpose,
            now=now,
        )

    logger.info(
        "reservation %s confirmed: space=%s user=%s code=%s",
        reservation.id,
        reservation.space_id,
        reservation.user_id,
        reservation.confirmation_code,
    )
    enriched = await _load_enriched(uow, reservation)
    _notify(notifier.booking_confirmed, reservation.id)
    return enriched


async def _insert_with_unique_code(
    reservations: ReservationRepository,
    *,
    policy: BookingPolicy,
    **fields: Any,
) -> Reservation:
    async def insert(code: str) -> Reservation:
        return await reservations.create(confirmation_code=code, **fields)

    return await claim_confirmation_code(
        reservations.confirmation_code_exists, insert, attempts=policy.confirmation_code_attempts
    )


async def cancel_reservation(
    uow: BookingUnitOfWork,
    notifier: ReservationNotifier,
    *,
    reservation_id: int,
    requester: Requester,
    reason: Any = None,
    policy: BookingPolicy,
    now: datetime | None = None,
) -> Reservation:
    now = now or utc_now_naive()
    resolved_reason = resolve_cancellation_reason(reason, elevated=requester.is_elevated)
    async with uow.begin():
        reservation = await uow.reservations.get_for_update(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        if reservation.user_id != requester.user_id and not requester.is_elevated:
            raise ForbiddenError("You do not have permission to cancel this reservation")

        ensure_cancellable(
            reservation.status,
            reservation.starts_at,
            now=now,
            grace_minutes=policy.cancellation_grace_minutes,
        )
        updated = await uow.reservations.update_status(
            reservation,
            status=ReservationStatus.CANCELLED,
            reason=resolved_reason,
            now=now,
        )

    logger.info("reservation %s cancelled by user %s (%s)", updated.id, requester.user_id, resolved_reason)
    _notify(notifier.booking_cancelled, updated.id)
    return updated


async def get_reservation(
    uow: BookingUnitOfWork,
    *,
    reservation_id: int,
    requester: Requester,
) -> EnrichedReservation:
    async with uow.begin():
        enriched = await uow.reservations.get_with_space_details(reservation_id)
    if enriched is None:
        raise NotFoundError("Reservation not found")
    if enriched.reservation.user_id != requester.user_id and not requester.is_elevated:
        raise ForbiddenError("You do not have permission to view this reservation")
    return enriched


async def list_user_reservations(
    uow: BookingUnitOfWork,
    *,
    user_id: int,
    kind: HistoryKind | None = None,
    status: ReservationStatus | None = None,
    page: int = 1,
    limit: int = 20,
    now: datetime | None = None,
) -> ReservationHistory:
    now = now or utc_now_naive()
    page = max(page, 1)
    offset = (page - 1) * limit
    repo = uow.reservations
    async with uow.begin():
        upcoming: list[EnrichedReservation] = []
        past: list[EnrichedReservation] = []
        if kind in (None, "upcoming"):
            upcoming = await repo.list_by_user(
                user_id, now=now, kind="upcoming", status=status, limit=limit, offset=offset
            )
        if kind in (None, "past"):
            past = await repo.list_by_user(user_id, now=now, kind="past", status=status, limit=limit, offset=offset)
        statistics = ReservationStatistics(
            total=await repo.count_by_user(user_id, now=now),
            upcoming=await repo.count_by_user(user_id, now=now, kind="upcoming"),
            past=await repo.count_by_user(user_id, now=now, kind="past"),
            cancelled=await repo.count_by_user(user_id, now=now, status=ReservationStatus.CANCELLED),
        )
    return ReservationHistory(statistics=statistics, page=page, limit=limit, upcoming=upcoming, past=past)


async def _load_enriched(uow: BookingUnitOfWork, reservation: Reservation) -> EnrichedReservation:
    """Post-commit read. A failure here must not undo or hide the committed booking."""
    try:
        async with uow.begin():
            enriched = await uow.reservations.get_with_space_details(reservation.id)
    except Exception:
        logger.exception("failed to load space details for reservation %s", reservation.id)
        enriched = None
    return enriched or EnrichedReservation(reservation=reservation, space=None)


def _notify(schedule: Callable[[int], None], reservation_id: int) -> None:
    try:
        schedule(reservation_id)
    except Exception:
        logger.exception("failed to schedule notification for reservation %s", reservation_id)
