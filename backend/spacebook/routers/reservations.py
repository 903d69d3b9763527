import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_booking_policy, get_current_requester, get_notifier, get_session
from ..domain.errors import (
    BookingError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StoreBusyError,
    ValidationFailedError,
)
from ..domain.services import BookingPolicy, BookingRequest
from ..domain.snapshots import Requester
from ..infrastructure.uow import SqlAlchemyUnitOfWork
from ..models import ReservationStatus
from ..notifications.notifier import BookingNotifier
from ..schemas import ReservationCancel, ReservationCreate, ReservationHistoryRead, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["reservations"])

_STATUS_BY_ERROR: list[tuple[type[BookingError], int]] = [
    (ValidationFailedError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StoreBusyError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _http_error(exc: BookingError) -> HTTPException:
    status_code = next(
        (code for error_cls, code in _STATUS_BY_ERROR if isinstance(exc, error_cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    headers = {"Retry-After": "1"} if isinstance(exc, StoreBusyError) else None
    detail = {
        "code": exc.code,
        "message": exc.message,
        "errors": list(getattr(exc, "errors", [exc.message])),
    }
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


def _emit_audit(**fields: Any) -> None:
    # The reservation is already committed; a broken audit sink must not fail the request.
    try:
        emit_audit_log(**fields)
    except RuntimeError:
        logger.exception("audit log emission failed for reservation %s", fields.get("reservation_id"))


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    requester: Requester = Depends(get_current_requester),
    notifier: BookingNotifier = Depends(get_notifier),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    uow = SqlAlchemyUnitOfWork(session)
    request = BookingRequest(
        space_id=payload.space_id,
        starts_at=payload.starts_at,
        ends_at=payload.ends_at,
        purpose=payload.purpose,
    )
    try:
        enriched = await reservation_usecase.create_reservation(
            uow,
            notifier,
            requester_id=requester.user_id,
            request=request,
            policy=policy,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc

    reservation = enriched.reservation
    _emit_audit(
        action="reservation.created",
        initiator="user",
        reservation_id=reservation.id,
        space_id=reservation.space_id,
        user_id=reservation.user_id,
        actor_id=requester.user_id,
        status_from=None,
        status_to=reservation.status,
        confirmation_code=reservation.confirmation_code,
        starts_at=reservation.starts_at,
        ends_at=reservation.ends_at,
    )
    return ReservationRead.from_enriched(enriched, tz=policy.timezone)


@router.get("/me/reservations", response_model=ReservationHistoryRead)
async def list_my_reservations(
    kind: Optional[Literal["upcoming", "past"]] = Query(default=None, alias="type"),
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    requester: Requester = Depends(get_current_requester),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationHistoryRead:
    history = await reservation_usecase.list_user_reservations(
        SqlAlchemyUnitOfWork(session),
        user_id=requester.user_id,
        kind=kind,
        status=status_filter,
        page=page,
        limit=limit,
    )
    return ReservationHistoryRead.from_history(history, tz=policy.timezone)


@router.get("/reservations/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    requester: Requester = Depends(get_current_requester),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    try:
        enriched = await reservation_usecase.get_reservation(
            SqlAlchemyUnitOfWork(session),
            reservation_id=reservation_id,
            requester=requester,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc
    return ReservationRead.from_enriched(enriched, tz=policy.timezone)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    requester: Requester = Depends(get_current_requester),
    notifier: BookingNotifier = Depends(get_notifier),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    uow = SqlAlchemyUnitOfWork(session)
    try:
        cancelled = await reservation_usecase.cancel_reservation(
            uow,
            notifier,
            reservation_id=reservation_id,
            requester=requester,
            reason=payload.reason if payload else None,
            policy=policy,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc

    _emit_audit(
        action="reservation.cancelled",
        initiator="staff" if cancelled.user_id != requester.user_id else "user",
        reservation_id=cancelled.id,
        space_id=cancelled.space_id,
        user_id=cancelled.user_id,
        actor_id=requester.user_id,
        status_from=ReservationStatus.CONFIRMED,
        status_to=cancelled.status,
        confirmation_code=cancelled.confirmation_code,
        reason=cancelled.cancellation_reason,
    )
    return ReservationRead.from_db(reservation=cancelled, tz=policy.timezone)
