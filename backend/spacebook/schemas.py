from datetime import datetime, time, tzinfo
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.snapshots import EnrichedReservation, OperatingHours, SpaceDetails
from .models import CancellationReason, Reservation, ReservationStatus
from .usecases.reservations import ReservationHistory
from .utils.time import utc_naive_to_local


class ReservationCreate(BaseModel):
    # Raw values; the booking validator reports every malformed or missing field at once.
    space_id: Any = None
    starts_at: Any = None
    ends_at: Any = None
    purpose: Any = None


class ReservationCancel(BaseModel):
    reason: Optional[str] = Field(default=None, description="User_Requested, Administrative or Space_Maintenance")


class OperatingHoursRead(BaseModel):
    start: str
    end: str

    @classmethod
    def from_domain(cls, hours: Optional[OperatingHours]) -> Optional["OperatingHoursRead"]:
        if hours is None:
            return None
        return cls(start=_hhmm(hours.opens_at), end=_hhmm(hours.closes_at))


class SpaceRead(BaseModel):
    space_id: int
    name: str
    room_number: Optional[str]
    floor: Optional[int]
    capacity: int
    room_type: Optional[str]
    noise_level: Optional[str]
    amenities: list[str]
    accessibility_features: list[str]
    weekday_hours: Optional[OperatingHoursRead]
    weekend_hours: Optional[OperatingHoursRead]
    building_id: int
    building_name: str
    campus_id: int
    campus_name: str

    @classmethod
    def from_domain(cls, space: SpaceDetails) -> "SpaceRead":
        return cls(
            space_id=space.space_id,
            name=space.name,
            room_number=space.room_number,
            floor=space.floor,
            capacity=space.capacity,
            room_type=space.room_type,
            noise_level=space.noise_level,
            amenities=space.amenities,
            accessibility_features=space.accessibility_features,
            weekday_hours=OperatingHoursRead.from_domain(space.weekday_hours),
            weekend_hours=OperatingHoursRead.from_domain(space.weekend_hours),
            building_id=space.building_id,
            building_name=space.building_name,
            campus_id=space.campus_id,
            campus_name=space.campus_name,
        )


class ReservationRead(BaseModel):
    reservation_id: int
    user_id: int
    space_id: int
    starts_at: datetime
    ends_at: datetime
    duration_minutes: int
    purpose: Optional[str]
    status: ReservationStatus
    confirmation_code: str
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[CancellationReason] = None
    space: Optional[SpaceRead] = None

    @field_serializer("starts_at", "ends_at", "created_at", "cancelled_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_db(
        cls,
        *,
        reservation: Reservation,
        tz: tzinfo,
        space: Optional[SpaceDetails] = None,
    ) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            space_id=reservation.space_id,
            starts_at=utc_naive_to_local(reservation.starts_at, tz),
            ends_at=utc_naive_to_local(reservation.ends_at, tz),
            duration_minutes=reservation.duration_minutes,
            purpose=reservation.purpose,
            status=reservation.status,
            confirmation_code=reservation.confirmation_code,
            created_at=utc_naive_to_local(reservation.created_at, tz),
            cancelled_at=utc_naive_to_local(reservation.cancelled_at, tz) if reservation.cancelled_at else None,
            cancellation_reason=reservation.cancellation_reason,
            space=SpaceRead.from_domain(space) if space is not None else None,
        )

    @classmethod
    def from_enriched(cls, enriched: EnrichedReservation, *, tz: tzinfo) -> "ReservationRead":
        return cls.from_db(reservation=enriched.reservation, tz=tz, space=enriched.space)


class ReservationStatisticsRead(BaseModel):
    total_reservations: int
    upcoming_count: int
    past_count: int
    cancelled_count: int


class PaginationRead(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ReservationHistoryRead(BaseModel):
    upcoming: list[ReservationRead]
    past: list[ReservationRead]
    statistics: ReservationStatisticsRead
    pagination: PaginationRead

    @classmethod
    def from_history(cls, history: ReservationHistory, *, tz: tzinfo) -> "ReservationHistoryRead":
        stats = history.statistics
        return cls(
            upcoming=[ReservationRead.from_enriched(item, tz=tz) for item in history.upcoming],
            past=[ReservationRead.from_enriched(item, tz=tz) for item in history.past],
            statistics=ReservationStatisticsRead(
                total_reservations=stats.total,
                upcoming_count=stats.upcoming,
                past_count=stats.past,
                cancelled_count=stats.cancelled,
            ),
            pagination=PaginationRead(
                page=history.page,
                limit=history.limit,
                total=stats.total,
                total_pages=history.total_pages,
            ),
        )


def _hhmm(value: time) -> str:
    return f"{value:%H:%M}"
