from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo

from ..models import CancellationReason, ReservationStatus
from ..utils.time import to_utc_naive, utc_naive_to_local
from .errors import ForbiddenError, ValidationFailedError
from .snapshots import SpaceSnapshot


@dataclass(frozen=True)
class BookingPolicy:
    max_active_reservations: int = 5
    max_days_ahead: int = 14
    min_duration_minutes: int = 60
    max_duration_minutes: int = 180
    purpose_max_length: int = 500
    cancellation_grace_minutes: int = 15
    confirmation_code_attempts: int = 10
    timezone: tzinfo = field(default_factory=lambda: ZoneInfo("Europe/Istanbul"))


@dataclass(frozen=True)
class BookingRequest:
    """Raw booking input. Values are checked, not trusted."""

    space_id: Any
    starts_at: Any
    ends_at: Any
    purpose: Any = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str]
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


def _parse_timestamp(value: Any, name: str, errors: list[str]) -> Optional[datetime]:
    """Return a UTC naive datetime, or record why the value is unusable."""
    if value is None or value == "":
        errors.append(f"{name} is required")
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            errors.append(f"Invalid {name} format (must be ISO 8601)")
            return None
    else:
        errors.append(f"Invalid {name} format (must be ISO 8601)")
        return None
    if parsed.tzinfo is None:
        errors.append(f"{name} must include a timezone offset")
        return None
    return to_utc_naive(parsed)


def check_booking_request(request: BookingRequest, *, policy: BookingPolicy, now: datetime) -> ValidationResult:
    """
    Stateless checks on a booking request. `now` is UTC naive.
    Every violated rule is reported; nothing short-circuits.
    """
    errors: list[str] = []

    space_id = request.space_id
    if isinstance(space_id, bool) or not isinstance(space_id, int) or space_id < 1:
        errors.append("Valid space_id is required")

    starts_at = _parse_timestamp(request.starts_at, "starts_at", errors)
    if starts_at is not None:
        if starts_at <= now:
            errors.append("starts_at must be in the future")
        if starts_at > now + timedelta(days=policy.max_days_ahead):
            errors.append(f"starts_at must be within {policy.max_days_ahead} days")

    ends_at = _parse_timestamp(request.ends_at, "ends_at", errors)
    if starts_at is not None and ends_at is not None:
        if ends_at <= starts_at:
            errors.append("ends_at must be after starts_at")
        duration_minutes = (ends_at - starts_at).total_seconds() / 60
        if duration_minutes < policy.min_duration_minutes:
            errors.append(f"Booking duration must be at least {policy.min_duration_minutes} minutes")
        if duration_minutes > policy.max_duration_minutes:
            errors.append(f"Booking duration must be at most {policy.max_duration_minutes} minutes")

    purpose = request.purpose
    if purpose is not None:
        if not isinstance(purpose, str):
            errors.append("purpose must be a string")
        elif len(purpose) > policy.purpose_max_length:
            errors.append(f"purpose must be at most {policy.purpose_max_length} characters")

    return ValidationResult(valid=not errors, errors=errors, starts_at=starts_at, ends_at=ends_at)


def check_operating_hours(snapshot: SpaceSnapshot, starts_at: datetime, ends_at: datetime, tz: tzinfo) -> None:
    """
    Reject windows outside the space's opening hours on the start's local calendar day.
    Saturday and Sunday use the weekend policy. Overnight windows are never admissible.
    """
    local_start = utc_naive_to_local(starts_at, tz)
    local_end = utc_naive_to_local(ends_at, tz)
    hours = snapshot.weekend_hours if local_start.weekday() >= 5 else snapshot.weekday_hours
    if hours is None:
        raise ValidationFailedError("Space operating hours not configured")

    opens = local_start.replace(hour=hours.opens_at.hour, minute=hours.opens_at.minute, second=0, microsecond=0)
    closes = local_start.replace(hour=hours.closes_at.hour, minute=hours.closes_at.minute, second=0, microsecond=0)
    if local_start < opens:
        raise ValidationFailedError(f"Booking must start after {hours.opens_at:%H:%M}")
    if local_end > closes:
        raise ValidationFailedError(f"Booking must end before {hours.closes_at:%H:%M}")


def check_quota(active_count: int, ceiling: int) -> None:
    if active_count >= ceiling:
        raise ForbiddenError(f"Maximum {ceiling} concurrent bookings allowed")


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap: touching boundaries do not overlap."""
    return start_a < end_b and start_b < end_a


def ensure_cancellable(
    status: ReservationStatus,
    starts_at: datetime,
    *,
    now: datetime,
    grace_minutes: int,
) -> None:
    if status != ReservationStatus.CONFIRMED:
        raise ValidationFailedError("Only confirmed reservations can be cancelled")
    if starts_at <= now:
        raise ValidationFailedError("Cannot cancel past reservations")
    if now >= starts_at - timedelta(minutes=grace_minutes):
        raise ValidationFailedError(f"Cannot cancel reservation within {grace_minutes} minutes of start time")


def resolve_cancellation_reason(reason: Any, *, elevated: bool) -> CancellationReason:
    if reason is None or reason == "":
        return CancellationReason.ADMINISTRATIVE if elevated else CancellationReason.USER_REQUESTED
    try:
        return CancellationReason(reason)
    except ValueError:
        allowed = ", ".join(r.value for r in CancellationReason)
        raise ValidationFailedError(f"reason must be one of: {allowed}") from None
