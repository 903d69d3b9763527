from __future__ import annotations

import html
from datetime import tzinfo
from string import Template

from ..domain.snapshots import EnrichedReservation
from ..models import CancellationReason
from ..utils.time import utc_naive_to_local

_CONFIRMATION = Template(
    """
<h1>Booking Confirmed</h1>
<p>Hello <strong>$full_name</strong>,</p>
<p>Your study space booking has been confirmed. Here are your booking details:</p>
<p>Confirmation number: <strong>$code</strong></p>
<ul>
  <li><strong>Space:</strong> $space</li>
  <li><strong>Location:</strong> $location</li>
  <li><strong>Date:</strong> $date</li>
  <li><strong>Time:</strong> $start - $end ($duration minutes)</li>
  <li><strong>Purpose:</strong> $purpose</li>
</ul>
<p>Please cancel at least $grace minutes before the start time if you cannot attend.</p>
"""
)

_CANCELLATION = Template(
    """
<h1>Booking Cancelled</h1>
<p>Hello <strong>$full_name</strong>,</p>
<p>Your booking has been cancelled. Here are the details:</p>
<p>Confirmation number: <strong>$code</strong></p>
<ul>
  <li><strong>Space:</strong> $space</li>
  <li><strong>Date:</strong> $date</li>
  <li><strong>Time:</strong> $start - $end</li>
</ul>
<p>$reason_text</p>
"""
)

_REASON_TEXT = {
    CancellationReason.USER_REQUESTED: "You requested to cancel this booking.",
    CancellationReason.ADMINISTRATIVE: "This booking was cancelled by an administrator.",
    CancellationReason.SPACE_MAINTENANCE: "This booking was cancelled due to space maintenance.",
}
_DEFAULT_REASON_TEXT = "This booking has been cancelled."


def _common(enriched: EnrichedReservation, full_name: str, tz: tzinfo) -> dict[str, str]:
    res = enriched.reservation
    space = enriched.space
    start = utc_naive_to_local(res.starts_at, tz)
    end = utc_naive_to_local(res.ends_at, tz)
    if space is None:
        space_label = f"Space #{res.space_id}"
        location = ""
    else:
        space_label = space.name if not space.room_number else f"{space.name} ({space.room_number})"
        location = f"{space.building_name}, {space.campus_name}"
    values = {
        "full_name": full_name,
        "code": res.confirmation_code,
        "space": space_label,
        "location": location,
        "date": f"{start:%A, %d %B %Y}",
        "start": f"{start:%H:%M}",
        "end": f"{end:%H:%M}",
        "duration": str(res.duration_minutes),
        "purpose": res.purpose or "-",
    }
    return {key: html.escape(value) for key, value in values.items()}


def render_confirmation(
    enriched: EnrichedReservation,
    *,
    full_name: str,
    tz: tzinfo,
    grace_minutes: int,
) -> tuple[str, str]:
    values = _common(enriched, full_name, tz)
    subject = f"Booking Confirmed - {enriched.reservation.confirmation_code}"
    return subject, _CONFIRMATION.substitute(values, grace=grace_minutes)


def render_cancellation(enriched: EnrichedReservation, *, full_name: str, tz: tzinfo) -> tuple[str, str]:
    values = _common(enriched, full_name, tz)
    reason = enriched.reservation.cancellation_reason
    reason_text = _REASON_TEXT.get(reason, _DEFAULT_REASON_TEXT) if reason else _DEFAULT_REASON_TEXT
    subject = f"Booking Cancelled - {enriched.reservation.confirmation_code}"
    return subject, _CANCELLATION.substitute(values, reason_text=reason_text)
