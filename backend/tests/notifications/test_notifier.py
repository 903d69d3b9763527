import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator
from zoneinfo import ZoneInfo

import pytest
from fakes import FakeUnitOfWork, InMemoryStore
from spacebook.domain.snapshots import EnrichedReservation
from spacebook.models import CancellationReason, Reservation, ReservationStatus
from spacebook.notifications.dispatcher import NotificationDispatcher
from spacebook.notifications.notifier import BookingNotifier
from spacebook.notifications.templates import render_cancellation, render_confirmation

TZ = ZoneInfo("Europe/Istanbul")


class RecordingSender:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    async def send(self, *, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append((to, subject, html))


def _notifier(store: InMemoryStore, sender: RecordingSender) -> tuple[BookingNotifier, NotificationDispatcher]:
    @asynccontextmanager
    async def open_uow() -> AsyncIterator[FakeUnitOfWork]:
        yield FakeUnitOfWork(store)

    dispatcher = NotificationDispatcher()
    return BookingNotifier(dispatcher, sender, open_uow, tz=TZ, grace_minutes=15), dispatcher


def _seed(store: InMemoryStore, user_id: int = 1) -> Reservation:
    return store.add_reservation(
        user_id=user_id,
        space_id=1,
        starts_at=datetime(2026, 3, 3, 10, 0),
        ends_at=datetime(2026, 3, 3, 12, 0),
        code="ABCDE12345",
    )


@pytest.mark.asyncio
async def test_confirmation_email_carries_booking_details(store: InMemoryStore) -> None:
    reservation = _seed(store)
    sender = RecordingSender()
    notifier, dispatcher = _notifier(store, sender)

    notifier.booking_confirmed(reservation.id)
    await dispatcher.drain()

    assert len(sender.sent) == 1
    to, subject, body = sender.sent[0]
    assert to == "user1@example.edu"
    assert subject == "Booking Confirmed - ABCDE12345"
    assert "Room 1 (B001)" in body
    assert "Library, Main Campus" in body
    assert "Tuesday, 03 March 2026" in body
    assert "13:00 - 15:00 (120 minutes)" in body
    assert "at least 15 minutes" in body


@pytest.mark.asyncio
async def test_cancellation_email_explains_reason(store: InMemoryStore) -> None:
    reservation = _seed(store)
    reservation.status = ReservationStatus.CANCELLED
    reservation.cancellation_reason = CancellationReason.SPACE_MAINTENANCE
    sender = RecordingSender()
    notifier, dispatcher = _notifier(store, sender)

    notifier.booking_cancelled(reservation.id)
    await dispatcher.drain()

    _, subject, body = sender.sent[0]
    assert subject == "Booking Cancelled - ABCDE12345"
    assert "cancelled due to space maintenance" in body


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("email_verified", "preferences"),
    [(False, None), (True, {"emailNotifications": False})],
)
async def test_no_email_for_unverified_or_opted_out_users(
    store: InMemoryStore, email_verified: bool, preferences: dict | None
) -> None:
    store.add_user(5, email_verified=email_verified, preferences=preferences)
    reservation = _seed(store, user_id=5)
    sender = RecordingSender()
    notifier, dispatcher = _notifier(store, sender)

    notifier.booking_confirmed(reservation.id)
    await dispatcher.drain()

    assert sender.sent == []


@pytest.mark.asyncio
async def test_missing_reservation_is_skipped(store: InMemoryStore, caplog: pytest.LogCaptureFixture) -> None:
    sender = RecordingSender()
    notifier, dispatcher = _notifier(store, sender)

    with caplog.at_level(logging.WARNING):
        notifier.booking_confirmed(404)
        await dispatcher.drain()

    assert sender.sent == []
    assert "skipping notification for reservation 404" in caplog.text


@pytest.mark.asyncio
async def test_delivery_failure_stays_inside_dispatcher(
    store: InMemoryStore, caplog: pytest.LogCaptureFixture
) -> None:
    reservation = _seed(store)
    notifier, dispatcher = _notifier(store, RecordingSender(fail=True))

    with caplog.at_level(logging.ERROR):
        notifier.booking_confirmed(reservation.id)
        await dispatcher.drain()

    assert f"notification booking-confirmed-{reservation.id} failed" in caplog.text


def test_templates_escape_user_supplied_text(store: InMemoryStore) -> None:
    reservation = _seed(store)
    reservation.purpose = "<script>alert(1)</script>"
    enriched = EnrichedReservation(reservation=reservation, space=None)

    _, body = render_confirmation(enriched, full_name="Ada <Admin>", tz=TZ, grace_minutes=15)
    assert "&lt;script&gt;" in body
    assert "Ada &lt;Admin&gt;" in body
    assert "Space #1" in body

    _, cancelled_body = render_cancellation(enriched, full_name="Ada", tz=TZ)
    assert "This booking has been cancelled." in cancelled_body
