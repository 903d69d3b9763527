from __future__ import annotations

import logging
from datetime import tzinfo
from typing import AsyncContextManager, Callable

from ..domain.repositories import BookingUnitOfWork
from ..domain.snapshots import EnrichedReservation
from .dispatcher import NotificationDispatcher
from .mailer import EmailSender
from .templates import render_cancellation, render_confirmation

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], AsyncContextManager[BookingUnitOfWork]]


class BookingNotifier:
    """Schedules booking emails on the dispatcher. Each email loads its own data in its own session."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        sender: EmailSender,
        uow_factory: UnitOfWorkFactory,
        *,
        tz: tzinfo,
        grace_minutes: int,
    ) -> None:
        self.dispatcher = dispatcher
        self.sender = sender
        self.uow_factory = uow_factory
        self.tz = tz
        self.grace_minutes = grace_minutes

    def booking_confirmed(self, reservation_id: int) -> None:
        self.dispatcher.dispatch(f"booking-confirmed-{reservation_id}", self._send(reservation_id, cancelled=False))

    def booking_cancelled(self, reservation_id: int) -> None:
        self.dispatcher.dispatch(f"booking-cancelled-{reservation_id}", self._send(reservation_id, cancelled=True))

    async def _send(self, reservation_id: int, *, cancelled: bool) -> None:
        async with self.uow_factory() as uow:
            async with uow.begin():
                enriched = await uow.reservations.get_with_space_details(reservation_id)
                recipient = None
                if enriched is not None:
                    recipient = await uow.requesters.get_recipient(enriched.reservation.user_id)
        if enriched is None or recipient is None:
            logger.warning("skipping notification for reservation %s: data not found", reservation_id)
            return
        if not recipient.wants_email:
            logger.debug("user %s opted out of email notifications", enriched.reservation.user_id)
            return

        subject, body = self._render(enriched, recipient.full_name, cancelled=cancelled)
        await self.sender.send(to=recipient.email, subject=subject, html=body)

    def _render(self, enriched: EnrichedReservation, full_name: str, *, cancelled: bool) -> tuple[str, str]:
        if cancelled:
            return render_cancellation(enriched, full_name=full_name, tz=self.tz)
        return render_confirmation(enriched, full_name=full_name, tz=self.tz, grace_minutes=self.grace_minutes)
