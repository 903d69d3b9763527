import asyncio
import logging

import pytest
from spacebook.notifications.dispatcher import NotificationDispatcher


@pytest.mark.asyncio
async def test_dispatch_runs_without_blocking_caller() -> None:
    dispatcher = NotificationDispatcher()
    started = asyncio.Event()
    release = asyncio.Event()

    async def job() -> None:
        started.set()
        await release.wait()

    task = dispatcher.dispatch("job", job())
    assert task is not None
    await started.wait()
    assert dispatcher.pending == 1

    release.set()
    await dispatcher.drain()
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_failed_notification_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    dispatcher = NotificationDispatcher()

    async def boom() -> None:
        raise RuntimeError("smtp down")

    with caplog.at_level(logging.ERROR, logger="spacebook.notifications.dispatcher"):
        dispatcher.dispatch("booking-confirmed-7", boom())
        await dispatcher.drain()

    assert dispatcher.pending == 0
    assert "notification booking-confirmed-7 failed" in caplog.text


@pytest.mark.asyncio
async def test_aclose_cancels_tasks_past_timeout() -> None:
    dispatcher = NotificationDispatcher()
    cancelled = asyncio.Event()

    async def slow() -> None:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    dispatcher.dispatch("slow", slow())
    await asyncio.sleep(0)
    await dispatcher.aclose(timeout=0.01)

    assert cancelled.is_set()
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_dispatch_after_close_drops_notification() -> None:
    dispatcher = NotificationDispatcher()
    await dispatcher.aclose()
    ran = False

    async def job() -> None:
        nonlocal ran
        ran = True

    assert dispatcher.dispatch("late", job()) is None
    await asyncio.sleep(0)
    assert ran is False
