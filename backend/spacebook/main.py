import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from .config import get_settings
from .database import async_session, engine
from .infrastructure.uow import open_unit_of_work
from .notifications.dispatcher import NotificationDispatcher
from .notifications.mailer import build_email_sender
from .notifications.notifier import BookingNotifier
from .routers import reservations
from .utils.request_id import REQUEST_ID_HEADER, resolve_request_id, set_request_id

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    dispatcher = NotificationDispatcher()
    policy = settings.booking_policy()
    app.state.notifier = BookingNotifier(
        dispatcher,
        build_email_sender(settings),
        lambda: open_unit_of_work(async_session),
        tz=policy.timezone,
        grace_minutes=policy.cancellation_grace_minutes,
    )
    logger.info("notifications running in %s mode", settings.notification_mode)
    try:
        yield
    finally:
        await dispatcher.aclose()
        await engine.dispose()


app = FastAPI(title="Study Space Booking API", lifespan=lifespan)


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(reservations.router)
