from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    pool_pre_ping=True,
    pool_recycle=3600,
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def lock_wait_statement(dialect_name: str, seconds: int) -> str | None:
    """Per-connection statement bounding how long a locking read may wait."""
    if dialect_name == "mysql":
        return f"SET SESSION innodb_lock_wait_timeout = {int(seconds)}"
    if dialect_name == "postgresql":
        return f"SET lock_timeout = '{int(seconds)}s'"
    return None


@event.listens_for(engine.sync_engine, "connect")
def _apply_lock_wait_timeout(dbapi_connection: Any, connection_record: Any) -> None:
    stmt = lock_wait_statement(engine.dialect.name, settings.lock_wait_timeout_seconds)
    if stmt is None:
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(stmt)
    finally:
        cursor.close()
