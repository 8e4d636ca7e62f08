from collections.abc import Generator
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings

settings = get_settings()

engine = None
if settings.database_url:
    connect_args: dict[str, object] = {}

    if settings.database_url.startswith("sqlite"):
        # FastAPI runs sync DB work in a threadpool, so the sqlite connection
        # must be shareable across threads.
        connect_args = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)

    if settings.database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None


def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Current UTC time, naive when the record store is sqlite."""
    bind_url = get_settings().database_url or ""
    now = datetime.now(timezone.utc)
    if bind_url.startswith("sqlite"):
        return now.replace(tzinfo=None)
    return now


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a stored timestamp for comparisons against ``datetime.now(timezone.utc)``."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
