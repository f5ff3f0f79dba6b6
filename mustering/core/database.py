# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""SQLAlchemy engine factory and optional singleton."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from mustering.core.config import settings


def create_db_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # SQLite pools do not accept size/overflow tuning.
        return create_engine(url, pool_pre_ping=True)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.POOL_SIZE,
        max_overflow=settings.MAX_OVERFLOW,
        pool_recycle=settings.POOL_RECYCLE,
    )


engine: Engine | None = (
    create_db_engine(settings.DATABASE_URL) if settings.DATABASE_URL else None
)
