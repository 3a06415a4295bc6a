from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings


def build_engine(database_url: str) -> AsyncEngine:
    """Engine for the booking database. Tests and scripts pass their own URL."""
    return create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,  # Verify connections before using them
        pool_recycle=3600,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


settings = get_settings()
engine = build_engine(settings.database_url)
AsyncSessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    pass

