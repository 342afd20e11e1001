from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from analytics_engine.core.config import Settings


# All the models are "stored" in the Base class will be processed by the Engine
class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the process-wide engine and its bounded connection pool.

    The pool is sized once here and shared by every request and job in the
    process, so DB_POOL_SIZE + DB_MAX_OVERFLOW times the number of running
    processes must stay inside the database's connection budget.
    """
    url = make_url(settings.DATABASE_URL)

    # SQLite uses a static/singleton pool that doesn't accept sizing options
    if url.get_backend_name() == "sqlite":
        return create_async_engine(url, echo=settings.SQL_ECHO)

    return create_async_engine(
        url,
        echo=settings.SQL_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_pre_ping=True,
    )


# Talk to the DB through async sessions without refreshes after closed conn to avoid errors in async programming
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
