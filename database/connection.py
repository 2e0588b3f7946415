# database/connection.py
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.utils import env

engine: Optional[AsyncEngine] = None
async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """URL подключения из окружения. По умолчанию локальный SQLite-файл."""
    return env("DATABASE_URL", "sqlite+aiosqlite:///data/lots.db")


def init_engine(url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Создаёт engine и фабрику сессий. Повторный вызов пересоздаёт их (нужно тестам)."""
    global engine, async_session_factory

    url = url or get_database_url()
    kwargs = {"echo": env("DB_ECHO", "false").lower() == "true"}
    if url.startswith("sqlite") and ":memory:" in url:
        # одна in-memory БД на все сессии
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    elif not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)

    engine = create_async_engine(url, **kwargs)
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return async_session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if async_session_factory is None:
        return init_engine()
    return async_session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Контекстный менеджер для работы с сессией."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Создаёт таблицы (для разработки и тестов). В проде лучше использовать alembic."""
    from database.models import Base
    get_session_factory()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Закрывает пул соединений."""
    global engine, async_session_factory
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session_factory = None
