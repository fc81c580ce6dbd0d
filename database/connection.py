"""Подключение к базе данных"""
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from config import settings

# Движок общий для API и планировщика; pre_ping отбрасывает оборванные соединения пула
engine = create_async_engine(
    settings.database_url,
    echo=settings.LOG_LEVEL == "DEBUG",
    pool_pre_ping=True,
)

# Объекты остаются доступны после commit: ответы API строятся после фиксации
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_session() -> AsyncIterator[AsyncSession]:
    """Сессия на один HTTP-запрос"""
    async with async_session_maker() as session:
        yield session


async def init_models(bind=None):
    """Создать таблицы, если их еще нет"""
    # Импорт регистрирует модели в метаданных
    import database.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
