"""Планировщик задач для завершения аукционов"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from services.auction import close_due_auction, get_due_auction_ids
from services.clock import utcnow
from services.errors import Busy

logger = logging.getLogger(__name__)

_task: Optional[asyncio.Task] = None


def _session_maker(session_maker: Optional[async_sessionmaker]) -> async_sessionmaker:
    if session_maker is not None:
        return session_maker
    from database.connection import async_session_maker
    return async_session_maker


async def check_and_close_auctions(
    session_maker: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
) -> int:
    """Проверить и завершить истекшие аукционы.

    Каждый аукцион закрывается в своей сессии: ошибка одного аукциона
    логируется и не прерывает обработку остальных. Возвращает число
    закрытых аукционов.
    """
    session_maker = _session_maker(session_maker)
    now = now or utcnow()

    async with session_maker() as session:
        due_ids = await get_due_auction_ids(
            session, now=now, limit=settings.AUCTION_SCHEDULER_BATCH_SIZE
        )

    if due_ids:
        logger.info(f"Истекших аукционов к закрытию: {len(due_ids)}")

    closed = 0
    for auction_id in due_ids:
        try:
            async with session_maker() as session:
                if await close_due_auction(session, auction_id, now=now):
                    closed += 1
        except Busy:
            # Аукцион занят ставкой или другим запуском - вернемся на следующем шаге
            logger.warning(f"Аукцион {auction_id} занят, закрытие отложено")
        except Exception as e:
            logger.error(f"Ошибка при завершении аукциона {auction_id}: {e!r}")
    return closed


async def scheduler_loop(
    session_maker: Optional[async_sessionmaker] = None,
    interval: Optional[float] = None,
):
    """Основной цикл планировщика"""
    interval = interval or settings.AUCTION_SCHEDULER_INTERVAL_SECONDS
    while True:
        try:
            await check_and_close_auctions(session_maker)
        except Exception as e:
            logger.error(f"Ошибка в планировщике: {e!r}")

        await asyncio.sleep(interval)


def start_scheduler(
    session_maker: Optional[async_sessionmaker] = None,
    interval: Optional[float] = None,
) -> asyncio.Task:
    """Запустить планировщик"""
    global _task
    _task = asyncio.create_task(scheduler_loop(session_maker, interval))
    logger.info("Планировщик аукционов запущен")
    return _task


async def stop_scheduler():
    """Остановить планировщик"""
    global _task
    if _task is None:
        return
    _task.cancel()
    try:
        await _task
    except asyncio.CancelledError:
        pass
    _task = None
    logger.info("Планировщик аукционов остановлен")
