"""Блокировки аукционов.

Все изменения аукциона (ставка, отмена, закрытие) выполняются под
взаимоисключающей блокировкой по id аукциона. Разные аукционы друг друга
не блокируют. Ожидание ограничено таймаутом, после которого запрос
завершается ошибкой Busy и может быть повторен.
"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Hashable, Optional

from config import settings
from services.errors import Busy

logger = logging.getLogger(__name__)


class LockRegistry:
    """Набор asyncio.Lock по ключу; неиспользуемые блокировки удаляются сборщиком мусора"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable, timeout: Optional[float] = None):
        """Захватить блокировку по ключу, ожидая не дольше timeout секунд"""
        if timeout is None:
            timeout = settings.AUCTION_LOCK_TIMEOUT_SECONDS
        lock = self.get(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Не удалось захватить блокировку {key!r} за {timeout} с")
            raise Busy()
        try:
            yield lock
        finally:
            lock.release()


auction_locks = LockRegistry()
product_locks = LockRegistry()
