"""Уведомления участников аукционов.

Движок только формирует намерения (outbid / won / ended) и передает их
отправителю после фиксации транзакции и снятия блокировки. Доставка идет
в фоне: ставка не ждет отправки, ошибки логируются, повторная доставка
допустима.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Union

from aiogram import Bot

from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuctionOutbid:
    """Ставку пользователя перебили"""
    auction_id: int
    previous_bidder_id: int


@dataclass(frozen=True)
class AuctionWon:
    """Пользователь выиграл аукцион"""
    auction_id: int
    winner_id: int


@dataclass(frozen=True)
class AuctionEnded:
    """Аукцион завершен (для продавца)"""
    auction_id: int
    outcome: str
    seller_id: int


Intent = Union[AuctionOutbid, AuctionWon, AuctionEnded]


def recipient_of(intent: Intent) -> int:
    """Кому адресовано уведомление"""
    if isinstance(intent, AuctionOutbid):
        return intent.previous_bidder_id
    if isinstance(intent, AuctionWon):
        return intent.winner_id
    return intent.seller_id


_OUTCOME_TEXT = {
    "sold": "продан",
    "reserve_not_met": "завершен: резервная цена не достигнута",
    "cancelled": "завершен без продажи",
}


def format_intent(intent: Intent) -> str:
    """Текст уведомления"""
    if isinstance(intent, AuctionOutbid):
        return (
            f"⚡️ Вашу ставку перебили!\n\n"
            f"Аукцион №{intent.auction_id}. Сделайте новую ставку, чтобы остаться в лидерах."
        )
    if isinstance(intent, AuctionWon):
        return f"🎉 Поздравляем! Вы выиграли аукцион №{intent.auction_id}."
    outcome = _OUTCOME_TEXT.get(intent.outcome, intent.outcome)
    return f"🔔 Ваш аукцион №{intent.auction_id} {outcome}."


class NotificationEmitter:
    """Отправитель уведомлений: по умолчанию только пишет в лог"""

    def __init__(self):
        self._pending: Set[asyncio.Task] = set()

    async def send(self, intent: Intent) -> None:
        logger.info(f"Уведомление для {recipient_of(intent)}: {intent}")

    async def deliver(self, intents: Iterable[Intent]) -> None:
        """Доставить уведомления по очереди; ошибка одного не мешает остальным"""
        for intent in intents:
            try:
                await self.send(intent)
            except Exception as e:
                logger.error(f"Не удалось доставить уведомление {intent}: {e!r}")

    def dispatch(self, intents: Iterable[Intent]) -> Optional[asyncio.Task]:
        """Запустить доставку в фоне, не дожидаясь ее"""
        intents = list(intents)
        if not intents:
            return None
        task = asyncio.create_task(self.deliver(intents))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Дождаться всех отправок в фоне"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class TelegramNotificationEmitter(NotificationEmitter):
    """Доставка через Telegram: id пользователя используется как chat_id"""

    def __init__(
        self,
        bot: Bot,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        super().__init__()
        self.bot = bot
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
        self.retry_delay = settings.NOTIFICATION_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    async def send(self, intent: Intent) -> None:
        chat_id = recipient_of(intent)
        text = format_intent(intent)
        delay = self.retry_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.bot.send_message(chat_id=chat_id, text=text)
                return
            except Exception as e:
                if attempt == self.max_attempts:
                    raise
                logger.warning(
                    f"Ошибка отправки уведомления пользователю {chat_id} "
                    f"(попытка {attempt}/{self.max_attempts}): {e!r}"
                )
                await asyncio.sleep(delay)
                delay *= 2


_emitter: NotificationEmitter = NotificationEmitter()


def get_emitter() -> NotificationEmitter:
    return _emitter


def set_emitter(emitter: NotificationEmitter) -> None:
    """Установить отправителя уведомлений (при запуске приложения, в тестах)"""
    global _emitter
    _emitter = emitter


def emit(intents: List[Intent]) -> Optional[asyncio.Task]:
    """Передать намерения текущему отправителю"""
    return _emitter.dispatch(intents)
