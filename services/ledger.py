"""Журнал ставок.

Только добавление: записанная ставка не изменяется и не удаляется.
Журнал служит аудитом и позволяет восстановить текущую ставку, число ставок
и лидера аукциона повторным проходом (replay).
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database.models.auction import Auction
from database.models.bid import Bid
from services.errors import IntegrityViolation, NotFound, StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReplay:
    """Состояние аукциона, восстановленное по журналу"""
    current_bid: Optional[Decimal]
    bid_count: int
    highest_bidder_id: Optional[int]
    # Каждая следующая ставка выше предыдущей не меньше чем на шаг
    # (кроме ставки "купить сейчас", урезанной до цены выкупа)
    monotonic: bool = True

    def matches(self, auction: Auction) -> bool:
        return (
            self.monotonic
            and self.current_bid == auction.current_bid
            and self.bid_count == auction.bid_count
            and self.highest_bidder_id == auction.highest_bidder_id
        )


async def append_bid(session: AsyncSession, bid: Bid) -> Bid:
    """Добавить ставку в журнал в рамках текущей транзакции"""
    session.add(bid)
    try:
        await session.flush()
    except SQLAlchemyError as e:
        logger.error(f"Ошибка записи ставки в журнал аукциона {bid.auction_id}: {e}")
        raise StorageUnavailable() from e
    return bid


async def list_for_auction(
    session: AsyncSession,
    auction_id: int,
    newest_first: bool = False,
    limit: Optional[int] = None,
) -> List[Bid]:
    """Ставки аукциона по времени (для "последних ставок" - в обратном порядке)"""
    if newest_first:
        order = (Bid.placed_at.desc(), Bid.id.desc())
    else:
        order = (Bid.placed_at.asc(), Bid.id.asc())
    query = select(Bid).where(Bid.auction_id == auction_id).order_by(*order)
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_for_bidder(
    session: AsyncSession,
    bidder_id: int,
    limit: int = 50,
) -> List[Bid]:
    """Ставки пользователя, сначала новые"""
    result = await session.execute(
        select(Bid)
        .where(Bid.bidder_id == bidder_id)
        .order_by(Bid.placed_at.desc(), Bid.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def replay(
    session: AsyncSession,
    auction_id: int,
    min_increment: Optional[Decimal] = None,
) -> LedgerReplay:
    """Восстановить состояние аукциона по журналу ставок"""
    if min_increment is None:
        min_increment = settings.AUCTION_MIN_INCREMENT
    current_bid = None
    highest_bidder_id = None
    bid_count = 0
    monotonic = True
    for bid in await list_for_auction(session, auction_id):
        if current_bid is not None:
            step = bid.amount - current_bid
            if step <= 0 or (step < min_increment and not bid.is_buy_now):
                monotonic = False
        current_bid = bid.amount
        highest_bidder_id = bid.bidder_id
        bid_count += 1
    return LedgerReplay(
        current_bid=current_bid,
        bid_count=bid_count,
        highest_bidder_id=highest_bidder_id,
        monotonic=monotonic,
    )


async def verify(session: AsyncSession, auction: Auction) -> LedgerReplay:
    """Сверить аукцион с журналом.

    При расхождении аукцион замораживается (integrity_hold), в лог уходит
    critical и выбрасывается IntegrityViolation. Автоматически состояние не
    исправляется.
    """
    replayed = await replay(session, auction.id)
    if replayed.matches(auction):
        return replayed

    logger.critical(
        f"Расхождение журнала ставок для аукциона {auction.id}: "
        f"в аукционе current_bid={auction.current_bid}, bid_count={auction.bid_count}, "
        f"highest_bidder_id={auction.highest_bidder_id}; "
        f"по журналу current_bid={replayed.current_bid}, bid_count={replayed.bid_count}, "
        f"highest_bidder_id={replayed.highest_bidder_id}, monotonic={replayed.monotonic}"
    )
    await _set_integrity_hold(session, auction.id, True)
    auction.integrity_hold = True
    raise IntegrityViolation()


async def check_auction(session: AsyncSession, auction_id: int) -> LedgerReplay:
    """Проверка согласованности по id аукциона"""
    result = await session.execute(
        select(Auction)
        .where(Auction.id == auction_id)
        .execution_options(populate_existing=True)
    )
    auction = result.scalar_one_or_none()
    if not auction:
        raise NotFound("Аукцион не найден")
    return await verify(session, auction)


async def _set_integrity_hold(session: AsyncSession, auction_id: int, value: bool):
    try:
        await session.execute(
            update(Auction)
            .where(Auction.id == auction_id)
            .values(integrity_hold=value)
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Не удалось изменить integrity_hold аукциона {auction_id}: {e}")
        raise StorageUnavailable() from e
