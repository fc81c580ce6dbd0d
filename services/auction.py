"""Сервис для работы с аукционами.

Жизненный цикл аукциона: создание, прием ставок, отмена и закрытие по
истечении времени. Все изменения аукциона идут под блокировкой по его id
(services.locks) и блокировкой строки в базе; обновление
аукциона и запись ставки в журнал фиксируются одной транзакцией.
Уведомления и обновление каталога выполняются после снятия блокировки.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database.models.auction import Auction, AuctionStatus
from database.models.bid import Bid
from database.models.product import Product, ProductStatus
from services import ledger
from services.bid_validator import Accept, AuctionState, evaluate
from services.catalog import get_catalog
from services.clock import as_utc, utcnow
from services.errors import (
    AuctionError,
    AuctionNotActive,
    Busy,
    Forbidden,
    HasBids,
    IntegrityViolation,
    InvalidParameters,
    NotFound,
    StorageUnavailable,
)
from services.locks import auction_locks, product_locks
from services.notifications import AuctionEnded, AuctionOutbid, AuctionWon, Intent, emit

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Верхняя граница сумм: колонки Numeric(12, 2)
MAX_MONEY = Decimal(10) ** 10
# SQLSTATE lock_not_available: истек lock_timeout
LOCK_NOT_AVAILABLE = "55P03"

# Товар можно выставить на аукцион только из этих статусов.
# AUCTION допустим: активного аукциона по товару к этому моменту уже нет,
# значит статус в каталоге не успел обновиться после прошлого аукциона.
AUCTIONABLE_PRODUCT_STATUSES = frozenset({
    ProductStatus.ACTIVE.value,
    ProductStatus.DRAFT.value,
    ProductStatus.AUCTION.value,
})

# Статус товара после закрытия аукциона
PRODUCT_STATUS_AFTER_CLOSE = {
    AuctionStatus.SOLD.value: ProductStatus.SOLD.value,
    AuctionStatus.RESERVE_NOT_MET.value: ProductStatus.ACTIVE.value,
    AuctionStatus.CANCELLED.value: ProductStatus.ACTIVE.value,
}


@dataclass
class BidResult:
    """Результат принятой ставки"""
    auction: Auction
    bid: Bid


def to_money(value, field: str = "amount") -> Decimal:
    """Привести сумму к Decimal с точностью до копейки"""
    try:
        money = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidParameters(f"Некорректная сумма {field}: {value!r}")
    if not money.is_finite():
        raise InvalidParameters(f"Некорректная сумма {field}: {value!r}")
    if abs(money) >= MAX_MONEY:
        raise InvalidParameters(f"Сумма {field} должна быть меньше {MAX_MONEY}")
    try:
        quantized = money.quantize(CENT)
    except InvalidOperation:
        raise InvalidParameters(f"Некорректная сумма {field}: {value!r}")
    if money != quantized:
        raise InvalidParameters(f"Сумма {field} должна быть указана с точностью до 0.01")
    return quantized


def _validate_terms(
    starting_price: Decimal,
    duration_hours: int,
    reserve_price: Optional[Decimal],
    buy_now_price: Optional[Decimal],
):
    """Проверить условия аукциона до обращения к базе"""
    if starting_price < 0:
        raise InvalidParameters("Начальная цена не может быть отрицательной")
    if reserve_price is not None and reserve_price < starting_price:
        raise InvalidParameters("Резервная цена не может быть ниже начальной")
    if buy_now_price is not None:
        if buy_now_price <= starting_price:
            raise InvalidParameters("Цена \"купить сейчас\" должна быть выше начальной")
        if reserve_price is not None and buy_now_price < reserve_price:
            raise InvalidParameters("Цена \"купить сейчас\" не может быть ниже резервной")
    if duration_hours not in settings.durations_hours_list:
        allowed = ", ".join(str(h) for h in settings.durations_hours_list)
        raise InvalidParameters(f"Длительность аукциона должна быть одной из: {allowed} ч")


def _is_lock_timeout(error: DBAPIError) -> bool:
    """Ошибка PostgreSQL lock_not_available (55P03)"""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


async def _load_for_update(session: AsyncSession, auction_id: int) -> Auction:
    """Перечитать аукцион из базы с блокировкой строки.

    Строку могут держать другие процессы: в PostgreSQL ожидание ограничено
    lock_timeout (AUCTION_LOCK_TIMEOUT_SECONDS), по его истечении - Busy.
    """
    try:
        if session.get_bind().dialect.name == "postgresql":
            timeout_ms = int(settings.AUCTION_LOCK_TIMEOUT_SECONDS * 1000)
            await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
        result = await session.execute(
            select(Auction)
            .where(Auction.id == auction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    except DBAPIError as e:
        await session.rollback()
        if _is_lock_timeout(e):
            logger.warning(f"Строка аукциона {auction_id} заблокирована другим процессом")
            raise Busy() from e
        logger.error(f"Ошибка чтения аукциона {auction_id}: {e}")
        raise StorageUnavailable() from e
    auction = result.scalar_one_or_none()
    if not auction:
        await session.commit()
        raise NotFound("Аукцион не найден")
    return auction


async def _commit(session: AsyncSession, what: str):
    """Зафиксировать транзакцию; при ошибке откатить все изменения"""
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Ошибка сохранения ({what}): {e}")
        raise StorageUnavailable() from e


async def _sync_product_status(product_id: int, status: str):
    """Обновить статус товара в каталоге; ошибка не отменяет операцию аукциона"""
    try:
        await get_catalog().set_product_status(product_id, status)
    except Exception as e:
        logger.error(f"Ошибка обновления статуса товара {product_id} на {status}: {e!r}")


def _is_due(auction: Auction, now: datetime) -> bool:
    return auction.status == AuctionStatus.ACTIVE.value and now >= as_utc(auction.end_time)


async def create_auction(
    session: AsyncSession,
    product_id: int,
    seller_id: int,
    starting_price,
    duration_hours: int,
    reserve_price=None,
    buy_now_price=None,
    now: Optional[datetime] = None,
) -> Auction:
    """Создать активный аукцион для товара"""
    starting_price = to_money(starting_price, "starting_price")
    if reserve_price is not None:
        reserve_price = to_money(reserve_price, "reserve_price")
    if buy_now_price is not None:
        buy_now_price = to_money(buy_now_price, "buy_now_price")
    _validate_terms(starting_price, duration_hours, reserve_price, buy_now_price)

    product = await get_catalog().get_product(product_id)
    if not product:
        raise NotFound("Товар не найден")
    if product.seller_id != seller_id:
        raise Forbidden("Выставить товар на аукцион может только его продавец")

    async with product_locks.hold(product_id):
        # Просроченный, но еще не закрытый аукцион по товару закрываем сразу
        existing = await _get_active_for_product(session, product_id)
        if existing is not None:
            if _is_due(existing, now or utcnow()):
                await close_if_due(session, existing.id, now=now)
            else:
                raise InvalidParameters("По этому товару уже идет аукцион")
            product = await get_catalog().get_product(product_id) or product

        if product.status not in AUCTIONABLE_PRODUCT_STATUSES:
            raise InvalidParameters(f"Товар недоступен для аукциона (статус: {product.status})")

        # Время фиксируем после возможного закрытия предыдущего аукциона
        now = now or utcnow()
        auction = Auction(
            product_id=product_id,
            seller_id=product.seller_id,
            starting_price=starting_price,
            reserve_price=reserve_price,
            buy_now_price=buy_now_price,
            current_bid=None,
            highest_bidder_id=None,
            bid_count=0,
            status=AuctionStatus.ACTIVE.value,
            start_time=now,
            end_time=now + timedelta(hours=duration_hours),
            integrity_hold=False,
            created_at=now,
        )
        session.add(auction)
        try:
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            logger.warning(f"Параллельное создание аукциона для товара {product_id}: {e}")
            raise InvalidParameters("По этому товару уже идет аукцион") from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Ошибка сохранения аукциона для товара {product_id}: {e}")
            raise StorageUnavailable() from e

    logger.info(
        f"Аукцион {auction.id} создан: товар={product_id}, продавец={seller_id}, "
        f"старт={starting_price}, до {auction.end_time}"
    )
    await _sync_product_status(product_id, ProductStatus.AUCTION.value)
    return auction


async def place_bid(
    session: AsyncSession,
    auction_id: int,
    bidder_id: int,
    amount,
    now: Optional[datetime] = None,
) -> BidResult:
    """Сделать ставку"""
    amount = to_money(amount)
    intents: List[Intent] = []
    closed_status: Optional[str] = None

    async with auction_locks.hold(auction_id):
        auction = await _load_for_update(session, auction_id)
        if auction.integrity_hold:
            await session.commit()
            raise IntegrityViolation()

        now = now or utcnow()
        decision = evaluate(
            AuctionState.from_auction(auction),
            bidder_id,
            amount,
            now,
            settings.AUCTION_MIN_INCREMENT,
        )

        if not isinstance(decision, Accept):
            logger.info(
                f"Ставка {amount} от {bidder_id} на аукцион {auction_id} отклонена: {decision.reason}"
            )
            if _is_due(auction, now):
                # Время вышло, а аукцион еще не закрыт - закрываем, раз уж держим блокировку
                intents = await _close_locked(session, auction, now)
                closed_status = auction.status
            else:
                await session.commit()
            error = decision.error
        else:
            error = None
            previous_bidder_id = auction.highest_bidder_id
            state = decision.new_state
            auction.current_bid = state.current_bid
            auction.highest_bidder_id = state.highest_bidder_id
            auction.bid_count = state.bid_count
            auction.status = state.status
            auction.end_time = state.end_time
            if decision.is_buy_now:
                auction.finished_at = now

            bid = Bid(
                auction_id=auction_id,
                bidder_id=bidder_id,
                amount=decision.amount,
                is_buy_now=decision.is_buy_now,
                placed_at=now,
            )
            try:
                await ledger.append_bid(session, bid)
            except StorageUnavailable:
                await session.rollback()
                raise
            await _commit(session, f"ставка на аукцион {auction_id}")

            if previous_bidder_id is not None and previous_bidder_id != bidder_id:
                intents.append(AuctionOutbid(auction_id, previous_bidder_id))
            if decision.is_buy_now:
                closed_status = AuctionStatus.SOLD.value
                intents.append(AuctionWon(auction_id, bidder_id))
                intents.append(AuctionEnded(auction_id, closed_status, auction.seller_id))

    emit(intents)
    if closed_status is not None:
        await _sync_product_status(auction.product_id, PRODUCT_STATUS_AFTER_CLOSE[closed_status])
    if error is not None:
        raise error

    if decision.is_buy_now:
        logger.info(f"Аукцион {auction_id} выкуплен пользователем {bidder_id} за {decision.amount}")
    else:
        logger.info(
            f"Ставка {decision.amount} от {bidder_id} на аукцион {auction_id} принята "
            f"(ставок: {auction.bid_count})"
        )
    return BidResult(auction=auction, bid=bid)


async def cancel_auction(
    session: AsyncSession,
    auction_id: int,
    requester_id: int,
    now: Optional[datetime] = None,
) -> Auction:
    """Отменить аукцион (только продавец и только без ставок)"""
    async with auction_locks.hold(auction_id):
        auction = await _load_for_update(session, auction_id)
        try:
            if auction.integrity_hold:
                raise IntegrityViolation()
            if auction.seller_id != requester_id:
                raise Forbidden("Отменить аукцион может только продавец")
            if auction.status != AuctionStatus.ACTIVE.value:
                raise AuctionNotActive()
            if auction.bid_count > 0:
                raise HasBids()
        except AuctionError:
            await session.commit()
            raise

        auction.status = AuctionStatus.CANCELLED.value
        auction.finished_at = now or utcnow()
        await _commit(session, f"отмена аукциона {auction_id}")

    logger.info(f"Аукцион {auction_id} отменен продавцом {requester_id}")
    await _sync_product_status(auction.product_id, ProductStatus.ACTIVE.value)
    return auction


async def _close_locked(session: AsyncSession, auction: Auction, now: datetime) -> List[Intent]:
    """Закрыть просроченный аукцион; вызывается под блокировкой"""
    # Перед подведением итогов сверяем состояние с журналом ставок
    await ledger.verify(session, auction)

    if auction.bid_count == 0:
        auction.status = AuctionStatus.CANCELLED.value
    elif auction.reserve_price is not None and auction.current_bid < auction.reserve_price:
        auction.status = AuctionStatus.RESERVE_NOT_MET.value
    else:
        auction.status = AuctionStatus.SOLD.value
    auction.finished_at = now
    await _commit(session, f"закрытие аукциона {auction.id}")

    logger.info(
        f"Аукцион {auction.id} завершен: {auction.status}, "
        f"ставка={auction.current_bid}, победитель={auction.highest_bidder_id}"
    )

    intents: List[Intent] = []
    if auction.status == AuctionStatus.SOLD.value:
        intents.append(AuctionWon(auction.id, auction.highest_bidder_id))
    intents.append(AuctionEnded(auction.id, auction.status, auction.seller_id))
    return intents


async def _close_if_due(
    session: AsyncSession,
    auction_id: int,
    now: Optional[datetime],
) -> Tuple[Auction, bool]:
    async with auction_locks.hold(auction_id):
        auction = await _load_for_update(session, auction_id)
        now = now or utcnow()
        if not _is_due(auction, now):
            await session.commit()
            return auction, False
        if auction.integrity_hold:
            await session.commit()
            raise IntegrityViolation()
        intents = await _close_locked(session, auction, now)

    emit(intents)
    await _sync_product_status(auction.product_id, PRODUCT_STATUS_AFTER_CLOSE[auction.status])
    return auction, True


async def close_if_due(
    session: AsyncSession,
    auction_id: int,
    now: Optional[datetime] = None,
) -> Auction:
    """Завершить аукцион, если его время истекло (повторный вызов ничего не меняет)"""
    auction, _ = await _close_if_due(session, auction_id, now)
    return auction


async def close_due_auction(
    session: AsyncSession,
    auction_id: int,
    now: Optional[datetime] = None,
) -> bool:
    """То же, что close_if_due; True, если аукцион закрыт именно этим вызовом"""
    _, closed = await _close_if_due(session, auction_id, now)
    return closed


async def get_snapshot(
    session: AsyncSession,
    auction_id: int,
    now: Optional[datetime] = None,
) -> Auction:
    """Получить аукцион; просроченный активный аукцион закрывается перед возвратом.

    Аукцион с integrity_hold возвращается как есть, без закрытия.
    """
    result = await session.execute(
        select(Auction)
        .where(Auction.id == auction_id)
        .execution_options(populate_existing=True)
    )
    auction = result.scalar_one_or_none()
    if not auction:
        raise NotFound("Аукцион не найден")
    # Замороженный аукцион не закрываем, но читать его можно
    if not auction.integrity_hold and _is_due(auction, now or utcnow()):
        return await close_if_due(session, auction_id, now=now)
    return auction


async def _get_active_for_product(session: AsyncSession, product_id: int) -> Optional[Auction]:
    result = await session.execute(
        select(Auction).where(
            Auction.product_id == product_id,
            Auction.status == AuctionStatus.ACTIVE.value,
        )
    )
    return result.scalar_one_or_none()


async def get_auction_by_product(
    session: AsyncSession,
    product_id: int,
    now: Optional[datetime] = None,
) -> Optional[Auction]:
    """Последний аукцион товара (в любом статусе) или None"""
    result = await session.execute(
        select(Auction)
        .where(Auction.product_id == product_id)
        .order_by(Auction.start_time.desc(), Auction.id.desc())
        .limit(1)
    )
    auction = result.scalar_one_or_none()
    if auction is None:
        return None
    return await get_snapshot(session, auction.id, now=now)


async def get_active_auctions(
    session: AsyncSession,
    category_id: Optional[int] = None,
    limit: int = 20,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> List[Auction]:
    """Получить активные аукционы (сначала те, что скоро завершатся)"""
    now = now or utcnow()
    query = select(Auction).where(
        Auction.status == AuctionStatus.ACTIVE.value,
        Auction.end_time > now,
    )
    if category_id is not None:
        query = query.join(Product, Product.id == Auction.product_id).where(
            Product.category_id == category_id
        )
    result = await session.execute(
        query.order_by(Auction.end_time.asc(), Auction.id.asc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def get_bid_history(
    session: AsyncSession,
    auction_id: int,
    newest_first: bool = False,
    limit: Optional[int] = None,
) -> List[Bid]:
    """История ставок аукциона"""
    result = await session.execute(select(Auction.id).where(Auction.id == auction_id))
    if result.scalar_one_or_none() is None:
        raise NotFound("Аукцион не найден")
    return await ledger.list_for_auction(session, auction_id, newest_first=newest_first, limit=limit)


async def get_bidder_bids(
    session: AsyncSession,
    bidder_id: int,
    limit: int = 50,
) -> List[Tuple[Bid, Auction]]:
    """Ставки пользователя вместе с их аукционами, сначала новые"""
    bids = await ledger.list_for_bidder(session, bidder_id, limit=limit)
    if not bids:
        return []
    result = await session.execute(
        select(Auction)
        .where(Auction.id.in_(sorted({bid.auction_id for bid in bids})))
        .execution_options(populate_existing=True)
    )
    auctions = {auction.id: auction for auction in result.scalars().all()}
    return [(bid, auctions[bid.auction_id]) for bid in bids]


async def get_due_auction_ids(
    session: AsyncSession,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[int]:
    """Id активных аукционов, время которых истекло"""
    query = (
        select(Auction.id)
        .where(
            Auction.status == AuctionStatus.ACTIVE.value,
            Auction.end_time <= (now or utcnow()),
        )
        .order_by(Auction.end_time.asc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def clear_integrity_hold(session: AsyncSession, auction_id: int) -> Auction:
    """Снять заморозку после ручной сверки; снимается только если журнал совпадает"""
    async with auction_locks.hold(auction_id):
        auction = await _load_for_update(session, auction_id)
        replayed = await ledger.replay(session, auction_id)
        if not replayed.matches(auction):
            await session.commit()
            logger.critical(f"Аукцион {auction_id} по-прежнему расходится с журналом ставок")
            raise IntegrityViolation()
        auction.integrity_hold = False
        await _commit(session, f"снятие заморозки аукциона {auction_id}")

    logger.info(f"Заморозка аукциона {auction_id} снята")
    return auction
