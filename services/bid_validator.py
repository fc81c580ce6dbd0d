"""Проверка ставок.

Чистая логика без обращений к базе: по снимку аукциона и предлагаемой
ставке решает, принять ли ставку, и вычисляет новое состояние аукциона.
Сохранение и запись в журнал выполняет services.auction.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from database.models.auction import AuctionStatus
from services.clock import as_utc
from services.errors import AuctionError, AuctionNotActive, SelfBid, BidTooLow


@dataclass(frozen=True)
class AuctionState:
    """Снимок полей аукциона, влияющих на прием ставки"""
    seller_id: int
    starting_price: Decimal
    status: str
    end_time: datetime
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None
    current_bid: Optional[Decimal] = None
    highest_bidder_id: Optional[int] = None
    bid_count: int = 0

    @classmethod
    def from_auction(cls, auction) -> "AuctionState":
        return cls(
            seller_id=auction.seller_id,
            starting_price=auction.starting_price,
            status=auction.status,
            end_time=as_utc(auction.end_time),
            reserve_price=auction.reserve_price,
            buy_now_price=auction.buy_now_price,
            current_bid=auction.current_bid,
            highest_bidder_id=auction.highest_bidder_id,
            bid_count=auction.bid_count,
        )


@dataclass(frozen=True)
class Accept:
    """Ставка принята"""
    new_state: AuctionState
    amount: Decimal  # Фактическая сумма (ограничена ценой "купить сейчас")
    is_buy_now: bool = False


@dataclass(frozen=True)
class Reject:
    """Ставка отклонена"""
    error: AuctionError

    @property
    def reason(self) -> str:
        return self.error.code


Decision = Union[Accept, Reject]


def bid_floor(state: AuctionState, min_increment: Decimal) -> Decimal:
    """Минимальная сумма следующей ставки"""
    if state.current_bid is None:
        # Первая ставка может быть равна начальной цене
        return state.starting_price
    return state.current_bid + min_increment


def evaluate(
    state: AuctionState,
    bidder_id: int,
    amount: Decimal,
    now: datetime,
    min_increment: Decimal,
) -> Decision:
    """Проверить ставку и вычислить новое состояние аукциона"""
    if state.status != AuctionStatus.ACTIVE.value or now >= state.end_time:
        return Reject(AuctionNotActive())

    if bidder_id == state.seller_id:
        return Reject(SelfBid())

    floor = bid_floor(state, min_increment)
    if amount < floor:
        return Reject(BidTooLow(floor))

    if state.buy_now_price is not None and amount >= state.buy_now_price:
        # Платим не больше цены "купить сейчас", аукцион закрывается сразу
        new_state = replace(
            state,
            current_bid=state.buy_now_price,
            highest_bidder_id=bidder_id,
            bid_count=state.bid_count + 1,
            status=AuctionStatus.SOLD.value,
            end_time=now,
        )
        return Accept(new_state=new_state, amount=state.buy_now_price, is_buy_now=True)

    new_state = replace(
        state,
        current_bid=amount,
        highest_bidder_id=bidder_id,
        bid_count=state.bid_count + 1,
    )
    return Accept(new_state=new_state, amount=amount)
