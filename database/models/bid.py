"""Модель ставки"""
from sqlalchemy import Column, BigInteger, Integer, Numeric, DateTime, ForeignKey, Boolean, event
from sqlalchemy.orm import relationship
from database.connection import Base


class Bid(Base):
    """Модель ставки на аукционе (запись журнала, не изменяется после записи)"""
    __tablename__ = "bids"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True)
    auction_id = Column(
        BigInteger, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bidder_id = Column(BigInteger, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Сумма ставки
    is_buy_now = Column(Boolean, default=False, nullable=False)  # Покупка по цене "купить сейчас"
    placed_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Связи
    auction = relationship("Auction", back_populates="bids")


class LedgerImmutableError(RuntimeError):
    """Попытка изменить или удалить записанную ставку"""


@event.listens_for(Bid, "before_update")
def _forbid_bid_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ставка {target.id} не может быть изменена")


@event.listens_for(Bid, "before_delete")
def _forbid_bid_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ставка {target.id} не может быть удалена")
