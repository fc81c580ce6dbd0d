"""Модель аукциона"""
from sqlalchemy import (
    Column, BigInteger, Integer, Numeric, DateTime, ForeignKey, Boolean, String, Index, text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from database.connection import Base


class AuctionStatus(str, enum.Enum):
    """Статус аукциона"""
    ACTIVE = "active"  # Идут торги
    SOLD = "sold"  # Продан (по таймеру или через "купить сейчас")
    RESERVE_NOT_MET = "reserve_not_met"  # Ставки были, но резервная цена не достигнута
    CANCELLED = "cancelled"  # Отменен продавцом или завершен без ставок


class Auction(Base):
    """Модель аукциона"""
    __tablename__ = "auctions"
    __table_args__ = (
        # Не больше одного активного аукциона на товар
        Index(
            "uq_auctions_product_active",
            "product_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True)
    product_id = Column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seller_id = Column(BigInteger, nullable=False, index=True)
    starting_price = Column(Numeric(12, 2), nullable=False)  # Начальная цена
    reserve_price = Column(Numeric(12, 2), nullable=True)  # Резервная цена
    buy_now_price = Column(Numeric(12, 2), nullable=True)  # Цена "купить сейчас"
    current_bid = Column(Numeric(12, 2), nullable=True)  # Лучшая ставка
    highest_bidder_id = Column(BigInteger, nullable=True, index=True)
    bid_count = Column(Integer, default=0, nullable=False)
    status = Column(String(50), default=AuctionStatus.ACTIVE.value, nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    # Заморозка после расхождения с журналом ставок, снимается вручную
    integrity_hold = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Связи
    product = relationship("Product", back_populates="auctions")
    bids = relationship(
        "Bid",
        back_populates="auction",
        order_by="Bid.placed_at.asc()",
        passive_deletes=True,
    )
