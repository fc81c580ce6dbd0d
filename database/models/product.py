"""Модель товара"""
from sqlalchemy import Column, BigInteger, String, Integer, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from database.connection import Base


class ProductStatus(str, enum.Enum):
    """Статус товара в каталоге"""
    ACTIVE = "Active"
    DRAFT = "Draft"
    AUCTION = "Auction"  # Выставлен на аукцион
    SOLD = "Sold"
    REMOVED = "Removed"  # Снят продавцом


class Product(Base):
    """Модель товара (хранилище каталога)"""
    __tablename__ = "products"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True)
    seller_id = Column(BigInteger, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    category_id = Column(Integer, nullable=True, index=True)
    status = Column(String(50), default=ProductStatus.ACTIVE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Связи
    auctions = relationship("Auction", back_populates="product", passive_deletes=True)
