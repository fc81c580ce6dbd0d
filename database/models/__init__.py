"""Модели движка аукционов"""
from .product import Product, ProductStatus
from .auction import Auction, AuctionStatus
from .bid import Bid, LedgerImmutableError

__all__ = [
    "Product",
    "ProductStatus",
    "Auction",
    "AuctionStatus",
    "Bid",
    "LedgerImmutableError",
]
