"""Каталог товаров (внешний сервис для движка аукционов)"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models.product import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductInfo:
    """Данные товара, нужные аукциону"""
    id: int
    seller_id: int
    status: str
    title: Optional[str] = None
    category_id: Optional[int] = None


class ProductCatalog:
    """Контракт каталога товаров"""

    async def get_product(self, product_id: int) -> Optional[ProductInfo]:
        raise NotImplementedError

    async def set_product_status(self, product_id: int, status: str) -> None:
        raise NotImplementedError


class SqlProductCatalog(ProductCatalog):
    """Каталог поверх таблицы products; каждый вызов в отдельной сессии"""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def get_product(self, product_id: int) -> Optional[ProductInfo]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Product).where(Product.id == product_id)
            )
            product = result.scalar_one_or_none()
            if not product:
                return None
            return ProductInfo(
                id=product.id,
                seller_id=product.seller_id,
                status=product.status,
                title=product.title,
                category_id=product.category_id,
            )

    async def set_product_status(self, product_id: int, status: str) -> None:
        async with self.session_maker() as session:
            await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(status=status)
            )
            await session.commit()
        logger.info(f"Статус товара {product_id} изменен на {status}")


_catalog: Optional[ProductCatalog] = None


def get_catalog() -> ProductCatalog:
    """Текущий каталог (по умолчанию - таблица products основной базы)"""
    global _catalog
    if _catalog is None:
        from database.connection import async_session_maker
        _catalog = SqlProductCatalog(async_session_maker)
    return _catalog


def set_catalog(catalog: Optional[ProductCatalog]) -> None:
    """Подменить каталог (другой сервис, тесты)"""
    global _catalog
    _catalog = catalog


async def get_product_titles(session: AsyncSession, product_ids) -> dict:
    """Названия товаров для снимков аукционов"""
    ids = set(product_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(Product.id, Product.title).where(Product.id.in_(ids))
    )
    return {row.id: row.title for row in result.all()}
