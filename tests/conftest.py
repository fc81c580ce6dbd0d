"""Общие фикстуры тестов движка аукционов"""
import os

# До импорта config: тестам не нужен PostgreSQL и Telegram
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["BOT_TOKEN"] = ""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.connection import init_models
from database.models.product import Product, ProductStatus
from services.auction import create_auction
from services.catalog import SqlProductCatalog, set_catalog
from services.notifications import NotificationEmitter, get_emitter, set_emitter

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
SELLER_ID = 1001
ALICE = 2001
BOB = 2002
CAROL = 2003


class RecordingEmitter(NotificationEmitter):
    """Отправитель, который запоминает уведомления"""

    def __init__(self):
        super().__init__()
        self.sent = []

    async def send(self, intent):
        self.sent.append(intent)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auctions.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def catalog(session_maker):
    catalog = SqlProductCatalog(session_maker)
    set_catalog(catalog)
    yield catalog
    set_catalog(None)


@pytest.fixture(autouse=True)
def emitter():
    previous = get_emitter()
    recording = RecordingEmitter()
    set_emitter(recording)
    yield recording
    set_emitter(previous)


@pytest.fixture
def make_product(session_maker):
    """Создать товар в каталоге"""
    async def _make(seller_id=SELLER_ID, title="Видеокарта", category_id=1, status=ProductStatus.ACTIVE.value):
        async with session_maker() as s:
            product = Product(seller_id=seller_id, title=title, category_id=category_id, status=status)
            s.add(product)
            await s.commit()
            return product.id
    return _make


@pytest.fixture
def make_auction(session, make_product):
    """Создать товар и аукцион по нему"""
    async def _make(
        starting_price="100",
        reserve_price=None,
        buy_now_price=None,
        duration_hours=72,
        now=NOW,
        category_id=1,
    ):
        product_id = await make_product(category_id=category_id)
        return await create_auction(
            session,
            product_id=product_id,
            seller_id=SELLER_ID,
            starting_price=Decimal(starting_price),
            duration_hours=duration_hours,
            reserve_price=Decimal(reserve_price) if reserve_price is not None else None,
            buy_now_price=Decimal(buy_now_price) if buy_now_price is not None else None,
            now=now,
        )
    return _make


def at(minutes: int) -> datetime:
    """Момент времени через minutes минут после NOW"""
    return NOW + timedelta(minutes=minutes)
