"""Тесты журнала ставок"""
from decimal import Decimal
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from conftest import ALICE, BOB, CAROL, NOW, at
from database.models.auction import Auction
from database.models.bid import Bid, LedgerImmutableError
from services import ledger
from services.auction import (
    clear_integrity_hold,
    close_if_due,
    get_auction_by_product,
    get_snapshot,
    place_bid,
)
from services.errors import IntegrityViolation, StorageUnavailable


async def tamper(session_maker, auction_id, **values):
    """Изменить аукцион в обход движка"""
    async with session_maker() as s:
        await s.execute(update(Auction).where(Auction.id == auction_id).values(**values))
        await s.commit()


class TestReplay:
    """Восстановление состояния по журналу"""

    @pytest.mark.asyncio
    async def test_replay_matches_stored_state(self, session, make_auction):
        auction = await make_auction(buy_now_price="1000")
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        await place_bid(session, auction.id, BOB, Decimal("175.50"), now=at(2))
        await place_bid(session, auction.id, CAROL, Decimal("1200"), now=at(3))

        replayed = await ledger.replay(session, auction.id)

        assert replayed.current_bid == Decimal("1000")
        assert replayed.bid_count == 3
        assert replayed.highest_bidder_id == CAROL
        assert replayed.monotonic
        assert (await ledger.check_auction(session, auction.id)).matches(auction)

    @pytest.mark.asyncio
    async def test_empty_ledger(self, session, make_auction):
        auction = await make_auction()
        replayed = await ledger.replay(session, auction.id)
        assert replayed.current_bid is None
        assert replayed.bid_count == 0
        assert replayed.highest_bidder_id is None
        assert replayed.matches(auction)


class TestIntegrity:
    """Расхождение аукциона и журнала"""

    @pytest.mark.asyncio
    async def test_divergence_freezes_auction(self, session, session_maker, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        await tamper(session_maker, auction.id, current_bid=Decimal("900"))

        with pytest.raises(IntegrityViolation):
            await ledger.check_auction(session, auction.id)

        async with session_maker() as s:
            frozen = (await s.execute(select(Auction).where(Auction.id == auction.id))).scalar_one()
        assert frozen.integrity_hold
        # Состояние не исправляется автоматически
        assert frozen.current_bid == Decimal("900")

        with pytest.raises(IntegrityViolation):
            await place_bid(session, auction.id, BOB, Decimal("1000"), now=at(2))

    @pytest.mark.asyncio
    async def test_close_checks_ledger(self, session, session_maker, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        await tamper(session_maker, auction.id, bid_count=5)

        with pytest.raises(IntegrityViolation):
            await close_if_due(session, auction.id, now=NOW + timedelta(days=4))

        async with session_maker() as s:
            frozen = (await s.execute(select(Auction).where(Auction.id == auction.id))).scalar_one()
        assert frozen.status == "active"
        assert frozen.integrity_hold

    @pytest.mark.asyncio
    async def test_frozen_auction_readable_after_end(self, session, session_maker, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        await tamper(session_maker, auction.id, bid_count=5)
        with pytest.raises(IntegrityViolation):
            await ledger.check_auction(session, auction.id)

        after_end = NOW + timedelta(days=4)
        snapshot = await get_snapshot(session, auction.id, now=after_end)
        by_product = await get_auction_by_product(session, auction.product_id, now=after_end)

        assert snapshot.status == "active"
        assert snapshot.integrity_hold
        assert snapshot.bid_count == 5
        assert by_product.id == auction.id

    @pytest.mark.asyncio
    async def test_step_below_increment_is_divergence(self, session, session_maker, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))

        # Ставка в обход проверок: шаг 10 при минимальном 50
        async with session_maker() as s:
            s.add(Bid(auction_id=auction.id, bidder_id=BOB, amount=Decimal("110"), placed_at=at(2)))
            await s.commit()
        await tamper(session_maker, auction.id, current_bid=Decimal("110"), bid_count=2, highest_bidder_id=BOB)

        replayed = await ledger.replay(session, auction.id)
        assert replayed.current_bid == Decimal("110")
        assert not replayed.monotonic
        with pytest.raises(IntegrityViolation):
            await ledger.check_auction(session, auction.id)

    @pytest.mark.asyncio
    async def test_capped_buy_now_step_is_consistent(self, session, make_auction):
        auction = await make_auction(buy_now_price="520")
        await place_bid(session, auction.id, ALICE, Decimal("500"), now=at(1))
        await place_bid(session, auction.id, BOB, Decimal("550"), now=at(2))

        replayed = await ledger.check_auction(session, auction.id)
        assert replayed.monotonic
        assert replayed.current_bid == Decimal("520")

    @pytest.mark.asyncio
    async def test_hold_cleared_only_after_reconciliation(self, session, session_maker, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        await tamper(session_maker, auction.id, highest_bidder_id=BOB)
        with pytest.raises(IntegrityViolation):
            await ledger.check_auction(session, auction.id)

        with pytest.raises(IntegrityViolation):
            await clear_integrity_hold(session, auction.id)

        # Ручная сверка: возвращаем лидера из журнала
        await tamper(session_maker, auction.id, highest_bidder_id=ALICE)
        restored = await clear_integrity_hold(session, auction.id)
        assert not restored.integrity_hold

        result = await place_bid(session, auction.id, BOB, Decimal("150"), now=at(2))
        assert result.auction.bid_count == 2


class TestAppendOnly:
    """Записанные ставки не изменяются"""

    @pytest.mark.asyncio
    async def test_bid_update_refused(self, session, make_auction):
        auction = await make_auction()
        result = await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))

        result.bid.amount = Decimal("1")
        with pytest.raises(LedgerImmutableError):
            await session.flush()
        await session.rollback()

    @pytest.mark.asyncio
    async def test_bid_delete_refused(self, session, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        bid = (await session.execute(select(Bid).where(Bid.auction_id == auction.id))).scalar_one()

        await session.delete(bid)
        with pytest.raises(LedgerImmutableError):
            await session.flush()
        await session.rollback()

    @pytest.mark.asyncio
    async def test_listing_orders(self, session, make_auction):
        auction = await make_auction()
        await place_bid(session, auction.id, ALICE, Decimal("100"), now=at(1))
        await place_bid(session, auction.id, BOB, Decimal("150"), now=at(2))
        await place_bid(session, auction.id, ALICE, Decimal("200"), now=at(3))

        ascending = await ledger.list_for_auction(session, auction.id)
        descending = await ledger.list_for_auction(session, auction.id, newest_first=True)
        mine = await ledger.list_for_bidder(session, ALICE)

        assert [b.amount for b in ascending] == [Decimal("100"), Decimal("150"), Decimal("200")]
        assert [b.amount for b in descending] == [Decimal("200"), Decimal("150"), Decimal("100")]
        assert [b.amount for b in mine] == [Decimal("200"), Decimal("100")]


class TestStorageFailure:
    """Сбой записи в журнал откатывает ставку целиком"""

    @pytest.mark.asyncio
    async def test_auction_unchanged_when_append_fails(self, session, session_maker, make_auction, monkeypatch):
        auction_id = (await make_auction()).id

        async def failing_append(session, bid):
            raise StorageUnavailable()

        monkeypatch.setattr(ledger, "append_bid", failing_append)
        with pytest.raises(StorageUnavailable):
            await place_bid(session, auction_id, ALICE, Decimal("100"), now=at(1))

        async with session_maker() as s:
            stored = (await s.execute(select(Auction).where(Auction.id == auction_id))).scalar_one()
            bids = (await s.execute(select(Bid).where(Bid.auction_id == auction_id))).scalars().all()
        assert stored.current_bid is None
        assert stored.bid_count == 0
        assert bids == []
