"""Тесты проверки ставок (без базы данных)"""
from datetime import timedelta
from decimal import Decimal

from conftest import NOW, SELLER_ID, ALICE, BOB
from services.bid_validator import Accept, AuctionState, Reject, bid_floor, evaluate
from services.errors import AuctionNotActive, BidTooLow, SelfBid

INCREMENT = Decimal("50")


def make_state(**overrides) -> AuctionState:
    values = dict(
        seller_id=SELLER_ID,
        starting_price=Decimal("100.00"),
        status="active",
        end_time=NOW + timedelta(hours=72),
    )
    values.update(overrides)
    return AuctionState(**values)


class TestFloor:
    """Минимальная допустимая ставка"""

    def test_first_bid_floor_is_starting_price(self):
        assert bid_floor(make_state(), INCREMENT) == Decimal("100.00")

    def test_next_bid_floor_adds_increment(self):
        state = make_state(current_bid=Decimal("100.00"), highest_bidder_id=ALICE, bid_count=1)
        assert bid_floor(state, INCREMENT) == Decimal("150.00")


class TestRejections:
    """Отклонение ставок"""

    def test_rejects_finished_auction(self):
        decision = evaluate(make_state(status="sold"), ALICE, Decimal("500"), NOW, INCREMENT)
        assert isinstance(decision, Reject)
        assert isinstance(decision.error, AuctionNotActive)

    def test_rejects_at_end_time(self):
        state = make_state(end_time=NOW)
        decision = evaluate(state, ALICE, Decimal("500"), NOW, INCREMENT)
        assert isinstance(decision.error, AuctionNotActive)

    def test_rejects_seller_bid(self):
        decision = evaluate(make_state(), SELLER_ID, Decimal("100"), NOW, INCREMENT)
        assert isinstance(decision.error, SelfBid)
        assert decision.reason == "self_bid"

    def test_rejects_one_cent_below_floor(self):
        state = make_state(current_bid=Decimal("100.00"), highest_bidder_id=ALICE, bid_count=1)
        decision = evaluate(state, BOB, Decimal("149.99"), NOW, INCREMENT)
        assert isinstance(decision.error, BidTooLow)
        assert decision.error.floor == Decimal("150.00")

    def test_not_active_checked_before_self_bid(self):
        decision = evaluate(make_state(status="cancelled"), SELLER_ID, Decimal("100"), NOW, INCREMENT)
        assert isinstance(decision.error, AuctionNotActive)


class TestAcceptance:
    """Прием ставок"""

    def test_first_bid_at_starting_price(self):
        decision = evaluate(make_state(), ALICE, Decimal("100"), NOW, INCREMENT)
        assert isinstance(decision, Accept)
        assert decision.new_state.current_bid == Decimal("100")
        assert decision.new_state.highest_bidder_id == ALICE
        assert decision.new_state.bid_count == 1
        assert decision.new_state.status == "active"
        assert not decision.is_buy_now

    def test_bid_exactly_at_floor(self):
        state = make_state(current_bid=Decimal("100.00"), highest_bidder_id=ALICE, bid_count=1)
        decision = evaluate(state, BOB, Decimal("150.00"), NOW, INCREMENT)
        assert isinstance(decision, Accept)
        assert decision.new_state.bid_count == 2

    def test_leader_may_raise_own_bid(self):
        state = make_state(current_bid=Decimal("100.00"), highest_bidder_id=ALICE, bid_count=1)
        decision = evaluate(state, ALICE, Decimal("200"), NOW, INCREMENT)
        assert isinstance(decision, Accept)

    def test_does_not_mutate_input_state(self):
        state = make_state()
        evaluate(state, ALICE, Decimal("120"), NOW, INCREMENT)
        assert state.current_bid is None
        assert state.bid_count == 0


class TestBuyNow:
    """Покупка по цене "купить сейчас" """

    def test_bid_above_buy_now_is_capped_and_closes(self):
        state = make_state(buy_now_price=Decimal("500.00"))
        decision = evaluate(state, ALICE, Decimal("600"), NOW, INCREMENT)
        assert isinstance(decision, Accept)
        assert decision.is_buy_now
        assert decision.amount == Decimal("500.00")
        assert decision.new_state.current_bid == Decimal("500.00")
        assert decision.new_state.status == "sold"
        assert decision.new_state.end_time == NOW
        assert decision.new_state.highest_bidder_id == ALICE

    def test_bid_below_buy_now_keeps_auction_open(self):
        state = make_state(buy_now_price=Decimal("500.00"))
        decision = evaluate(state, ALICE, Decimal("499.99"), NOW, INCREMENT)
        assert not decision.is_buy_now
        assert decision.new_state.status == "active"

    def test_buy_now_still_needs_floor(self):
        state = make_state(
            buy_now_price=Decimal("500.00"),
            current_bid=Decimal("480.00"),
            highest_bidder_id=ALICE,
            bid_count=3,
        )
        decision = evaluate(state, BOB, Decimal("500.00"), NOW, INCREMENT)
        assert isinstance(decision.error, BidTooLow)
