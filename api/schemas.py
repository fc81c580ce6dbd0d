"""Схемы запросов и ответов API аукционов"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from services.clock import as_utc


class CreateAuctionRequest(BaseModel):
    product_id: int
    starting_price: Decimal = Field(ge=0)
    duration_hours: int
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None


class PlaceBidRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class AuctionResponse(BaseModel):
    id: int
    product_id: int
    seller_id: int
    starting_price: Decimal
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None
    current_bid: Optional[Decimal] = None
    bid_count: int
    highest_bidder_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    finished_at: Optional[datetime] = None
    status: str
    title: Optional[str] = None

    @classmethod
    def from_auction(cls, auction, title: Optional[str] = None) -> "AuctionResponse":
        return cls(
            id=auction.id,
            product_id=auction.product_id,
            seller_id=auction.seller_id,
            starting_price=auction.starting_price,
            reserve_price=auction.reserve_price,
            buy_now_price=auction.buy_now_price,
            current_bid=auction.current_bid,
            bid_count=auction.bid_count,
            highest_bidder_id=auction.highest_bidder_id,
            start_time=as_utc(auction.start_time),
            end_time=as_utc(auction.end_time),
            finished_at=as_utc(auction.finished_at),
            status=auction.status,
            title=title,
        )


class BidResponse(BaseModel):
    id: int
    auction_id: int
    bidder_id: int
    amount: Decimal
    is_buy_now: bool
    placed_at: datetime

    @classmethod
    def from_bid(cls, bid) -> "BidResponse":
        return cls(
            id=bid.id,
            auction_id=bid.auction_id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            is_buy_now=bid.is_buy_now,
            placed_at=as_utc(bid.placed_at),
        )


class PlaceBidResponse(BaseModel):
    auction: AuctionResponse
    bid: BidResponse


class MyBidResponse(BidResponse):
    auction_status: str
    auction_current_bid: Optional[Decimal] = None
    auction_end_time: datetime
    is_leading: bool


class ErrorResponse(BaseModel):
    detail: str
    code: str
    min_amount: Optional[Decimal] = None
