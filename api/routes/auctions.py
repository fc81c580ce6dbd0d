"""
API аукционов и ставок.

POST   /auctions                      - создать аукцион по товару (продавец)
GET    /auctions                      - активные аукционы (фильтр по категории, пагинация)
GET    /auctions/my-bids              - ставки текущего пользователя
GET    /auctions/product/{product_id} - аукцион товара
GET    /auctions/{id}                 - аукцион по id
GET    /auctions/{id}/bids            - история ставок
POST   /auctions/{id}/bid             - сделать ставку
PATCH  /auctions/{id}/cancel          - отменить аукцион (только без ставок)
"""
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import current_user_id, get_session
from api.schemas import (
    AuctionResponse,
    BidResponse,
    CreateAuctionRequest,
    ErrorResponse,
    MyBidResponse,
    PlaceBidRequest,
    PlaceBidResponse,
)
from services.auction import (
    cancel_auction,
    create_auction,
    get_active_auctions,
    get_auction_by_product,
    get_bid_history,
    get_bidder_bids,
    get_snapshot,
    place_bid,
)
from services.catalog import get_product_titles
from services.clock import as_utc

# Ошибки движка описаны в OpenAPI одной схемой
ERROR_RESPONSES = {
    status_code: {"model": ErrorResponse}
    for status_code in (400, 403, 404, 409, 503)
}

router = APIRouter(prefix="/auctions", tags=["auctions"], responses=ERROR_RESPONSES)


async def _auction_to_response(session: AsyncSession, auction) -> AuctionResponse:
    titles = await get_product_titles(session, [auction.product_id])
    return AuctionResponse.from_auction(auction, title=titles.get(auction.product_id))


@router.post("", response_model=AuctionResponse, status_code=201)
async def route_auction_create(
    body: CreateAuctionRequest,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Выставить товар на аукцион"""
    auction = await create_auction(
        session,
        product_id=body.product_id,
        seller_id=user_id,
        starting_price=body.starting_price,
        duration_hours=body.duration_hours,
        reserve_price=body.reserve_price,
        buy_now_price=body.buy_now_price,
    )
    return await _auction_to_response(session, auction)


@router.get("", response_model=List[AuctionResponse])
async def route_auction_list_active(
    category_id: Optional[int] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """Активные аукционы, сначала те, что скоро завершатся"""
    auctions = await get_active_auctions(
        session, category_id=category_id, limit=limit, offset=offset
    )
    titles = await get_product_titles(session, [a.product_id for a in auctions])
    return [AuctionResponse.from_auction(a, title=titles.get(a.product_id)) for a in auctions]


@router.get("/my-bids", response_model=List[MyBidResponse])
async def route_auction_my_bids(
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_session),
):
    rows = await get_bidder_bids(session, user_id, limit=limit)
    return [
        MyBidResponse(
            **BidResponse.from_bid(bid).model_dump(),
            auction_status=auction.status,
            auction_current_bid=auction.current_bid,
            auction_end_time=as_utc(auction.end_time),
            is_leading=auction.highest_bidder_id == user_id,
        )
        for bid, auction in rows
    ]


@router.get("/product/{product_id}", response_model=Optional[AuctionResponse])
async def route_auction_by_product(
    product_id: int,
    session: AsyncSession = Depends(get_session),
):
    auction = await get_auction_by_product(session, product_id)
    if auction is None:
        return None
    return await _auction_to_response(session, auction)


@router.get("/{auction_id}", response_model=AuctionResponse)
async def route_auction_get(
    auction_id: int,
    session: AsyncSession = Depends(get_session),
):
    auction = await get_snapshot(session, auction_id)
    return await _auction_to_response(session, auction)


@router.get("/{auction_id}/bids", response_model=List[BidResponse])
async def route_auction_bids(
    auction_id: int,
    order: Literal["asc", "desc"] = "asc",
    limit: Optional[int] = Query(None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    """История ставок; order=desc - сначала последние"""
    bids = await get_bid_history(
        session, auction_id, newest_first=(order == "desc"), limit=limit
    )
    return [BidResponse.from_bid(b) for b in bids]


@router.post("/{auction_id}/bid", response_model=PlaceBidResponse)
async def route_auction_place_bid(
    auction_id: int,
    body: PlaceBidRequest,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Сделать ставку. Ставка не ниже цены "купить сейчас" сразу завершает аукцион."""
    result = await place_bid(session, auction_id, user_id, body.amount)
    return PlaceBidResponse(
        auction=await _auction_to_response(session, result.auction),
        bid=BidResponse.from_bid(result.bid),
    )


@router.patch("/{auction_id}/cancel", response_model=AuctionResponse)
async def route_auction_cancel(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_session),
):
    auction = await cancel_auction(session, auction_id, user_id)
    return await _auction_to_response(session, auction)
