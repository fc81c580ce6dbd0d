"""Главный файл API аукционов"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import auctions
from api.schemas import ErrorResponse
from config import settings
from database.connection import init_models
from services.errors import AuctionError, BidTooLow
from services.notifications import (
    NotificationEmitter,
    TelegramNotificationEmitter,
    get_emitter,
    set_emitter,
)
from services.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

# HTTP-статус для каждой ошибки движка
ERROR_STATUS = {
    "invalid_parameters": 400,
    "bid_too_low": 400,
    "self_bid": 400,
    "forbidden": 403,
    "not_found": 404,
    "auction_not_active": 409,
    "has_bids": 409,
    "integrity_violation": 409,
    "busy": 503,
    "storage_unavailable": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Запуск и остановка фоновых задач"""
    await init_models()

    bot = None
    if settings.BOT_TOKEN:
        bot = Bot(
            token=settings.BOT_TOKEN,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML)
        )
        set_emitter(TelegramNotificationEmitter(bot))
        logger.info("Уведомления отправляются через Telegram")
    else:
        set_emitter(NotificationEmitter())
        logger.warning("BOT_TOKEN не задан: уведомления только пишутся в лог")

    # Запускаем планировщик для завершения аукционов
    start_scheduler()

    yield

    await stop_scheduler()
    await get_emitter().drain()
    if bot is not None:
        await bot.session.close()


def create_app(with_lifespan: bool = True) -> FastAPI:
    """Собрать приложение"""
    app = FastAPI(
        title="Auction Engine API",
        version="0.1.0",
        lifespan=lifespan if with_lifespan else None,
    )
    app.include_router(auctions.router)

    @app.exception_handler(AuctionError)
    async def auction_error_handler(request: Request, exc: AuctionError):
        body = ErrorResponse(
            detail=exc.message,
            code=exc.code,
            min_amount=exc.floor if isinstance(exc, BidTooLow) else None,
        )
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.code, 400),
            content=body.model_dump(mode="json", exclude_none=True),
            headers=headers,
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


def main():
    """Запуск API"""
    # Настройка логирования
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"API запускается на {settings.API_HOST}:{settings.API_PORT}")
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_config=None)


if __name__ == "__main__":
    main()
