"""Конфигурация приложения"""
from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Настройки приложения"""

    # Telegram Bot (пустой токен отключает доставку уведомлений в Telegram)
    BOT_TOKEN: str = ""

    # Database
    # Полный URL имеет приоритет над отдельными параметрами DB_*
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_NAME: str = ""

    # FastAPI
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Auction Settings
    # Минимальный шаг ставки, общий для всех аукционов
    AUCTION_MIN_INCREMENT: Decimal = Decimal("50")
    # Поддерживаемые длительности аукциона в часах (1, 3, 7 и 14 дней)
    AUCTION_DURATIONS_HOURS: str = "24,72,168,336"
    # Сколько ждать блокировку аукциона, прежде чем ответить Busy
    AUCTION_LOCK_TIMEOUT_SECONDS: float = 5.0
    AUCTION_SCHEDULER_INTERVAL_SECONDS: float = 60.0
    AUCTION_SCHEDULER_BATCH_SIZE: int = 100

    # Notifications
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_RETRY_DELAY_SECONDS: float = 1.0

    @property
    def durations_hours_list(self) -> List[int]:
        """Список допустимых длительностей аукциона (в часах)"""
        if not self.AUCTION_DURATIONS_HOURS:
            return []
        return [int(h.strip()) for h in self.AUCTION_DURATIONS_HOURS.split(",") if h.strip()]

    @property
    def database_url(self) -> str:
        """URL подключения к базе данных"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
