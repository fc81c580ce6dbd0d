"""Ошибки движка аукционов"""
from decimal import Decimal
from typing import Optional


class AuctionError(Exception):
    """Базовая ошибка движка аукционов"""
    code = "auction_error"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return "Ошибка аукциона"

    @property
    def message(self) -> str:
        return str(self)


class InvalidParameters(AuctionError):
    """Некорректные параметры при создании аукциона"""
    code = "invalid_parameters"

    def default_message(self) -> str:
        return "Некорректные параметры аукциона"


class AuctionNotActive(AuctionError):
    """Аукцион завершен, отменен или его время истекло"""
    code = "auction_not_active"

    def default_message(self) -> str:
        return "Аукцион не активен"


class SelfBid(AuctionError):
    """Продавец пытается сделать ставку на свой аукцион"""
    code = "self_bid"

    def default_message(self) -> str:
        return "Продавец не может делать ставки на свой аукцион"


class BidTooLow(AuctionError):
    """Ставка ниже минимально допустимой суммы"""
    code = "bid_too_low"

    def __init__(self, floor: Decimal, message: Optional[str] = None):
        self.floor = floor
        super().__init__(message)

    def default_message(self) -> str:
        return f"Ставка должна быть не меньше {self.floor:,}"


class Forbidden(AuctionError):
    """Операция доступна только продавцу"""
    code = "forbidden"

    def default_message(self) -> str:
        return "Недостаточно прав"


class HasBids(AuctionError):
    """Отмена невозможна: по аукциону уже есть ставки"""
    code = "has_bids"

    def default_message(self) -> str:
        return "Нельзя отменить аукцион, по которому уже есть ставки"


class NotFound(AuctionError):
    """Аукцион или товар не найден"""
    code = "not_found"

    def default_message(self) -> str:
        return "Не найдено"


class Busy(AuctionError):
    """Аукцион занят другой операцией, запрос можно повторить"""
    code = "busy"
    retryable = True

    def default_message(self) -> str:
        return "Аукцион занят, повторите попытку"


class StorageUnavailable(AuctionError):
    """Ошибка записи в хранилище, транзакция откачена"""
    code = "storage_unavailable"
    retryable = True

    def default_message(self) -> str:
        return "Хранилище недоступно"


class IntegrityViolation(AuctionError):
    """Состояние аукциона расходится с журналом ставок"""
    code = "integrity_violation"

    def default_message(self) -> str:
        return "Состояние аукциона расходится с журналом ставок"
