"""Время движка аукционов"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Текущее время в UTC"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Привести время к UTC (SQLite возвращает время без часового пояса)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
