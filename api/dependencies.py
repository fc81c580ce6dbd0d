"""Зависимости HTTP-слоя"""
from typing import Optional

from fastapi import Header, HTTPException, status

from database.connection import get_session

__all__ = ["get_session", "current_user_id"]


async def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """Id пользователя, проставленный шлюзом аутентификации"""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Требуется авторизация")
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Некорректный X-User-Id")
