"""Функции для работы с таблицей токенов."""

from __future__ import annotations

from typing import Optional, Sequence

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tracker.models import Token


async def find_token(session: AsyncSession, address: str, chain: str) -> Optional[Token]:
    stmt = select(Token).where(Token.address == address, Token.chain == chain)
    result = await session.exec(stmt)
    return result.one_or_none()


async def ensure_token(session: AsyncSession, address: str, chain: str) -> Token:
    """Идемпотентный get-or-create.

    Гонку двух создателей разрешает уникальный индекс (address, chain):
    проигравший ловит IntegrityError, откатывается и перечитывает строку.
    """

    token = await find_token(session, address, chain)
    if token is not None:
        return token
    token = Token(address=address, chain=chain)
    session.add(token)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.debug(
            "Токен {address} ({chain}) уже создан параллельно, перечитываем",
            address=address,
            chain=chain,
        )
        token = await find_token(session, address, chain)
        if token is None:
            raise
        return token
    await session.refresh(token)
    logger.info("Создан токен {address} ({chain})", address=address, chain=chain)
    return token


async def list_tokens_by_chain(session: AsyncSession, chain: str) -> Sequence[Token]:
    stmt = select(Token).where(Token.chain == chain).order_by(Token.id)
    result = await session.exec(stmt)
    return result.all()


async def apply_token_metadata(
    session: AsyncSession,
    token_id: int,
    *,
    symbol: str | None,
    name: str | None,
    decimals: int | None,
) -> Optional[Token]:
    token = await session.get(Token, token_id)
    if token is None:
        return None
    changed = False
    for field, value in (("symbol", symbol), ("name", name), ("decimals", decimals)):
        if value is not None and getattr(token, field) != value:
            setattr(token, field, value)
            changed = True
    if not changed:
        return token
    token.touch()
    session.add(token)
    await session.commit()
    await session.refresh(token)
    return token


__all__ = ["apply_token_metadata", "ensure_token", "find_token", "list_tokens_by_chain"]
