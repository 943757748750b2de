"""Хелперы для сетей и адресов EVM."""

from __future__ import annotations

import re

from tracker.errors import InvalidAddress, UnsupportedChain

_ADDRESS_RE = re.compile(r"^0x[a-f0-9]{40}$")


def normalize_chain(chain: str) -> str:
    return (chain or "").strip().lower()


def normalize_address(address: str) -> str:
    """Приводит адрес к нижнему регистру и проверяет формат."""

    if not address or not address.strip():
        raise InvalidAddress("Адрес токена не может быть пустым")
    normalized = address.strip().lower()
    if not _ADDRESS_RE.match(normalized):
        raise InvalidAddress(f"Некорректный формат адреса: {address}", address=address)
    return normalized


def resolve_chain_code(chains: dict[str, str], chain: str) -> str:
    """Логическое имя сети ('ethereum') -> код провайдера ('0x1')."""

    code = chains.get(normalize_chain(chain))
    if not code:
        raise UnsupportedChain(f"Неподдерживаемая сеть: {chain}", chain=chain)
    return code


def truncate_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}" if len(address) > 10 else address


__all__ = ["normalize_address", "normalize_chain", "resolve_chain_code", "truncate_address"]
