"""Единая точка настройки aiocache и read-through хелпер."""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar
from urllib.parse import urlparse

from aiocache import SimpleMemoryCache, caches
from aiocache.base import BaseCache
from loguru import logger

try:
    from aiocache import RedisCache
except (ImportError, AttributeError):  # pragma: no cover - optional dependency
    RedisCache = None  # type: ignore[assignment]

from config.settings import CacheSettings, get_settings

T = TypeVar("T")

_configured = False


def configure_cache(cache_settings: CacheSettings | None = None) -> None:
    """Настраивает aiocache в зависимости от backend (memory/redis)."""

    global _configured
    if _configured:
        return

    cfg = cache_settings or get_settings().cache
    if cfg.backend == "redis":
        if RedisCache is None:
            raise RuntimeError(
                "Для использования RedisCache установите пакет 'redis' и aiocache[redis]"
            )
        config = _build_redis_config(cfg.redis_dsn)
        caches.set_config(
            {
                "default": {
                    "cache": RedisCache,
                    **config,
                    "serializer": {"class": "aiocache.serializers.PickleSerializer"},
                    "ttl": cfg.ttl_seconds,
                }
            }
        )
    else:
        caches.set_config(
            {
                "default": {
                    "cache": SimpleMemoryCache,
                    "ttl": cfg.ttl_seconds,
                }
            }
        )
    _configured = True


def get_cache(alias: str = "default") -> BaseCache:
    """Возвращает кеш по алиасу (предварительно гарантирует конфиг)."""

    configure_cache()
    return caches.get(alias)


def cache_key(kind: str, chain: str, address: str, *parts: object) -> str:
    """price:{chain}:{address}, metadata:{chain}:{address}, hourly:...:{page}:{limit}."""

    key = f"{kind}:{chain}:{address}"
    if parts:
        key = ":".join([key, *(str(part) for part in parts)])
    return key


async def cached_call(
    key: str,
    ttl: int,
    factory: Callable[[], Awaitable[T]],
    cache: BaseCache | None = None,
) -> T:
    """Если значение отсутствует – вызывает factory и кладёт результат в кеш.

    Кеш best-effort: недоступность backend деградирует до прямого вычисления.
    None не кешируется, отсутствие данных всегда перепроверяется.
    """

    cache = cache if cache is not None else get_cache()
    try:
        value = await cache.get(key)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Кеш недоступен на чтение {key}: {error}", key=key, error=exc)
        value = None
    if value is not None:
        return value
    value = await factory()
    if value is not None:
        await safe_set(cache, key, value, ttl)
    return value


async def safe_set(cache: BaseCache, key: str, value: object, ttl: int) -> None:
    """Запись в кеш, не роняющая вызывающего при сбое backend."""

    try:
        await cache.set(key, value, ttl=ttl)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Кеш недоступен на запись {key}: {error}", key=key, error=exc)


def _build_redis_config(dsn: str | None) -> dict[str, object]:
    if not dsn:
        raise RuntimeError("CACHE__BACKEND=redis, но redis_dsn не указан")
    parsed = urlparse(dsn)
    if parsed.scheme not in {"redis", "rediss"}:
        raise ValueError(f"Неподдерживаемая схема Redis DSN: {parsed.scheme}")
    db = 0
    if parsed.path and parsed.path != "/":
        try:
            db = int(parsed.path.lstrip("/"))
        except ValueError:
            db = 0
    return {
        "endpoint": parsed.hostname or "localhost",
        "port": parsed.port or 6379,
        "password": parsed.password,
        "db": db,
        "ssl": parsed.scheme == "rediss",
    }


__all__ = ["cache_key", "cached_call", "configure_cache", "get_cache", "safe_set"]
