"""Глобальные сервисы и зависимости PriceWatch."""

from __future__ import annotations

from config.settings import get_settings
from .db import get_session_maker
from .services.alerts.alert_checker import AlertChecker
from .services.alerts.alerts_service import AlertsService
from .services.alerts.notifier import build_notification_sender
from .services.prices.price_scheduler import PriceScheduler, build_token_universe
from .services.prices.price_tracker import PriceTrackerService
from .services.provider.moralis_client import MoralisClient
from .utils.cache import configure_cache

settings = get_settings()

configure_cache(settings.cache)
session_maker = get_session_maker()

moralis_client = MoralisClient(
    settings.provider,
    rate_limit_settings=settings.rate_limit,
    retry_settings=settings.retry,
)
price_tracker = PriceTrackerService(
    moralis_client,
    session_maker,
    tracking=settings.tracking,
    cache_settings=settings.cache,
)
price_scheduler = PriceScheduler(price_tracker, session_maker, settings.tracking)
notification_sender = build_notification_sender(settings.notifications)
alerts_service = AlertsService(price_tracker, session_maker, settings.alerts)
alert_checker = AlertChecker(
    price_tracker,
    notification_sender,
    session_maker,
    chains=build_token_universe(settings.tracking),
    settings=settings.alerts,
)

__all__ = [
    "alert_checker",
    "alerts_service",
    "moralis_client",
    "notification_sender",
    "price_scheduler",
    "price_tracker",
    "session_maker",
    "settings",
]
