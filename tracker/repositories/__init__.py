"""Репозитории для работы с БД."""

from .alert_repo import (
    count_active_alerts_by_user,
    create_user_alert,
    deactivate_alert_if_active,
    find_active_alerts,
    find_active_significant_alerts,
    find_alert,
    find_alerts_by_user,
    find_significant_alert_by_chain,
    get_or_create_significant_alert,
    update_last_checked_time,
)
from .price_repo import (
    Page,
    find_hourly_prices,
    find_latest_price,
    find_price_at_or_before,
    find_price_change,
    find_prices_in_range,
    save_price,
)
from .token_repo import apply_token_metadata, ensure_token, find_token, list_tokens_by_chain

__all__ = [
    "Page",
    "apply_token_metadata",
    "count_active_alerts_by_user",
    "create_user_alert",
    "deactivate_alert_if_active",
    "ensure_token",
    "find_active_alerts",
    "find_active_significant_alerts",
    "find_alert",
    "find_alerts_by_user",
    "find_hourly_prices",
    "find_latest_price",
    "find_price_at_or_before",
    "find_price_change",
    "find_prices_in_range",
    "find_significant_alert_by_chain",
    "find_token",
    "get_or_create_significant_alert",
    "list_tokens_by_chain",
    "save_price",
    "update_last_checked_time",
]
