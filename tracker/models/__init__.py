"""SQLModel сущности PriceWatch."""

from .alerts import AlertCondition, SignificantPriceAlert, UserPriceAlert  # noqa: F401
from .price import Price  # noqa: F401
from .token import Token  # noqa: F401

__all__ = [
    "AlertCondition",
    "Price",
    "SignificantPriceAlert",
    "Token",
    "UserPriceAlert",
]
