"""Environment-driven settings for the cart engine."""
import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from storefront.money import parse_decimal


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.environ.get(name, default)
    try:
        value = parse_decimal(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _env_optional_decimal(name: str) -> Optional[Decimal]:
    if not os.environ.get(name):
        return None
    return _env_decimal(name, "0")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


@dataclass(frozen=True)
class Settings:
    """Cart engine settings."""
    cart_api_url: str = "http://localhost:8000/api"
    cart_api_timeout: float = 10.0
    sync_max_retries: int = 2
    sync_backoff: float = 0.2  # seconds, first retry
    sync_backoff_max: float = 2.0
    tax_rate: Decimal = Decimal("0.08")
    shipping_fee: Decimal = Decimal("10.00")
    express_shipping_fee: Decimal = Decimal("16.50")
    free_shipping_threshold: Optional[Decimal] = None
    currency: str = "USD"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Load settings from environment variables.

        Raises:
            ValueError: If a variable is present but malformed
        """
        return cls(
            cart_api_url=os.environ.get("CART_API_URL", cls.cart_api_url).rstrip("/"),
            cart_api_timeout=_env_float("CART_API_TIMEOUT", cls.cart_api_timeout),
            sync_max_retries=_env_int("CART_SYNC_MAX_RETRIES", cls.sync_max_retries),
            sync_backoff=_env_float("CART_SYNC_BACKOFF", cls.sync_backoff),
            sync_backoff_max=_env_float("CART_SYNC_BACKOFF_MAX", cls.sync_backoff_max),
            tax_rate=_env_decimal("CART_TAX_RATE", str(cls.tax_rate)),
            shipping_fee=_env_decimal("CART_SHIPPING_FEE", str(cls.shipping_fee)),
            express_shipping_fee=_env_decimal(
                "CART_EXPRESS_SHIPPING_FEE", str(cls.express_shipping_fee)
            ),
            free_shipping_threshold=_env_optional_decimal("CART_FREE_SHIPPING_THRESHOLD"),
            currency=os.environ.get("CART_CURRENCY", cls.currency).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get settings (cached). Call get_settings.cache_clear() after changing env."""
    return Settings.from_env()
