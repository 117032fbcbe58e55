"""Cart system configuration.

Limits, storage settings and retry policy live in a single frozen
``CartConfig``. ``get_cart_config()`` reads ``.env`` and environment
overrides once per call; pass the result explicitly to the components
that need it.
"""
import os
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv


# Environment names
ENV_PRODUCTION = "production"
ENV_DEVELOPMENT = "development"
ENV_TEST = "test"


@dataclass(frozen=True)
class CartConfig:
    """Validation limits, storage and error-handling settings."""

    # Validation rules
    max_items: int = 10
    max_total_price: Decimal = Decimal("50000000")  # 50M COP
    min_configured_moments: int = 1
    max_configured_moments: int = 5
    max_drafts: int = 20
    high_value_moment_price: Decimal = Decimal("1000000")  # 1M COP
    large_purchase_threshold: Decimal = Decimal("10000000")  # 10M COP
    many_items_threshold: int = 5
    low_audience_threshold: int = 10000
    event_soon_hours: int = 12
    event_past_days: int = 365
    limit_warning_margin: int = 2

    # Storage settings
    storage_key_prefix: str = "shareflow_"
    storage_version: str = "1.0.0"
    cart_expiry_days: int = 30
    near_expiry_days: int = 3
    draft_retention_days: int = 90
    session_ttl_seconds: int = 1800  # 30 minutes

    # Event housekeeping
    expired_event_grace_days: int = 7
    expiring_window_hours: int = 48

    # Error handling
    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_multiplier: float = 2.0

    # Simulated payment latency
    checkout_delay_seconds: float = 1.5

    # Currency used for display strings
    currency: str = "COP"

    @property
    def cart_storage_key(self) -> str:
        return f"{self.storage_key_prefix}sports_cart"

    @property
    def session_storage_key(self) -> str:
        return f"{self.storage_key_prefix}cart_session"


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def get_cart_config(env: Optional[str] = None) -> CartConfig:
    """
    Build the cart configuration for the current environment.

    Args:
        env: Environment name; defaults to MOMENTCART_ENV (production if unset)

    Returns:
        CartConfig with environment-specific overrides applied
    """
    load_dotenv()
    env = env or os.environ.get("MOMENTCART_ENV", ENV_PRODUCTION)
    config = CartConfig()

    if env == ENV_DEVELOPMENT:
        # Allow more items in development
        config = replace(config, max_items=20)
    elif env == ENV_TEST:
        config = replace(config, checkout_delay_seconds=0.0, max_retries=1, retry_delay=0.0)

    max_items = _env_int("CART_MAX_ITEMS")
    if max_items is not None:
        config = replace(config, max_items=max_items)

    expiry_days = _env_int("CART_EXPIRY_DAYS")
    if expiry_days is not None:
        config = replace(config, cart_expiry_days=expiry_days)

    prefix = os.environ.get("CART_STORAGE_PREFIX")
    if prefix:
        config = replace(config, storage_key_prefix=prefix)

    return config


__all__ = [
    "CartConfig",
    "ENV_DEVELOPMENT",
    "ENV_PRODUCTION",
    "ENV_TEST",
    "get_cart_config",
]
