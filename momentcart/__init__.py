"""MomentCart: cart state management for live-event advertising moments."""
from typing import Optional

from momentcart.cart import CartManager, CartStorage
from momentcart.config import CartConfig, get_cart_config
from momentcart.db import MemoryStore, create_default_store
from momentcart.errors import CartError, CartErrorType

__version__ = "1.0.0"


def create_cart_manager(config: Optional[CartConfig] = None) -> CartManager:
    """
    Build a CartManager wired to the configured stores.

    Durable data goes to Upstash Redis when credentials are set; session
    data always stays in process memory.
    """
    config = config or get_cart_config()
    store = create_default_store(
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        backoff_multiplier=config.backoff_multiplier,
    )
    storage = CartStorage(store, session_store=MemoryStore(), config=config)
    return CartManager(storage, config=config)


__all__ = [
    "CartConfig",
    "CartError",
    "CartErrorType",
    "CartManager",
    "CartStorage",
    "create_cart_manager",
    "get_cart_config",
]
