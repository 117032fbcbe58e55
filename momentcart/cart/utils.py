"""Cart helpers: id generation, event conversion, lookups and expiry windows."""
import re
import secrets
import string
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from momentcart.models import SportEvent

from .models import CartItem, utcnow

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _random_suffix(length: int = 7) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def _make_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{_random_suffix()}"


def generate_cart_id() -> str:
    return _make_id("cart")


def generate_draft_id() -> str:
    return _make_id("draft")


def generate_transaction_id() -> str:
    return _make_id("tx")


def estimate_event_price(event: SportEvent) -> Decimal:
    """Seed price before configuration: first catalog moment, else first price-table entry."""
    if event.moments:
        return event.moments[0].price
    if event.moment_prices:
        return event.moment_prices[0].price
    return Decimal("0")


def convert_to_cart_item(event: SportEvent, now: Optional[datetime] = None) -> CartItem:
    """Wrap a catalog event as a fresh, unconfigured cart item."""
    return CartItem(
        event=event,
        cart_id=generate_cart_id(),
        added_at=now or utcnow(),
        selected_moments=(),
        is_configured=False,
        estimated_price=estimate_event_price(event),
        final_price=None,
    )


def is_event_in_cart(event_id: str, items: Sequence[CartItem]) -> bool:
    return any(item.event_id == event_id for item in items)


def get_cart_item_by_event_id(event_id: str, items: Sequence[CartItem]) -> Optional[CartItem]:
    return next((item for item in items if item.event_id == event_id), None)


def get_cart_item(cart_id: str, items: Sequence[CartItem]) -> Optional[CartItem]:
    return next((item for item in items if item.cart_id == cart_id), None)


def get_expiring_items(
    items: Sequence[CartItem],
    window_hours: int = 48,
    now: Optional[datetime] = None,
) -> List[CartItem]:
    """Items whose event has not started yet but starts within the window."""
    now = now or utcnow()
    horizon = now + timedelta(hours=window_hours)
    return [item for item in items if now < item.event.event_date <= horizon]


def get_expired_items(
    items: Sequence[CartItem],
    grace_days: int = 7,
    now: Optional[datetime] = None,
) -> List[CartItem]:
    """Items whose event ended more than ``grace_days`` ago."""
    now = now or utcnow()
    return [item for item in items if item.event.event_date + timedelta(days=grace_days) < now]


def sanitize_input(value: str, max_length: int = 1000) -> str:
    """Strip angle brackets and javascript: URLs from free text (draft names, notes)."""
    cleaned = value.replace("<", "").replace(">", "")
    cleaned = re.sub(r"javascript:", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()[:max_length]
