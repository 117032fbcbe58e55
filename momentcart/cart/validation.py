"""
Cart business rules.

Independent predicate functions, each returning a ``ValidationResult``.
None of them mutate their inputs or touch storage; ``CartManager``
composes them before dispatching to the reducer. Callers should treat
``errors``/``warnings`` as sets, not ordered lists.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from momentcart import errors as msg
from momentcart.config import CartConfig
from momentcart.models import SportEvent
from momentcart.money import format_money, subtract, to_decimal

from .models import (
    CartDraft,
    CartItem,
    CartState,
    CheckoutValidation,
    SelectedMoment,
    ValidationResult,
    utcnow,
)

WARNING_EVENT_SOON = "The event starts very soon, make sure to configure its moments quickly"
WARNING_LOW_AUDIENCE = "This event has a low estimated audience"
WARNING_NO_MOMENTS = "The event has no moments available yet"
WARNING_NO_PRICES = "The event has no prices configured yet"
WARNING_EXPENSIVE_MOMENT = 'The moment "{moment}" is expensive ({price})'
WARNING_LARGE_PURCHASE = "This is a large purchase. Review it carefully before proceeding"
WARNING_MANY_ITEMS = "You have many events in the cart. Consider splitting into several purchases"
WARNING_NEAR_LIMIT = "You are approaching the limit of {max_items} events per cart"

_DEFAULT_CONFIG = CartConfig()


def validate_event(
    event: SportEvent,
    now: Optional[datetime] = None,
    config: CartConfig = _DEFAULT_CONFIG,
) -> ValidationResult:
    """
    Check that a catalog event can be placed in the cart.

    Events may be added before their moments or prices are set up
    upstream; that is reported as a warning only.
    """
    now = now or utcnow()
    errors: List[str] = []
    warnings: List[str] = []

    if not event.is_active:
        errors.append(msg.ERROR_EVENT_INACTIVE)

    if event.event_date < now - timedelta(days=config.event_past_days):
        errors.append(msg.ERROR_EVENT_TOO_OLD.format(days=config.event_past_days))

    if not event.moments:
        warnings.append(WARNING_NO_MOMENTS)
    if not event.moment_prices:
        warnings.append(WARNING_NO_PRICES)

    if event.event_date - now < timedelta(hours=config.event_soon_hours):
        warnings.append(WARNING_EVENT_SOON)

    if event.total_audience < config.low_audience_threshold:
        warnings.append(WARNING_LOW_AUDIENCE)

    return ValidationResult.from_lists(errors, warnings)


def validate_moments(
    moments: Sequence[SelectedMoment],
    event: SportEvent,
    config: CartConfig = _DEFAULT_CONFIG,
) -> ValidationResult:
    """
    Check a moment selection against the event's catalog and price table.

    Price mismatches catch selections made from a stale price list.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if len(moments) < config.min_configured_moments:
        errors.append(msg.ERROR_MOMENTS_MIN.format(count=config.min_configured_moments))
    if len(moments) > config.max_configured_moments:
        errors.append(msg.ERROR_MOMENTS_MAX.format(count=config.max_configured_moments))

    total_quantity = sum(m.quantity for m in moments)
    if total_quantity > event.max_moments:
        errors.append(msg.ERROR_MOMENTS_EVENT_MAX.format(count=event.max_moments))

    for moment in moments:
        if event.catalog_moment(moment.moment) is None:
            errors.append(msg.ERROR_MOMENT_UNKNOWN.format(moment=moment.moment))

        current = event.current_price(moment.moment)
        if current is None or current != to_decimal(moment.price):
            errors.append(msg.ERROR_MOMENT_PRICE_MISMATCH.format(moment=moment.moment))

        if moment.quantity < 1:
            errors.append(msg.ERROR_MOMENT_QUANTITY.format(moment=moment.moment))

        if to_decimal(moment.price) > config.high_value_moment_price:
            warnings.append(WARNING_EXPENSIVE_MOMENT.format(
                moment=moment.moment,
                price=format_money(moment.price, config.currency),
            ))

    return ValidationResult.from_lists(errors, warnings)


def validate_checkout(
    state: CartState,
    wallet_balance: Decimal,
    now: Optional[datetime] = None,
    config: CartConfig = _DEFAULT_CONFIG,
) -> CheckoutValidation:
    """
    Check the whole cart against the wallet balance before purchase.

    Re-validates every item and its moments; those messages are prefixed
    with the 1-based item position.
    """
    balance = to_decimal(wallet_balance)
    total = to_decimal(state.total_price)
    errors: List[str] = []
    warnings: List[str] = []

    if not state.items:
        errors.append(msg.ERROR_CART_EMPTY)
        return CheckoutValidation(
            is_valid=False,
            errors=errors,
            warnings=warnings,
            required_balance=total,
            current_balance=balance,
        )

    unconfigured = [item for item in state.items if not item.is_configured]
    if unconfigured:
        errors.append(msg.ERROR_UNCONFIGURED_ITEMS.format(count=len(unconfigured)))

    if total > config.max_total_price:
        errors.append(msg.ERROR_TOTAL_LIMIT.format(total=format_money(total, config.currency)))

    shortfall = None
    if balance < total:
        shortfall = subtract(total, balance)
        errors.append(msg.ERROR_INSUFFICIENT_BALANCE.format(
            shortfall=format_money(shortfall, config.currency),
        ))

    if total > config.large_purchase_threshold:
        warnings.append(WARNING_LARGE_PURCHASE)

    if len(state.items) > config.many_items_threshold:
        warnings.append(WARNING_MANY_ITEMS)

    for index, item in enumerate(state.items, start=1):
        prefix = f"Event {index}: "
        event_result = validate_event(item.event, now=now, config=config)
        errors.extend(prefix + e for e in event_result.errors)
        warnings.extend(prefix + w for w in event_result.warnings)

        if item.selected_moments:
            moments_result = validate_moments(item.selected_moments, item.event, config=config)
            errors.extend(prefix + e for e in moments_result.errors)
            warnings.extend(prefix + w for w in moments_result.warnings)

    return CheckoutValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        required_balance=total,
        current_balance=balance,
        shortfall=shortfall,
    )


def validate_cart_limits(
    current_items: Sequence[CartItem],
    new_event: Optional[SportEvent] = None,
    config: CartConfig = _DEFAULT_CONFIG,
) -> ValidationResult:
    """Check cart size and duplicates for a prospective addition."""
    errors: List[str] = []
    warnings: List[str] = []

    if new_event is not None:
        if len(current_items) >= config.max_items:
            errors.append(msg.ERROR_CART_FULL.format(max_items=config.max_items))
        if any(item.event_id == new_event.id for item in current_items):
            errors.append(msg.ERROR_EVENT_DUPLICATE)

    if len(current_items) >= config.max_items - config.limit_warning_margin:
        warnings.append(WARNING_NEAR_LIMIT.format(max_items=config.max_items))

    return ValidationResult.from_lists(errors, warnings)


def validate_draft_limits(
    drafts: Sequence[CartDraft],
    draft_id: Optional[str] = None,
    config: CartConfig = _DEFAULT_CONFIG,
) -> ValidationResult:
    """Check the saved-draft ceiling. Overwriting an existing draft is always allowed."""
    errors: List[str] = []
    is_update = draft_id is not None and any(d.id == draft_id for d in drafts)
    if not is_update and len(drafts) >= config.max_drafts:
        errors.append(msg.ERROR_DRAFT_LIMIT.format(max_drafts=config.max_drafts))
    return ValidationResult.from_lists(errors, [])
