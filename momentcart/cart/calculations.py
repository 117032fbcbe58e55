"""Pure derivations over a list of cart items.

Every function here is referentially transparent: the same items (by
value) always give the same output.
"""
from collections import Counter
from decimal import Decimal
from typing import Iterable, List, Sequence

from momentcart.money import divide, multiply, round_money, to_decimal

from .models import AudienceReach, CartAnalytics, CartItem, CartStats, SelectedMoment

LOW_AUDIENCE_PER_EVENT = 20000

RECOMMEND_CONFIGURE = "Configure moments for every event to get a final price"
RECOMMEND_MORE_EVENTS = "Add more events to extend your campaign reach"
RECOMMEND_SPREAD_DATES = "Consider adding events on different dates for greater reach"
RECOMMEND_WEEKEND = "Weekend events usually have larger audiences"
RECOMMEND_BIGGER_EVENTS = "Some events have a small audience, consider higher-attendance matches"


def calculate_moments_price(moments: Iterable[SelectedMoment]) -> Decimal:
    """Sum of price * quantity over the selected moments."""
    return sum((multiply(m.price, m.quantity) for m in moments), Decimal("0"))


def calculate_item_price(item: CartItem) -> Decimal:
    """Configured total when moments are selected, else the estimated price."""
    if item.selected_moments:
        return calculate_moments_price(item.selected_moments)
    return to_decimal(item.estimated_price)


def calculate_total_price(items: Sequence[CartItem]) -> Decimal:
    return sum((calculate_item_price(item) for item in items), Decimal("0"))


def calculate_item_audience(item: CartItem) -> int:
    return item.event.total_audience


def calculate_total_audience(items: Sequence[CartItem]) -> int:
    return sum(calculate_item_audience(item) for item in items)


def calculate_cost_per_impression(total_price: Decimal, total_audience: int) -> Decimal:
    """Price divided by audience; 0 when there is no audience."""
    if total_audience <= 0:
        return Decimal("0")
    return divide(total_price, total_audience)


def _recommendations(items: Sequence[CartItem]) -> List[str]:
    if not items:
        return [RECOMMEND_MORE_EVENTS]

    recommendations = []
    if any(not item.is_configured for item in items):
        recommendations.append(RECOMMEND_CONFIGURE)
    if len(items) == 1:
        recommendations.append(RECOMMEND_MORE_EVENTS)

    dates = Counter(item.event.event_date.date() for item in items)
    if len(items) > 1 and len(dates) == 1:
        recommendations.append(RECOMMEND_SPREAD_DATES)

    # Monday=0 ... Saturday=5, Sunday=6
    if not any(item.event.event_date.weekday() >= 5 for item in items):
        recommendations.append(RECOMMEND_WEEKEND)

    if any(calculate_item_audience(item) < LOW_AUDIENCE_PER_EVENT for item in items):
        recommendations.append(RECOMMEND_BIGGER_EVENTS)

    return recommendations


def generate_analytics(items: Sequence[CartItem]) -> CartAnalytics:
    """
    Aggregate figures for the cart plus heuristic recommendation strings.

    Recommendations are fixed strings picked by simple rules, not a model.
    """
    total_price = calculate_total_price(items)
    total_audience = calculate_total_audience(items)
    average = divide(total_price, len(items)) if items else Decimal("0")

    return CartAnalytics(
        total_events=len(items),
        total_price=total_price,
        total_audience=total_audience,
        cost_per_impression=calculate_cost_per_impression(total_price, total_audience),
        average_price_per_event=round_money(average),
        # Overlap and demographics need audience data this core does not have
        audience_reach=AudienceReach(unique=total_audience),
        recommendations=_recommendations(items),
    )


def calculate_cart_stats(items: Sequence[CartItem]) -> CartStats:
    """Configuration progress for the cart."""
    total_price = calculate_total_price(items)
    total_audience = calculate_total_audience(items)
    configured = sum(1 for item in items if item.is_configured)
    count = len(items)

    return CartStats(
        total_items=count,
        total_price=total_price,
        total_audience=total_audience,
        configured_items=configured,
        unconfigured_items=count - configured,
        average_price=divide(total_price, count),
        cost_per_impression=calculate_cost_per_impression(total_price, total_audience),
        completion_percentage=divide(configured * 100, count),
    )
