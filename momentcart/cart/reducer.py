"""
Cart state machine.

``reduce(state, action)`` is a pure function: no I/O, no clock reads, no
business-rule checks. Item-mutating actions carry the ``at`` timestamp
that becomes ``last_updated``, so identical inputs always produce
identical states. Policy lives in ``validation`` and is applied by the
caller before dispatch.
"""
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from .calculations import (
    calculate_moments_price,
    calculate_total_audience,
    calculate_total_price,
)
from .models import CartItem, CartState, SelectedMoment, utcnow

_CART_ITEM_FIELDS = frozenset(f.name for f in fields(CartItem))


@dataclass(frozen=True)
class AddItem:
    item: CartItem
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RemoveItem:
    cart_id: str
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class UpdateItem:
    cart_id: str
    patch: Dict[str, Any]
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ClearCart:
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConfigureMoments:
    cart_id: str
    moments: Tuple[SelectedMoment, ...]
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class UpdateMoments:
    cart_id: str
    moments: Tuple[SelectedMoment, ...]
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class LoadCart:
    items: Tuple[CartItem, ...]
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class LoadDraft:
    items: Tuple[CartItem, ...]
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ToggleOpen:
    pass


@dataclass(frozen=True)
class SetLoading:
    loading: bool


@dataclass(frozen=True)
class SetError:
    message: str


@dataclass(frozen=True)
class ClearError:
    pass


Action = Union[
    AddItem,
    RemoveItem,
    UpdateItem,
    ClearCart,
    ConfigureMoments,
    UpdateMoments,
    LoadCart,
    LoadDraft,
    ToggleOpen,
    SetLoading,
    SetError,
    ClearError,
]


def initial_state(at: Optional[datetime] = None) -> CartState:
    return CartState(last_updated=at or utcnow())


def _with_items(state: CartState, items: Sequence[CartItem], at: datetime, **changes) -> CartState:
    """New state with items replaced and totals recomputed from them."""
    items = tuple(items)
    return replace(
        state,
        items=items,
        total_items=len(items),
        total_price=calculate_total_price(items),
        total_audience=calculate_total_audience(items),
        last_updated=at,
        error=None,
        **changes,
    )


def _apply_moments(item: CartItem, moments: Sequence[SelectedMoment]) -> CartItem:
    moments = tuple(moments)
    return replace(
        item,
        selected_moments=moments,
        is_configured=True,
        final_price=calculate_moments_price(moments),
    )


def _map_item(state: CartState, cart_id: str, fn) -> Tuple[CartItem, ...]:
    return tuple(fn(item) if item.cart_id == cart_id else item for item in state.items)


def _patch_item(item: CartItem, patch: Dict[str, Any]) -> CartItem:
    unknown = set(patch) - _CART_ITEM_FIELDS
    if unknown:
        raise TypeError(f"Unknown cart item fields: {', '.join(sorted(unknown))}")
    return replace(item, **patch)


def reduce(state: CartState, action: Action) -> CartState:
    """Apply one action and return the next state."""
    if isinstance(action, SetLoading):
        return replace(state, loading=action.loading)

    if isinstance(action, SetError):
        return replace(state, error=action.message, loading=False)

    if isinstance(action, ClearError):
        return replace(state, error=None)

    if isinstance(action, ToggleOpen):
        return replace(state, is_open=not state.is_open)

    if isinstance(action, AddItem):
        # Sole duplicate guard at this level
        if any(item.event_id == action.item.event_id for item in state.items):
            return state
        return _with_items(state, state.items + (action.item,), action.at)

    if isinstance(action, RemoveItem):
        remaining = tuple(item for item in state.items if item.cart_id != action.cart_id)
        return _with_items(state, remaining, action.at)

    if isinstance(action, UpdateItem):
        items = _map_item(state, action.cart_id, lambda item: _patch_item(item, action.patch))
        return _with_items(state, items, action.at)

    if isinstance(action, ClearCart):
        return replace(
            state,
            items=(),
            total_items=0,
            total_price=Decimal("0"),
            total_audience=0,
            last_updated=action.at,
        )

    if isinstance(action, (ConfigureMoments, UpdateMoments)):
        items = _map_item(state, action.cart_id, lambda item: _apply_moments(item, action.moments))
        return _with_items(state, items, action.at)

    if isinstance(action, (LoadCart, LoadDraft)):
        return _with_items(state, action.items, action.at, loading=False)

    raise TypeError(f"Unknown cart action: {type(action).__name__}")
