"""Tests for the cart state machine"""
from dataclasses import dataclass, replace
from decimal import Decimal

import pytest

from momentcart.cart import reducer
from momentcart.cart.calculations import calculate_total_audience, calculate_total_price
from momentcart.cart.reducer import (
    AddItem,
    ClearCart,
    ClearError,
    ConfigureMoments,
    LoadCart,
    LoadDraft,
    RemoveItem,
    SetError,
    SetLoading,
    ToggleOpen,
    UpdateItem,
    UpdateMoments,
    initial_state,
    reduce,
)
from tests.factories import NOW, halftime, make_item, pre_game


def _assert_totals_consistent(state):
    assert state.total_items == len(state.items)
    assert state.total_price == calculate_total_price(state.items)
    assert state.total_audience == calculate_total_audience(state.items)


@pytest.fixture
def state():
    return initial_state(NOW)


@pytest.fixture
def filled(state):
    state = reduce(state, AddItem(make_item("evt-1"), at=NOW))
    return reduce(state, AddItem(make_item("evt-2"), at=NOW))


class TestAddRemove:

    def test_add_item_updates_totals(self, state):
        new_state = reduce(state, AddItem(make_item("evt-1"), at=NOW))

        assert new_state.total_items == 1
        assert new_state.total_price == Decimal("500000")
        assert new_state.total_audience == 150000
        assert new_state.last_updated == NOW
        _assert_totals_consistent(new_state)

    def test_add_does_not_mutate_previous_state(self, state):
        reduce(state, AddItem(make_item("evt-1"), at=NOW))

        assert state.items == ()

    def test_duplicate_event_is_noop(self, filled):
        again = reduce(filled, AddItem(make_item("evt-1"), at=NOW))

        assert again is filled
        assert [item.event_id for item in again.items] == ["evt-1", "evt-2"]

    def test_add_clears_error(self, state):
        errored = reduce(state, SetError("boom"))

        assert reduce(errored, AddItem(make_item(), at=NOW)).error is None

    def test_remove_item(self, filled):
        cart_id = filled.items[0].cart_id

        new_state = reduce(filled, RemoveItem(cart_id, at=NOW))

        assert [item.event_id for item in new_state.items] == ["evt-2"]
        _assert_totals_consistent(new_state)

    def test_remove_unknown_cart_id_keeps_items(self, filled):
        new_state = reduce(filled, RemoveItem("cart-missing", at=NOW))

        assert new_state.items == filled.items


class TestUpdate:

    def test_update_item_patch(self, filled):
        cart_id = filled.items[1].cart_id

        new_state = reduce(filled, UpdateItem(cart_id, {"estimated_price": Decimal("900000")}, at=NOW))

        assert new_state.items[1].estimated_price == Decimal("900000")
        assert new_state.total_price == Decimal("1400000")

    def test_update_item_unknown_field_raises(self, filled):
        with pytest.raises(TypeError):
            reduce(filled, UpdateItem(filled.items[0].cart_id, {"colour": "red"}, at=NOW))

    def test_configure_moments(self, filled):
        cart_id = filled.items[0].cart_id

        new_state = reduce(filled, ConfigureMoments(cart_id, (pre_game(), halftime()), at=NOW))

        item = new_state.items[0]
        assert item.is_configured
        assert item.final_price == Decimal("1300000")
        assert new_state.total_price == Decimal("1800000")
        _assert_totals_consistent(new_state)

    def test_update_moments_marks_configured(self, filled):
        cart_id = filled.items[0].cart_id

        new_state = reduce(filled, UpdateMoments(cart_id, (halftime(2),), at=NOW))

        assert new_state.items[0].is_configured
        assert new_state.items[0].final_price == Decimal("1600000")


class TestLifecycle:

    def test_clear_cart_preserves_loading_and_error(self, filled):
        busy = replace(filled, loading=True, error="previous failure")

        cleared = reduce(busy, ClearCart(at=NOW))

        assert cleared.items == ()
        assert cleared.total_items == 0
        assert cleared.total_price == 0
        assert cleared.total_audience == 0
        assert cleared.loading is True
        assert cleared.error == "previous failure"

    def test_clear_twice_is_stable(self, filled):
        once = reduce(filled, ClearCart(at=NOW))

        assert reduce(once, ClearCart(at=NOW)) == once

    def test_load_cart_replaces_items(self, filled):
        loading = reduce(filled, SetLoading(True))
        items = (make_item("evt-9"),)

        loaded = reduce(loading, LoadCart(items, at=NOW))

        assert loaded.items == items
        assert loaded.loading is False
        _assert_totals_consistent(loaded)

    def test_load_draft_replaces_items(self, filled):
        items = (make_item("evt-7"), make_item("evt-8"))

        loaded = reduce(filled, LoadDraft(items, at=NOW))

        assert [item.event_id for item in loaded.items] == ["evt-7", "evt-8"]
        _assert_totals_consistent(loaded)

    def test_toggle_open(self, state):
        opened = reduce(state, ToggleOpen())

        assert opened.is_open is True
        assert reduce(opened, ToggleOpen()).is_open is False

    def test_set_error_stops_loading(self, state):
        loading = reduce(state, SetLoading(True))

        errored = reduce(loading, SetError("Failed"))

        assert errored.error == "Failed"
        assert errored.loading is False
        assert reduce(errored, ClearError()).error is None


def test_same_inputs_same_state(state):
    item = make_item("evt-1")

    assert reduce(state, AddItem(item, at=NOW)) == reduce(state, AddItem(item, at=NOW))


def test_unknown_action_raises(state):
    @dataclass(frozen=True)
    class Explode:
        pass

    with pytest.raises(TypeError):
        reducer.reduce(state, Explode())
