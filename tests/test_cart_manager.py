"""Tests for CartManager orchestration"""
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from momentcart import errors as msg
from momentcart.cart.service import CHECKOUT_SUCCESS_MESSAGE, CartManager
from momentcart.cart.storage import CartStorage
from momentcart.db import MemoryStore
from momentcart.errors import CartError, CartErrorType
from tests.factories import NOW, halftime, make_event, make_item, pre_game


class FlakyStore(MemoryStore):
    """Memory store whose writes fail while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    async def set(self, key, value, ex=None):
        if self.failing:
            raise ConnectionError("storage quota exceeded")
        await super().set(key, value, ex=ex)


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest_asyncio.fixture
async def flaky_manager(flaky_store, session_store, config, clock):
    storage = CartStorage(flaky_store, session_store=session_store, config=config, clock=clock)
    cart_manager = CartManager(storage, config=config, clock=clock)
    await cart_manager.initialize()
    return cart_manager


async def _add_configured(manager, event_id="evt-1", *moments):
    result = await manager.add_event(make_event(event_id))
    await manager.configure_moments(result.item.cart_id, moments or (pre_game(),))
    return manager.get_cart_item_by_event_id(event_id)


class TestInitialize:

    @pytest.mark.asyncio
    async def test_starts_empty(self, manager):
        assert manager.state.items == ()
        assert manager.state.loading is False
        assert manager.drafts == []

    @pytest.mark.asyncio
    async def test_loads_persisted_items(self, storage, config, clock):
        await storage.save_cart_items([make_item("evt-1"), make_item("evt-2")])

        cart_manager = CartManager(storage, config=config, clock=clock)
        await cart_manager.initialize()

        assert [item.event_id for item in cart_manager.state.items] == ["evt-1", "evt-2"]
        assert cart_manager.state.total_price == Decimal("1000000")


class TestAddEvent:

    @pytest.mark.asyncio
    async def test_add_event(self, manager, storage):
        result = await manager.add_event(make_event())

        assert result.success
        assert result.item.event_id == "evt-1"
        assert manager.state.total_items == 1
        assert manager.state.total_price == Decimal("500000")
        assert manager.state.error is None
        assert manager.state.loading is False
        assert [item.event_id for item in await storage.load_cart_items()] == ["evt-1"]

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, manager):
        await manager.add_event(make_event())

        result = await manager.add_event(make_event())

        assert not result.success
        assert result.error.kind is CartErrorType.VALIDATION_ERROR
        assert manager.state.error == msg.ERROR_EVENT_DUPLICATE
        assert manager.state.total_items == 1

    @pytest.mark.asyncio
    async def test_inactive_event_unavailable(self, manager):
        result = await manager.add_event(make_event(status="Cancelled"))

        assert not result.success
        assert result.error.kind is CartErrorType.EVENT_UNAVAILABLE
        assert result.error.recoverable is False
        assert manager.state.items == ()

    @pytest.mark.asyncio
    async def test_ceiling(self, manager):
        for i in range(10):
            assert (await manager.add_event(make_event(f"evt-{i}"))).success

        result = await manager.add_event(make_event("evt-extra"))

        assert not result.success
        assert manager.state.total_items == 10
        assert manager.state.error == msg.ERROR_CART_FULL.format(max_items=10)

    @pytest.mark.asyncio
    async def test_warnings_returned(self, manager):
        event = make_event(event_date=NOW + timedelta(hours=3))

        result = await manager.add_event(event)

        assert result.success
        assert result.validation.warnings

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, manager):
        await manager.add_event(make_event())
        await manager.add_event(make_event())
        assert manager.state.error is not None

        await manager.add_event(make_event("evt-2"))

        assert manager.state.error is None


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_discards_memory_items(self, manager, storage):
        await manager.add_event(make_event("evt-1"))
        await storage.save_cart_items([make_item("evt-2")])

        state = await manager.refresh_cart()

        assert [item.event_id for item in state.items] == ["evt-2"]
        assert state.loading is False


class TestRemoveAndUpdate:

    @pytest.mark.asyncio
    async def test_remove_event(self, manager, storage):
        added = await manager.add_event(make_event())

        result = await manager.remove_event(added.item.cart_id)

        assert result.success
        assert manager.state.items == ()
        assert await storage.load_cart_items() == []

    @pytest.mark.asyncio
    async def test_remove_unknown(self, manager):
        result = await manager.remove_event("cart-missing")

        assert not result.success
        assert manager.state.error == msg.ERROR_EVENT_NOT_IN_CART

    @pytest.mark.asyncio
    async def test_update_event_patch(self, manager):
        added = await manager.add_event(make_event())

        result = await manager.update_event(added.item.cart_id, {"estimated_price": Decimal("600000")})

        assert result.success
        assert manager.state.total_price == Decimal("600000")

    @pytest.mark.asyncio
    async def test_update_event_rejects_identity_fields(self, manager):
        added = await manager.add_event(make_event())

        result = await manager.update_event(added.item.cart_id, {"cart_id": "cart-other"})

        assert not result.success
        assert result.error.kind is CartErrorType.VALIDATION_ERROR
        assert manager.state.items[0].cart_id == added.item.cart_id

    @pytest.mark.asyncio
    async def test_update_event_validates_moments(self, manager):
        added = await manager.add_event(make_event())

        result = await manager.update_event(
            added.item.cart_id,
            {"selected_moments": [pre_game(price=Decimal("1"))]},
        )

        assert not result.success
        assert result.error.kind is CartErrorType.CONFIGURATION_ERROR

    @pytest.mark.asyncio
    async def test_update_event_moments_reprice_item(self, manager):
        item = await _add_configured(manager, "evt-1", pre_game())

        result = await manager.update_event(item.cart_id, {"selected_moments": [halftime()]})

        assert result.success
        assert result.item.is_configured
        assert result.item.final_price == Decimal("800000")
        assert manager.state.total_price == Decimal("800000")

    @pytest.mark.asyncio
    async def test_update_event_moments_configure_new_item(self, manager):
        added = await manager.add_event(make_event())

        result = await manager.update_event(
            added.item.cart_id,
            {"selected_moments": [pre_game(2)], "estimated_price": Decimal("1")},
        )

        assert result.success
        assert result.item.is_configured
        assert result.item.final_price == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_update_event_empty_moments_rejected(self, manager):
        added = await manager.add_event(make_event())

        result = await manager.update_event(added.item.cart_id, {"selected_moments": []})

        assert not result.success
        assert manager.state.items[0].is_configured is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("patch", [{"is_configured": True}, {"final_price": Decimal("1")}])
    async def test_update_event_rejects_derived_fields(self, manager, patch):
        added = await manager.add_event(make_event())

        result = await manager.update_event(added.item.cart_id, patch)

        assert not result.success
        assert result.error.kind is CartErrorType.VALIDATION_ERROR
        assert manager.state.items[0] == added.item

    @pytest.mark.asyncio
    async def test_flagging_configured_cannot_bypass_checkout(self, manager):
        added = await manager.add_event(make_event())
        await manager.update_event(added.item.cart_id, {"is_configured": True})

        result = await manager.process_checkout(Decimal("10000000"))

        assert not result.success
        assert manager.state.total_items == 1


class TestMoments:

    @pytest.mark.asyncio
    async def test_configure_moments(self, manager):
        added = await manager.add_event(make_event())

        result = await manager.configure_moments(added.item.cart_id, [pre_game(), halftime()])

        assert result.success
        assert result.item.is_configured
        assert result.item.final_price == Decimal("1300000")
        assert manager.state.total_price == Decimal("1300000")

    @pytest.mark.asyncio
    async def test_moment_bound(self, manager):
        added = await manager.add_event(make_event(max_moments=3))

        result = await manager.configure_moments(added.item.cart_id, [pre_game(2), halftime(2)])

        assert not result.success
        assert result.error.kind is CartErrorType.CONFIGURATION_ERROR
        assert manager.state.error == msg.ERROR_MOMENTS_EVENT_MAX.format(count=3)
        assert manager.state.items[0].is_configured is False

    @pytest.mark.asyncio
    async def test_reconfigure(self, manager):
        item = await _add_configured(manager)

        result = await manager.configure_moments(item.cart_id, [halftime()])

        assert result.success
        assert result.item.final_price == Decimal("800000")

    @pytest.mark.asyncio
    async def test_update_item_quantity(self, manager):
        item = await _add_configured(manager)

        result = await manager.update_item_quantity(item.cart_id, "pre-game", 2)

        assert result.success
        assert result.item.final_price == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_update_item_quantity_over_event_max(self, manager):
        item = await _add_configured(manager)

        result = await manager.update_item_quantity(item.cart_id, "pre-game", 5)

        assert not result.success
        assert manager.get_cart_item_by_event_id("evt-1").final_price == Decimal("500000")

    @pytest.mark.asyncio
    async def test_moment_options(self, manager):
        await manager.add_event(make_event())

        options = manager.get_moment_options("evt-1")

        assert [option.moment for option in options] == ["pre-game", "halftime"]
        assert manager.get_moment_options("evt-unknown") == []


class TestClearCart:

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, manager, storage):
        await manager.add_event(make_event())

        first = await manager.clear_cart()
        second = await manager.clear_cart()

        assert first.success and second.success
        assert manager.state.items == ()
        assert manager.state.total_price == 0
        assert await storage.load_cart_items() == []

    @pytest.mark.asyncio
    async def test_toggle(self, manager):
        assert manager.toggle_cart().is_open is True
        assert manager.toggle_cart().is_open is False


class TestCheckout:

    @pytest.mark.asyncio
    async def test_successful_checkout(self, manager, storage):
        await _add_configured(manager)

        result = await manager.process_checkout(Decimal("1000000"))

        assert result.success
        assert result.message == CHECKOUT_SUCCESS_MESSAGE
        assert result.transaction_id.startswith("tx-")
        assert result.updated_balance == Decimal("500000")
        assert manager.state.items == ()
        assert await storage.load_cart_items() == []

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, manager):
        await _add_configured(manager, "evt-1", pre_game(), halftime())

        result = await manager.process_checkout(Decimal("1000000"))

        assert not result.success
        assert result.validation.shortfall == Decimal("300000")
        assert manager.state.error == result.message
        assert manager.state.total_items == 1

    @pytest.mark.asyncio
    async def test_shortfall_message_matches_kind_with_other_errors(self, manager):
        await manager.add_event(make_event())

        result = await manager.process_checkout(Decimal("100000"))

        assert not result.success
        assert result.validation.errors[0] == msg.ERROR_UNCONFIGURED_ITEMS.format(count=1)
        assert result.message == msg.ERROR_INSUFFICIENT_BALANCE.format(shortfall="$400,000 COP")
        assert manager.state.error == result.message

    @pytest.mark.asyncio
    async def test_validation_failure_without_shortfall(self, manager):
        await manager.add_event(make_event())

        result = await manager.process_checkout(Decimal("10000000"))

        assert result.message == msg.ERROR_UNCONFIGURED_ITEMS.format(count=1)

    @pytest.mark.asyncio
    async def test_unconfigured_cart_blocked(self, manager):
        await manager.add_event(make_event())

        result = await manager.process_checkout(Decimal("10000000"))

        assert not result.success
        assert msg.ERROR_UNCONFIGURED_ITEMS.format(count=1) in result.validation.errors

    @pytest.mark.asyncio
    async def test_validate_checkout_has_no_side_effects(self, manager):
        await manager.add_event(make_event())

        checkout = await manager.validate_checkout(Decimal("0"))

        assert not checkout.is_valid
        assert manager.state.error is None


class TestDrafts:

    @pytest.mark.asyncio
    async def test_draft_round_trip(self, manager):
        await manager.add_event(make_event("evt-1"))
        await manager.add_event(make_event("evt-2"))
        saved_items = manager.state.items

        saved = await manager.save_draft("Derby weekend", description="Two matches", tags=["derby"])
        await manager.clear_cart()
        loaded = await manager.load_draft(saved.draft.id)

        assert loaded.success
        assert manager.state.items == saved_items
        assert saved.draft.total_price == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_draft_persisted(self, manager, storage):
        await manager.add_event(make_event())

        saved = await manager.save_draft("<b>Plan</b>")

        drafts = await storage.load_drafts()
        assert [d.id for d in drafts] == [saved.draft.id]
        assert drafts[0].name == "bPlan/b"

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, manager):
        result = await manager.save_draft("   ")

        assert not result.success
        assert await manager.list_drafts() == []

    @pytest.mark.asyncio
    async def test_load_missing_draft(self, manager):
        result = await manager.load_draft("draft-missing")

        assert not result.success
        assert manager.state.error == msg.ERROR_DRAFT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_draft(self, manager):
        saved = await manager.save_draft("Temp")

        await manager.delete_draft(saved.draft.id)

        assert await manager.list_drafts() == []

    @pytest.mark.asyncio
    async def test_overwrite_keeps_created_at(self, manager):
        saved = await manager.save_draft("First")

        again = await manager.save_draft("Second", draft_id=saved.draft.id)

        drafts = await manager.list_drafts()
        assert len(drafts) == 1
        assert drafts[0].name == "Second"
        assert again.draft.created_at == saved.draft.created_at


class TestStorageFailures:

    @pytest.mark.asyncio
    async def test_failed_write_sets_error_and_raises(self, flaky_manager, flaky_store):
        flaky_store.failing = True

        with pytest.raises(CartError) as exc_info:
            await flaky_manager.add_event(make_event())

        error = exc_info.value
        assert error.kind is CartErrorType.STORAGE_ERROR
        assert error.retry_action is not None
        assert flaky_manager.state.error == error.message
        assert flaky_manager.state.loading is False
        # In-memory transition already applied
        assert flaky_manager.state.total_items == 1

    @pytest.mark.asyncio
    async def test_retry_action_persists_state(self, flaky_manager, flaky_store):
        flaky_store.failing = True
        with pytest.raises(CartError) as exc_info:
            await flaky_manager.add_event(make_event())

        flaky_store.failing = False
        await exc_info.value.retry_action()

        items = await flaky_manager.storage.load_cart_items()
        assert [item.event_id for item in items] == ["evt-1"]

    @pytest.mark.asyncio
    async def test_failed_draft_save(self, flaky_manager, flaky_store):
        flaky_store.failing = True

        with pytest.raises(CartError):
            await flaky_manager.save_draft("Plan")

        assert flaky_manager.drafts == []


class TestHousekeeping:

    @pytest.mark.asyncio
    async def test_resolve_conflicts_keeps_newer_copy(self, manager, storage):
        await manager.add_event(make_event("evt-1"))
        newer = replace(make_item("evt-1"), added_at=NOW + timedelta(hours=1))
        await storage.save_cart_items([newer, make_item("evt-2")])

        state = await manager.resolve_cart_conflicts()

        assert [item.event_id for item in state.items] == ["evt-1", "evt-2"]
        assert state.items[0].cart_id == newer.cart_id

    @pytest.mark.asyncio
    async def test_remove_expired_events(self, manager):
        await manager.add_event(make_event("evt-old", event_date=NOW - timedelta(days=10)))
        await manager.add_event(make_event("evt-recent", event_date=NOW - timedelta(days=3)))

        removed = await manager.remove_expired_events()

        assert [item.event_id for item in removed] == ["evt-old"]
        assert [item.event_id for item in manager.state.items] == ["evt-recent"]

    @pytest.mark.asyncio
    async def test_expiring_events(self, manager):
        await manager.add_event(make_event("evt-soon", event_date=NOW + timedelta(hours=24)))
        await manager.add_event(make_event("evt-later"))

        assert [item.event_id for item in manager.get_expiring_events()] == ["evt-soon"]

    @pytest.mark.asyncio
    async def test_health_score(self, manager):
        assert await manager.get_health_score() == 90

        await manager.add_event(make_event())

        assert await manager.get_health_score() == 70

    @pytest.mark.asyncio
    async def test_analytics(self, manager):
        await manager.add_event(make_event())

        analytics = manager.get_cart_analytics()

        assert analytics.total_events == 1
        assert manager.is_event_in_cart("evt-1")
        assert not manager.is_event_in_cart("evt-2")
