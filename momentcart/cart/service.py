"""Cart manager: the only stateful, side-effecting layer of the cart.

Each mutating operation runs:
set loading -> clear error -> validate -> (reject | dispatch -> persist) -> clear loading.

Validation failures never raise; they set ``state.error`` and come back
as a failed ``OperationResult``. Storage and unexpected failures are
translated into ``CartError``, written to ``state.error`` and raised.
A failed write happens after the reducer already committed the
transition, so memory and storage differ until the next successful
write; the raised error carries a ``retry_action`` for that write.

Operations read the item list once at entry and validate against that
snapshot.
"""
import asyncio
import functools
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from momentcart import errors as msg
from momentcart.config import CartConfig
from momentcart.errors import CartError, CartErrorType, translate_error
from momentcart.logging import (
    get_logger,
    sanitize_id_for_logging,
    sanitize_string_for_logging,
    summarize_cart_for_logging,
)
from momentcart.models import MomentPrice, SportEvent
from momentcart.money import format_money, subtract, to_decimal

from . import validation
from .calculations import generate_analytics
from .models import (
    CartAnalytics,
    CartDraft,
    CartItem,
    CartState,
    CheckoutResult,
    CheckoutValidation,
    OperationResult,
    SelectedMoment,
    ValidationResult,
    utcnow,
)
from .reducer import (
    Action,
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
from .storage import CartStorage
from .utils import (
    convert_to_cart_item,
    generate_draft_id,
    generate_transaction_id,
    get_cart_item,
    get_cart_item_by_event_id,
    get_expired_items,
    get_expiring_items,
    is_event_in_cart,
    sanitize_input,
)

logger = get_logger(__name__)

CHECKOUT_SUCCESS_MESSAGE = "Purchase completed successfully"

# Fields callers may patch through update_event; price and configuration
# state are derived from selected_moments
_PATCHABLE_ITEM_FIELDS = frozenset({"added_at", "selected_moments", "estimated_price"})


def _operation(context: str):
    """Wrap a mutating operation with the loading flag and error translation."""
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self: "CartManager", *args, **kwargs):
            self.dispatch(SetLoading(True))
            self.dispatch(ClearError())
            try:
                return await fn(self, *args, **kwargs)
            except CartError:
                raise
            except Exception as e:
                raise self._fail(e, context) from e
            finally:
                self.dispatch(SetLoading(False))
        return wrapper
    return decorator


class CartManager:
    """
    Orchestrates validation, state transitions and persistence.

    Single-threaded: operations on one instance are expected to be
    awaited one after another on the same event loop.
    """

    def __init__(
        self,
        storage: CartStorage,
        config: Optional[CartConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.config = config or storage.config
        self.clock = clock
        self._state: CartState = initial_state(clock())
        self._drafts: List[CartDraft] = []

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def drafts(self) -> List[CartDraft]:
        return list(self._drafts)

    def dispatch(self, action: Action) -> CartState:
        self._state = reduce(self._state, action)
        return self._state

    # -- internals ----------------------------------------------------------

    def _reject(
        self,
        kind: CartErrorType,
        result: ValidationResult,
        context: str,
        recoverable: bool = True,
        message: Optional[str] = None,
    ) -> OperationResult:
        """Record a validation failure without dispatching or persisting."""
        if message is None:
            message = result.errors[0] if result.errors else msg.ERROR_CHECKOUT_VALIDATION
        error = CartError(kind, message, recoverable=recoverable, details=list(result.errors))
        self.dispatch(SetError(message))
        logger.warning(f"{context} rejected: {message}")
        return OperationResult(success=False, validation=result, error=error)

    def _fail(
        self,
        exc: BaseException,
        context: str,
        retry_action: Optional[Callable[[], Any]] = None,
    ) -> CartError:
        error = translate_error(exc, context)
        if retry_action is not None and error.retry_action is None:
            error.retry_action = retry_action
        self.dispatch(SetError(error.message))
        return error

    async def _save_items(self) -> None:
        await self.storage.save_cart_items(list(self._state.items))

    async def _persist_items(self, context: str) -> None:
        try:
            await self._save_items()
        except Exception as e:
            raise self._fail(e, context, retry_action=self._save_items) from e

    @staticmethod
    def _merge_warnings(*results: ValidationResult) -> ValidationResult:
        warnings: List[str] = []
        for result in results:
            warnings.extend(result.warnings)
        return ValidationResult(is_valid=True, errors=[], warnings=warnings)

    # -- lifecycle ----------------------------------------------------------

    @_operation("initialize")
    async def initialize(self) -> CartState:
        """Create the storage record if needed and load persisted items and drafts."""
        await self.storage.initialize_storage()
        items = await self.storage.load_cart_items()
        self.dispatch(LoadCart(tuple(items), at=self.clock()))
        self._drafts = await self.storage.load_drafts()
        logger.info(
            f"Cart initialized ({summarize_cart_for_logging(self._state)}, drafts={len(self._drafts)})"
        )
        return self._state

    @_operation("refresh_cart")
    async def refresh_cart(self) -> CartState:
        """Reload items from storage, discarding in-memory items."""
        items = await self.storage.load_cart_items()
        self.dispatch(LoadCart(tuple(items), at=self.clock()))
        return self._state

    # -- items --------------------------------------------------------------

    @_operation("add_event")
    async def add_event(self, event: SportEvent) -> OperationResult:
        items = self._state.items
        now = self.clock()

        event_result = validation.validate_event(event, now=now, config=self.config)
        if not event_result.is_valid:
            return self._reject(CartErrorType.EVENT_UNAVAILABLE, event_result, "add_event", recoverable=False)

        limits_result = validation.validate_cart_limits(items, event, config=self.config)
        if not limits_result.is_valid:
            return self._reject(CartErrorType.VALIDATION_ERROR, limits_result, "add_event")

        item = convert_to_cart_item(event, now=now)
        self.dispatch(AddItem(item, at=now))
        await self._persist_items("add_event")

        logger.info(f"Event added to cart: {sanitize_id_for_logging(event.id)}")
        return OperationResult(
            success=True,
            item=item,
            validation=self._merge_warnings(event_result, limits_result),
        )

    @_operation("remove_event")
    async def remove_event(self, cart_id: str) -> OperationResult:
        items = self._state.items
        item = get_cart_item(cart_id, items)
        if item is None:
            result = ValidationResult.from_lists([msg.ERROR_EVENT_NOT_IN_CART], [])
            return self._reject(CartErrorType.EVENT_UNAVAILABLE, result, "remove_event", recoverable=False)

        self.dispatch(RemoveItem(cart_id, at=self.clock()))
        await self._persist_items("remove_event")

        logger.info(f"Event removed from cart: {sanitize_id_for_logging(cart_id)}")
        return OperationResult(success=True, item=item)

    @_operation("update_event")
    async def update_event(self, cart_id: str, patch: Dict[str, Any]) -> OperationResult:
        """Patch cart-specific fields of an item."""
        items = self._state.items
        item = get_cart_item(cart_id, items)
        if item is None:
            result = ValidationResult.from_lists([msg.ERROR_EVENT_NOT_IN_CART], [])
            return self._reject(CartErrorType.EVENT_UNAVAILABLE, result, "update_event", recoverable=False)

        bad_fields = sorted(set(patch) - _PATCHABLE_ITEM_FIELDS)
        if bad_fields:
            result = ValidationResult.from_lists(
                [f"Cannot update cart item field(s): {', '.join(bad_fields)}"], [],
            )
            return self._reject(CartErrorType.VALIDATION_ERROR, result, "update_event")

        patch = dict(patch)
        moments_result = None
        moments = None
        if "selected_moments" in patch:
            moments = tuple(patch.pop("selected_moments") or ())
            moments_result = validation.validate_moments(moments, item.event, config=self.config)
            if not moments_result.is_valid:
                return self._reject(CartErrorType.CONFIGURATION_ERROR, moments_result, "update_event")

        now = self.clock()
        if patch:
            self.dispatch(UpdateItem(cart_id, patch, at=now))
        if moments is not None:
            action_type = UpdateMoments if item.is_configured else ConfigureMoments
            self.dispatch(action_type(cart_id, moments, at=now))
        await self._persist_items("update_event")

        return OperationResult(
            success=True,
            item=get_cart_item(cart_id, self._state.items),
            validation=moments_result,
        )

    @_operation("clear_cart")
    async def clear_cart(self) -> OperationResult:
        self.dispatch(ClearCart(at=self.clock()))
        try:
            await self.storage.clear_cart()
        except Exception as e:
            raise self._fail(e, "clear_cart", retry_action=self.storage.clear_cart) from e
        return OperationResult(success=True)

    # -- moments ------------------------------------------------------------

    @_operation("configure_moments")
    async def configure_moments(self, cart_id: str, moments: Iterable[SelectedMoment]) -> OperationResult:
        items = self._state.items
        moments = tuple(moments)

        item = get_cart_item(cart_id, items)
        if item is None:
            result = ValidationResult.from_lists([msg.ERROR_EVENT_NOT_IN_CART], [])
            return self._reject(CartErrorType.EVENT_UNAVAILABLE, result, "configure_moments", recoverable=False)

        moments_result = validation.validate_moments(moments, item.event, config=self.config)
        if not moments_result.is_valid:
            return self._reject(CartErrorType.CONFIGURATION_ERROR, moments_result, "configure_moments")

        action_type = UpdateMoments if item.is_configured else ConfigureMoments
        self.dispatch(action_type(cart_id, moments, at=self.clock()))
        await self._persist_items("configure_moments")

        return OperationResult(
            success=True,
            item=get_cart_item(cart_id, self._state.items),
            validation=moments_result,
        )

    @_operation("update_item_quantity")
    async def update_item_quantity(self, cart_id: str, moment: str, quantity: int) -> OperationResult:
        """Change one moment's quantity (minimum 1) and re-price the item."""
        items = self._state.items
        item = get_cart_item(cart_id, items)
        if item is None:
            result = ValidationResult.from_lists([msg.ERROR_EVENT_NOT_IN_CART], [])
            return self._reject(CartErrorType.EVENT_UNAVAILABLE, result, "update_item_quantity", recoverable=False)

        quantity = max(1, quantity)
        moments = tuple(
            SelectedMoment(m.moment, m.price, quantity, m.period, m.creative_files)
            if m.moment == moment else m
            for m in item.selected_moments
        )

        moments_result = validation.validate_moments(moments, item.event, config=self.config)
        if not moments_result.is_valid:
            return self._reject(CartErrorType.CONFIGURATION_ERROR, moments_result, "update_item_quantity")

        self.dispatch(UpdateMoments(cart_id, moments, at=self.clock()))
        await self._persist_items("update_item_quantity")

        return OperationResult(success=True, item=get_cart_item(cart_id, self._state.items))

    def get_moment_options(self, event_id: str) -> List[MomentPrice]:
        """Moment catalog of an event already in the cart, else empty."""
        item = get_cart_item_by_event_id(event_id, self._state.items)
        return list(item.event.moments) if item else []

    # -- ui state -----------------------------------------------------------

    def toggle_cart(self) -> CartState:
        return self.dispatch(ToggleOpen())

    # -- drafts -------------------------------------------------------------

    @_operation("save_draft")
    async def save_draft(
        self,
        name: str,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        draft_id: Optional[str] = None,
    ) -> OperationResult:
        """Snapshot the current items as a named draft. Passing ``draft_id`` overwrites it."""
        state = self._state
        name = sanitize_input(name or "")
        if not name:
            result = ValidationResult.from_lists(["Draft name is required"], [])
            return self._reject(CartErrorType.VALIDATION_ERROR, result, "save_draft")

        limits_result = validation.validate_draft_limits(self._drafts, draft_id, config=self.config)
        if not limits_result.is_valid:
            return self._reject(CartErrorType.VALIDATION_ERROR, limits_result, "save_draft")

        now = self.clock()
        existing = next((d for d in self._drafts if d.id == draft_id), None)
        draft = CartDraft(
            id=draft_id or generate_draft_id(),
            name=name,
            description=sanitize_input(description) if description else None,
            items=list(state.items),
            total_price=state.total_price,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            tags=list(tags or []),
        )

        try:
            await self.storage.save_draft(draft)
        except Exception as e:
            raise self._fail(e, "save_draft", retry_action=lambda: self.storage.save_draft(draft)) from e

        self._drafts = [d for d in self._drafts if d.id != draft.id] + [draft]
        logger.info(f"Draft saved: {sanitize_string_for_logging(name)}")
        return OperationResult(success=True, draft=draft)

    @_operation("load_draft")
    async def load_draft(self, draft_id: str) -> OperationResult:
        """Replace the live cart items with a draft's items."""
        draft = next((d for d in self._drafts if d.id == draft_id), None)
        if draft is None:
            self._drafts = await self.storage.load_drafts()
            draft = next((d for d in self._drafts if d.id == draft_id), None)
        if draft is None:
            result = ValidationResult.from_lists([msg.ERROR_DRAFT_NOT_FOUND], [])
            return self._reject(CartErrorType.VALIDATION_ERROR, result, "load_draft")

        self.dispatch(LoadDraft(tuple(draft.items), at=self.clock()))
        await self._persist_items("load_draft")
        return OperationResult(success=True, draft=draft)

    @_operation("delete_draft")
    async def delete_draft(self, draft_id: str) -> OperationResult:
        try:
            await self.storage.delete_draft(draft_id)
        except Exception as e:
            raise self._fail(e, "delete_draft", retry_action=lambda: self.storage.delete_draft(draft_id)) from e
        self._drafts = [d for d in self._drafts if d.id != draft_id]
        return OperationResult(success=True)

    async def list_drafts(self) -> List[CartDraft]:
        self._drafts = await self.storage.load_drafts()
        return list(self._drafts)

    # -- checkout -----------------------------------------------------------

    async def validate_checkout(self, wallet_balance: Decimal) -> CheckoutValidation:
        return validation.validate_checkout(
            self._state, to_decimal(wallet_balance), now=self.clock(), config=self.config,
        )

    @_operation("process_checkout")
    async def process_checkout(self, wallet_balance: Decimal) -> CheckoutResult:
        """
        Validate, simulate payment and empty the cart.

        Settlement against the wallet is external; the returned
        ``updated_balance`` is informational.
        """
        snapshot = self._state
        balance = to_decimal(wallet_balance)

        checkout = validation.validate_checkout(snapshot, balance, now=self.clock(), config=self.config)
        if not checkout.is_valid:
            if checkout.shortfall:
                shortfall_message = msg.ERROR_INSUFFICIENT_BALANCE.format(
                    shortfall=format_money(checkout.shortfall, self.config.currency),
                )
                rejected = self._reject(
                    CartErrorType.INSUFFICIENT_FUNDS, checkout, "process_checkout", message=shortfall_message,
                )
            else:
                rejected = self._reject(CartErrorType.VALIDATION_ERROR, checkout, "process_checkout")
            return CheckoutResult(
                success=False,
                message=rejected.error.message,
                validation=checkout,
            )

        # Simulated payment latency
        await asyncio.sleep(self.config.checkout_delay_seconds)
        transaction_id = generate_transaction_id()

        self.dispatch(ClearCart(at=self.clock()))
        try:
            await self.storage.clear_cart()
        except Exception as e:
            raise self._fail(e, "process_checkout", retry_action=self.storage.clear_cart) from e
        await self.storage.clear_session_data()

        logger.info(
            f"Checkout completed: {sanitize_id_for_logging(transaction_id)} "
            f"({summarize_cart_for_logging(snapshot)})"
        )
        return CheckoutResult(
            success=True,
            message=CHECKOUT_SUCCESS_MESSAGE,
            transaction_id=transaction_id,
            updated_balance=subtract(balance, snapshot.total_price),
            validation=checkout,
        )

    # -- housekeeping -------------------------------------------------------

    @_operation("resolve_cart_conflicts")
    async def resolve_cart_conflicts(self) -> CartState:
        """Merge stored items into memory, keeping the more recently added copy per event."""
        merged: List[CartItem] = list(self._state.items)
        stored = await self.storage.load_cart_items()

        for stored_item in stored:
            index = next((i for i, item in enumerate(merged) if item.event_id == stored_item.event_id), None)
            if index is None:
                merged.append(stored_item)
            elif stored_item.added_at > merged[index].added_at:
                merged[index] = stored_item

        self.dispatch(LoadCart(tuple(merged), at=self.clock()))
        await self._persist_items("resolve_cart_conflicts")
        return self._state

    @_operation("remove_expired_events")
    async def remove_expired_events(self) -> List[CartItem]:
        """Drop items whose event ended more than the grace period ago."""
        now = self.clock()
        expired = get_expired_items(self._state.items, self.config.expired_event_grace_days, now=now)
        if not expired:
            return []

        for item in expired:
            logger.info(f"Removing expired event: {sanitize_string_for_logging(item.event.title)}")
            self.dispatch(RemoveItem(item.cart_id, at=now))
        await self._persist_items("remove_expired_events")
        return expired

    def get_expiring_events(self) -> List[CartItem]:
        return get_expiring_items(self._state.items, self.config.expiring_window_hours, now=self.clock())

    async def get_health_score(self) -> int:
        """0-100 score penalizing near expiry, large storage, unconfigured and empty carts."""
        score = 100
        items = self._state.items

        if await self.storage.is_cart_near_expiry():
            score -= 20
        if await self.storage.get_storage_size() > 1024 * 1024:
            score -= 15

        if items:
            unconfigured = sum(1 for item in items if not item.is_configured)
            score -= int(unconfigured / len(items) * 30)
        else:
            score -= 10

        return max(0, score)

    # -- read-only helpers --------------------------------------------------

    def get_cart_analytics(self) -> CartAnalytics:
        return generate_analytics(self._state.items)

    def is_event_in_cart(self, event_id: str) -> bool:
        return is_event_in_cart(event_id, self._state.items)

    def get_cart_item_by_event_id(self, event_id: str) -> Optional[CartItem]:
        return get_cart_item_by_event_id(event_id, self._state.items)
