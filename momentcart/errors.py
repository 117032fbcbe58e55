"""
Cart error taxonomy.

Centralized error messages plus the translation of raw exceptions into
typed ``CartError`` values with a recovery hint.
"""
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from momentcart.logging import get_logger

logger = get_logger(__name__)


# Event errors
ERROR_EVENT_INACTIVE = "The event is not active and cannot be added to the cart"
ERROR_EVENT_TOO_OLD = "The event took place more than {days} days ago"
ERROR_EVENT_NOT_IN_CART = "Event not found in cart"
ERROR_EVENT_DUPLICATE = "This event is already in your cart"
ERROR_CART_FULL = "You cannot add more than {max_items} events to the cart"

# Moment errors
ERROR_MOMENTS_MIN = "You must select at least {count} moment(s)"
ERROR_MOMENTS_MAX = "You cannot select more than {count} moments"
ERROR_MOMENTS_EVENT_MAX = "The event only allows {count} moments"
ERROR_MOMENT_UNKNOWN = 'The moment "{moment}" is not available for this event'
ERROR_MOMENT_PRICE_MISMATCH = 'The price of moment "{moment}" does not match the current price'
ERROR_MOMENT_QUANTITY = 'The quantity of moment "{moment}" must be greater than 0'

# Checkout errors
ERROR_CART_EMPTY = "The cart is empty"
ERROR_UNCONFIGURED_ITEMS = "{count} event(s) do not have configured moments"
ERROR_TOTAL_LIMIT = "The cart total ({total}) exceeds the maximum allowed"
ERROR_INSUFFICIENT_BALANCE = "Insufficient balance. You need {shortfall} more"
ERROR_CHECKOUT_VALIDATION = "Checkout validation failed"

# Draft errors
ERROR_DRAFT_NOT_FOUND = "Draft not found"
ERROR_DRAFT_LIMIT = "You cannot keep more than {max_drafts} drafts"

# Storage errors
ERROR_STORAGE_SAVE_ITEMS = "Failed to save cart items to storage"
ERROR_STORAGE_SAVE_DRAFT = "Failed to save draft to storage"
ERROR_STORAGE_DELETE_DRAFT = "Failed to delete draft from storage"
ERROR_STORAGE_CLEAR = "Failed to clear cart storage"
ERROR_STORAGE_EXPIRY = "Failed to extend cart expiry in storage"


class CartErrorType(str, Enum):
    """Kinds of errors surfaced to the UI layer."""
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    EVENT_UNAVAILABLE = "EVENT_UNAVAILABLE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"


RECOVERY_ACTIONS = {
    CartErrorType.NETWORK_ERROR: "Check your internet connection and try again",
    CartErrorType.INSUFFICIENT_FUNDS: "Recharge your wallet or save the cart as a draft",
    CartErrorType.EVENT_UNAVAILABLE: "Look for similar available events",
    CartErrorType.CONFIGURATION_ERROR: "Review the moment configuration",
    CartErrorType.STORAGE_ERROR: "Free up storage space and retry",
    CartErrorType.VALIDATION_ERROR: "Review the entered data",
}

DEFAULT_RECOVERY_ACTION = "Contact support if the problem persists"


def get_recovery_action(kind: CartErrorType) -> str:
    """Human-readable recovery hint for an error kind."""
    return RECOVERY_ACTIONS.get(kind, DEFAULT_RECOVERY_ACTION)


class StorageError(Exception):
    """Raised by the persistence adapter when a write fails."""


class CartError(Exception):
    """Typed cart error returned or raised at the CartManager boundary."""

    def __init__(
        self,
        kind: CartErrorType,
        message: str,
        recoverable: bool = True,
        recovery_hint: Optional[str] = None,
        details: Any = None,
        retry_action: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint or get_recovery_action(kind)
        self.details = details
        self.retry_action = retry_action

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "recovery_hint": self.recovery_hint,
        }

    def __repr__(self) -> str:
        return f"CartError(kind={self.kind.value!r}, message={self.message!r})"


def _matches(message: str, *needles: str) -> bool:
    return any(needle in message for needle in needles)


def translate_error(error: BaseException, context: str = "cart") -> CartError:
    """
    Map a raw exception to a typed CartError.

    Type checks run first, then message substrings. Unknown errors map to
    a recoverable NETWORK_ERROR.

    Args:
        error: The exception to translate
        context: Operation name, used only for logging

    Returns:
        CartError with kind, message, recoverable flag and recovery hint
    """
    logger.error(f"Cart error in {context}: {type(error).__name__}: {error}")

    if isinstance(error, CartError):
        return error

    message = str(error)
    lowered = message.lower()

    if isinstance(error, (httpx.HTTPError, ConnectionError, TimeoutError)):
        return CartError(
            CartErrorType.NETWORK_ERROR,
            "Connection error. Check your internet connection and try again.",
            recoverable=True,
            details=message,
        )

    if isinstance(error, (StorageError, json.JSONDecodeError)) or "storage" in lowered:
        return CartError(
            CartErrorType.STORAGE_ERROR,
            "Storage error. Free up space and try again.",
            recoverable=True,
            details=message,
        )

    if "validation" in lowered:
        return CartError(
            CartErrorType.VALIDATION_ERROR,
            message or "Cart validation error.",
            recoverable=True,
        )

    if _matches(lowered, "unavailable", "not found"):
        return CartError(
            CartErrorType.EVENT_UNAVAILABLE,
            "The event is no longer available.",
            recoverable=False,
            details=message,
        )

    if _matches(lowered, "configuration", "moments"):
        return CartError(
            CartErrorType.CONFIGURATION_ERROR,
            "Error configuring the event moments.",
            recoverable=True,
            details=message,
        )

    if _matches(lowered, "insufficient", "balance"):
        return CartError(
            CartErrorType.INSUFFICIENT_FUNDS,
            "Insufficient balance to complete the purchase.",
            recoverable=True,
            details=message,
        )

    return CartError(
        CartErrorType.NETWORK_ERROR,
        "An unexpected error occurred. Please try again.",
        recoverable=True,
        details=message,
    )
