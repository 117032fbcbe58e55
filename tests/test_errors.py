"""Tests for error translation"""
import json

import httpx
import pytest

from momentcart.errors import (
    CartError,
    CartErrorType,
    DEFAULT_RECOVERY_ACTION,
    StorageError,
    get_recovery_action,
    translate_error,
)


@pytest.mark.parametrize(
    "error, kind",
    [
        (httpx.ConnectError("refused"), CartErrorType.NETWORK_ERROR),
        (ConnectionError("reset by peer"), CartErrorType.NETWORK_ERROR),
        (TimeoutError(), CartErrorType.NETWORK_ERROR),
        (StorageError("write failed"), CartErrorType.STORAGE_ERROR),
        (json.JSONDecodeError("bad", "{", 0), CartErrorType.STORAGE_ERROR),
        (RuntimeError("Storage quota exceeded"), CartErrorType.STORAGE_ERROR),
        (ValueError("Validation failed for field"), CartErrorType.VALIDATION_ERROR),
        (LookupError("Event not found"), CartErrorType.EVENT_UNAVAILABLE),
        (RuntimeError("Event unavailable"), CartErrorType.EVENT_UNAVAILABLE),
        (RuntimeError("Invalid moments selection"), CartErrorType.CONFIGURATION_ERROR),
        (RuntimeError("Insufficient balance"), CartErrorType.INSUFFICIENT_FUNDS),
        (RuntimeError("something odd"), CartErrorType.NETWORK_ERROR),
    ],
)
def test_translate_error_kinds(error, kind):
    assert translate_error(error).kind is kind


def test_unavailable_is_not_recoverable():
    error = translate_error(RuntimeError("Event not found"))

    assert error.recoverable is False
    assert error.recovery_hint == "Look for similar available events"


def test_unknown_error_is_recoverable():
    error = translate_error(RuntimeError("boom"))

    assert error.recoverable is True
    assert error.details == "boom"


def test_cart_error_passes_through():
    original = CartError(CartErrorType.INSUFFICIENT_FUNDS, "Need more funds")

    assert translate_error(original) is original


def test_validation_keeps_message():
    error = translate_error(ValueError("Validation failed: name"))

    assert error.message == "Validation failed: name"


def test_recovery_hint_defaults_from_kind():
    error = CartError(CartErrorType.INSUFFICIENT_FUNDS, "Need more funds")

    assert error.recovery_hint == "Recharge your wallet or save the cart as a draft"
    assert error.to_dict() == {
        "kind": "INSUFFICIENT_FUNDS",
        "message": "Need more funds",
        "recoverable": True,
        "recovery_hint": "Recharge your wallet or save the cart as a draft",
    }


def test_every_kind_has_recovery_action():
    for kind in CartErrorType:
        assert get_recovery_action(kind) != DEFAULT_RECOVERY_ACTION
