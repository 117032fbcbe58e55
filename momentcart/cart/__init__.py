"""Cart package: models, rules, reducer, storage and manager."""
from .models import (
    CartAnalytics,
    CartDraft,
    CartItem,
    CartState,
    CheckoutResult,
    CheckoutValidation,
    OperationResult,
    Period,
    SelectedMoment,
    ValidationResult,
)
from .service import CartManager
from .storage import CartStorage

__all__ = [
    "CartAnalytics",
    "CartDraft",
    "CartItem",
    "CartManager",
    "CartState",
    "CartStorage",
    "CheckoutResult",
    "CheckoutValidation",
    "OperationResult",
    "Period",
    "SelectedMoment",
    "ValidationResult",
]
