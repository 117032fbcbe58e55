"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from momentcart.errors import CartError
from momentcart.models import SportEvent
from momentcart.money import multiply, to_decimal


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Period(str, Enum):
    """Game segment a moment belongs to."""
    FIRST_HALF = "FirstHalf"
    HALFTIME = "Halftime"
    SECOND_HALF = "SecondHalf"


@dataclass(frozen=True)
class SelectedMoment:
    """A moment kind chosen for an event, with quantity and optional creatives."""
    moment: str
    price: Decimal
    quantity: int = 1
    period: Optional[Period] = None
    creative_files: Tuple[str, ...] = ()

    def __post_init__(self):
        # Normalize numeric fields
        object.__setattr__(self, "price", to_decimal(self.price))
        if self.period is not None and not isinstance(self.period, Period):
            object.__setattr__(self, "period", Period(self.period))
        object.__setattr__(self, "creative_files", tuple(self.creative_files))

    @property
    def total_price(self) -> Decimal:
        """Price for all units of this moment."""
        return multiply(self.price, self.quantity)


@dataclass(frozen=True)
class CartItem:
    """
    An event placed in the cart.

    Wraps the read-only catalog record and adds cart-specific fields.
    ``final_price`` stays None until moments are explicitly configured.
    """
    event: SportEvent
    cart_id: str
    added_at: datetime = field(default_factory=utcnow)
    selected_moments: Tuple[SelectedMoment, ...] = ()
    is_configured: bool = False
    estimated_price: Decimal = Decimal("0")
    final_price: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "selected_moments", tuple(self.selected_moments))
        object.__setattr__(self, "estimated_price", to_decimal(self.estimated_price))
        if self.final_price is not None:
            object.__setattr__(self, "final_price", to_decimal(self.final_price))

    @property
    def event_id(self) -> str:
        return self.event.id


@dataclass(frozen=True)
class CartState:
    """Live cart state. Only produced by the reducer."""
    items: Tuple[CartItem, ...] = ()
    total_items: int = 0
    total_price: Decimal = Decimal("0")
    total_audience: int = 0
    is_open: bool = False
    loading: bool = False
    error: Optional[str] = None
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class CartDraft:
    """Named snapshot of a cart saved for later completion."""
    id: str
    name: str
    items: List[CartItem]
    total_price: Decimal = Decimal("0")
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    tags: List[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Uniform validation outcome. Errors block, warnings do not."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_lists(cls, errors: List[str], warnings: List[str]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=errors, warnings=warnings)


@dataclass
class CheckoutValidation(ValidationResult):
    """Checkout validation with the balance figures behind it."""
    required_balance: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")
    shortfall: Optional[Decimal] = None


@dataclass
class OperationResult:
    """Outcome of a mutating CartManager operation."""
    success: bool
    item: Optional[CartItem] = None
    draft: Optional[CartDraft] = None
    validation: Optional[ValidationResult] = None
    error: Optional[CartError] = None


@dataclass
class CheckoutResult:
    """Outcome of a simulated checkout."""
    success: bool
    message: str
    transaction_id: Optional[str] = None
    updated_balance: Optional[Decimal] = None
    validation: Optional[CheckoutValidation] = None


@dataclass
class AudienceReach:
    unique: int = 0
    overlap: int = 0
    demographics: Dict[str, int] = field(default_factory=dict)


@dataclass
class CartAnalytics:
    """Derived cart figures plus static recommendations."""
    total_events: int
    total_price: Decimal
    total_audience: int
    cost_per_impression: Decimal
    average_price_per_event: Decimal
    audience_reach: AudienceReach = field(default_factory=AudienceReach)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class CartStats:
    """Configuration progress figures for a list of items."""
    total_items: int
    total_price: Decimal
    total_audience: int
    configured_items: int
    unconfigured_items: int
    average_price: Decimal
    cost_per_impression: Decimal
    completion_percentage: Decimal


@dataclass
class CartStatistics:
    """Storage housekeeping figures."""
    item_count: int
    storage_size: int
    draft_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    days_until_expiry: int = 0


@dataclass
class SessionData:
    """Transient UI state that must not outlive the session."""
    current_configuring: Optional[str] = None
    checkout_step: Optional[int] = None
    temp_selections: Optional[dict] = None
