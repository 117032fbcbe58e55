"""Event Catalog Models - Pydantic models for read-only catalog records."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel

from momentcart.money import to_decimal as _to_decimal


class EventStatus(str, Enum):
    """Catalog event status."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    CANCELLED = "Cancelled"
    FINISHED = "Finished"


class MomentPrice(BaseModel):
    """A moment kind with its price, used for both catalog and price table."""
    moment: str
    price: Decimal = Decimal("0")

    class Config:
        frozen = True
        extra = "ignore"

    @field_validator("price", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return _to_decimal(v)


class SportEvent(BaseModel):
    """
    Sporting event as supplied by the Event Catalog.

    Accepts both snake_case and the catalog's camelCase keys
    (``eventDate``, ``momentPrices``, ``estimatedAttendanceTv`` ...).
    """
    id: str
    status: str = EventStatus.ACTIVE.value
    event_date: datetime
    event_time: Optional[str] = None
    home_team_name: Optional[str] = None
    away_team_name: Optional[str] = None
    stadium_name: Optional[str] = None
    broadcast_channels: Optional[str] = None
    moments: List[MomentPrice] = []  # moment catalog
    moment_prices: List[MomentPrice] = []  # current price table
    max_moments: int = 0
    estimated_attendance: int = 0
    estimated_attendance_tv: int = 0

    class Config:
        frozen = True
        extra = "ignore"  # Ignore unknown catalog fields
        alias_generator = to_camel
        populate_by_name = True

    @field_validator("event_date", mode="after")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        # Catalog dates without offset are UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("estimated_attendance", "estimated_attendance_tv", "max_moments", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None else v

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE.value

    @property
    def total_audience(self) -> int:
        """Stadium plus TV audience."""
        return (self.estimated_attendance or 0) + (self.estimated_attendance_tv or 0)

    @property
    def title(self) -> str:
        if self.home_team_name and self.away_team_name:
            return f"{self.home_team_name} vs {self.away_team_name}"
        return self.id

    def catalog_moment(self, moment: str) -> Optional[MomentPrice]:
        """Find a moment in the catalog."""
        return next((m for m in self.moments if m.moment == moment), None)

    def current_price(self, moment: str) -> Optional[Decimal]:
        """Current price-table price for a moment kind, or None."""
        entry = next((p for p in self.moment_prices if p.moment == moment), None)
        return entry.price if entry else None
