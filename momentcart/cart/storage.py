"""
Cart persistence adapter.

The whole cart record lives under one namespaced key of a durable
key-value store; transient UI state lives under a separate key of a
session store. This module is the only place where dates are converted
to and from their ISO string form.

Failure policy:
- reads (``load_cart_items``, ``load_drafts``, statistics) never raise;
  an unreadable record degrades to "empty"
- writes raise ``StorageError`` so the caller can retry or warn
"""
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from momentcart import errors as msg
from momentcart.config import CartConfig
from momentcart.db import KeyValueStore, MemoryStore
from momentcart.errors import StorageError
from momentcart.logging import get_logger, sanitize_id_for_logging
from momentcart.models import SportEvent
from momentcart.money import to_decimal

from .models import (
    CartDraft,
    CartItem,
    CartStatistics,
    Period,
    SelectedMoment,
    SessionData,
    utcnow,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Serialization boundary
# ---------------------------------------------------------------------------

def _dump_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dump_money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def moment_to_dict(moment: SelectedMoment) -> dict:
    return {
        "moment": moment.moment,
        "price": _dump_money(moment.price),
        "quantity": moment.quantity,
        "period": moment.period.value if moment.period else None,
        "creativeFiles": list(moment.creative_files),
    }


def moment_from_dict(data: dict) -> SelectedMoment:
    period = data.get("period")
    return SelectedMoment(
        moment=data["moment"],
        price=to_decimal(data.get("price")),
        quantity=int(data.get("quantity", 1)),
        period=Period(period) if period else None,
        creative_files=tuple(data.get("creativeFiles") or ()),
    )


def item_to_dict(item: CartItem) -> dict:
    return {
        "event": item.event.model_dump(mode="json", by_alias=True),
        "cartId": item.cart_id,
        "addedAt": _dump_datetime(item.added_at),
        "selectedMoments": [moment_to_dict(m) for m in item.selected_moments],
        "isConfigured": item.is_configured,
        "estimatedPrice": _dump_money(item.estimated_price),
        "finalPrice": _dump_money(item.final_price),
    }


def item_from_dict(data: dict) -> CartItem:
    final_price = data.get("finalPrice")
    return CartItem(
        event=SportEvent.model_validate(data["event"]),
        cart_id=data["cartId"],
        added_at=_parse_datetime(data.get("addedAt")) or utcnow(),
        selected_moments=tuple(moment_from_dict(m) for m in data.get("selectedMoments") or []),
        is_configured=bool(data.get("isConfigured", False)),
        estimated_price=to_decimal(data.get("estimatedPrice")),
        final_price=to_decimal(final_price) if final_price is not None else None,
    )


def draft_to_dict(draft: CartDraft) -> dict:
    return {
        "id": draft.id,
        "name": draft.name,
        "description": draft.description,
        "items": [item_to_dict(item) for item in draft.items],
        "totalPrice": _dump_money(draft.total_price),
        "createdAt": _dump_datetime(draft.created_at),
        "updatedAt": _dump_datetime(draft.updated_at),
        "tags": list(draft.tags),
    }


def draft_from_dict(data: dict) -> CartDraft:
    return CartDraft(
        id=data["id"],
        name=data.get("name", ""),
        description=data.get("description"),
        items=[item_from_dict(item) for item in data.get("items") or []],
        total_price=to_decimal(data.get("totalPrice")),
        created_at=_parse_datetime(data.get("createdAt")) or utcnow(),
        updated_at=_parse_datetime(data.get("updatedAt")) or utcnow(),
        tags=list(data.get("tags") or []),
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class CartStorage:
    """
    Versioned read/write of cart items and drafts.

    Record shape::

        {
          "version": "1.0.0",
          "cart": {"items": [...], "metadata": {"createdAt", "updatedAt", "expiresAt"}},
          "drafts": [...],
          "preferences": {"autoSave", "notifications", "defaultMomentTypes"}
        }
    """

    def __init__(
        self,
        store: KeyValueStore,
        session_store: Optional[KeyValueStore] = None,
        config: Optional[CartConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.session_store = session_store if session_store is not None else MemoryStore()
        self.config = config or CartConfig()
        self.clock = clock

    @property
    def key(self) -> str:
        return self.config.cart_storage_key

    @property
    def session_key(self) -> str:
        return self.config.session_storage_key

    def _default_schema(self) -> dict:
        now = self.clock()
        return {
            "version": self.config.storage_version,
            "cart": {
                "items": [],
                "metadata": {
                    "createdAt": _dump_datetime(now),
                    "updatedAt": _dump_datetime(now),
                    "expiresAt": _dump_datetime(now + timedelta(days=self.config.cart_expiry_days)),
                },
            },
            "drafts": [],
            "preferences": {
                "autoSave": True,
                "notifications": True,
                "defaultMomentTypes": [],
            },
        }

    # -- raw access ---------------------------------------------------------

    async def _read(self) -> Optional[dict]:
        """Read and parse the record. Raises on store or JSON errors."""
        raw = await self.store.get(self.key)
        if raw is None:
            return None
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Cart storage record is not an object")
        return data

    async def _get_storage_data(self) -> Optional[dict]:
        """Fail-safe read: None on any error."""
        try:
            return await self._read()
        except Exception as e:
            logger.error(f"Error parsing cart storage data: {type(e).__name__}: {e}")
            return None

    async def _read_for_write(self) -> dict:
        """Record to modify; defaults when absent or unparseable."""
        try:
            data = await self._read()
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Replacing unreadable cart storage record: {e}")
            return self._default_schema()
        except Exception as e:
            raise StorageError(f"Cart storage unavailable: {e}") from e
        if data is None:
            return self._default_schema()

        # Fill in sections missing from partially written records
        defaults = self._default_schema()
        data.setdefault("version", defaults["version"])
        cart = data.setdefault("cart", defaults["cart"])
        cart.setdefault("items", [])
        cart.setdefault("metadata", defaults["cart"]["metadata"])
        data.setdefault("drafts", [])
        data.setdefault("preferences", defaults["preferences"])
        return data

    async def _write(self, data: dict, error_message: str) -> None:
        try:
            await self.store.set(self.key, json.dumps(data))
        except Exception as e:
            logger.error(f"{error_message}: {type(e).__name__}: {e}")
            raise StorageError(error_message) from e

    def _touch(self, data: dict) -> None:
        data.setdefault("cart", {}).setdefault("metadata", {})["updatedAt"] = _dump_datetime(self.clock())

    # -- lifecycle ----------------------------------------------------------

    async def initialize_storage(self) -> None:
        """Write the default record if none exists. Never overwrites."""
        try:
            existing = await self.store.get(self.key)
            if existing is None:
                await self.store.set(self.key, json.dumps(self._default_schema()))
        except Exception as e:
            logger.error(f"Error initializing cart storage: {type(e).__name__}: {e}")

    async def _reset_storage(self) -> None:
        try:
            await self.store.delete(self.key)
        except Exception as e:
            logger.error(f"Error clearing cart storage: {type(e).__name__}: {e}")
            return
        await self.initialize_storage()

    async def _is_data_valid(self, data: dict) -> bool:
        if data.get("version") != self.config.storage_version:
            logger.warning(
                f"Cart storage version mismatch ({data.get('version')!r} != "
                f"{self.config.storage_version!r}), resetting record"
            )
            await self._reset_storage()
            return False

        expires_at = _parse_datetime(data["cart"]["metadata"].get("expiresAt"))
        if expires_at is not None and expires_at < self.clock():
            logger.warning("Cart data expired, emptying cart items")
            await self._expire_cart(data)
            return False

        return True

    async def _expire_cart(self, data: dict) -> None:
        # Drafts have their own lifecycle and survive cart expiry
        fresh = self._default_schema()
        data["cart"] = fresh["cart"]
        try:
            await self.store.set(self.key, json.dumps(data))
        except Exception as e:
            logger.error(f"Error expiring cart data: {type(e).__name__}: {e}")

    # -- cart items ---------------------------------------------------------

    async def save_cart_items(self, items: List[CartItem]) -> None:
        """Persist the item list. Raises StorageError on failure."""
        data = await self._read_for_write()
        data["cart"]["items"] = [item_to_dict(item) for item in items]
        self._touch(data)
        await self._write(data, msg.ERROR_STORAGE_SAVE_ITEMS)

    async def load_cart_items(self) -> List[CartItem]:
        """Load persisted items with dates rehydrated. Returns [] on any failure."""
        try:
            data = await self._get_storage_data()
            if data is None or not await self._is_data_valid(data):
                return []
            return [item_from_dict(item) for item in data["cart"]["items"]]
        except Exception as e:
            logger.error(f"Error loading cart items: {type(e).__name__}: {e}")
            return []

    async def clear_cart(self) -> None:
        """Empty cart items, leaving drafts untouched."""
        data = await self._read_for_write()
        data["cart"]["items"] = []
        self._touch(data)
        await self._write(data, msg.ERROR_STORAGE_CLEAR)

    # -- drafts -------------------------------------------------------------

    async def save_draft(self, draft: CartDraft) -> None:
        """Insert or overwrite a draft by id."""
        data = await self._read_for_write()
        drafts = data.setdefault("drafts", [])
        serialized = draft_to_dict(draft)
        for index, existing in enumerate(drafts):
            if existing.get("id") == draft.id:
                drafts[index] = serialized
                break
        else:
            drafts.append(serialized)
        await self._write(data, msg.ERROR_STORAGE_SAVE_DRAFT)
        logger.info(f"Draft saved: {sanitize_id_for_logging(draft.id)}")

    async def load_drafts(self) -> List[CartDraft]:
        try:
            data = await self._get_storage_data()
            if data is None:
                return []
            return [draft_from_dict(d) for d in data.get("drafts") or []]
        except Exception as e:
            logger.error(f"Error loading drafts: {type(e).__name__}: {e}")
            return []

    async def delete_draft(self, draft_id: str) -> None:
        data = await self._read_for_write()
        data["drafts"] = [d for d in data.get("drafts") or [] if d.get("id") != draft_id]
        await self._write(data, msg.ERROR_STORAGE_DELETE_DRAFT)

    # -- session data -------------------------------------------------------

    async def save_session_data(self, session: SessionData) -> None:
        payload = {
            "currentConfiguring": session.current_configuring,
            "checkoutStep": session.checkout_step,
            "tempSelections": session.temp_selections,
        }
        try:
            await self.session_store.set(
                self.session_key,
                json.dumps(payload),
                ex=self.config.session_ttl_seconds,
            )
        except Exception as e:
            logger.error(f"Error saving session data: {type(e).__name__}: {e}")

    async def load_session_data(self) -> Optional[SessionData]:
        try:
            raw = await self.session_store.get(self.session_key)
            if raw is None:
                return None
            data = json.loads(raw)
            return SessionData(
                current_configuring=data.get("currentConfiguring"),
                checkout_step=data.get("checkoutStep"),
                temp_selections=data.get("tempSelections"),
            )
        except Exception as e:
            logger.error(f"Error loading session data: {type(e).__name__}: {e}")
            return None

    async def clear_session_data(self) -> None:
        try:
            await self.session_store.delete(self.session_key)
        except Exception as e:
            logger.error(f"Error clearing session data: {type(e).__name__}: {e}")

    # -- housekeeping -------------------------------------------------------

    async def get_storage_size(self) -> int:
        """Size in bytes of the serialized record."""
        try:
            raw = await self.store.get(self.key)
            return len(raw.encode("utf-8")) if raw else 0
        except Exception as e:
            logger.error(f"Error calculating storage size: {type(e).__name__}: {e}")
            return 0

    async def get_cart_statistics(self) -> CartStatistics:
        """Item count, byte size and schema timestamps of the stored record."""
        try:
            raw = await self.store.get(self.key)
            if not raw:
                return CartStatistics(item_count=0, storage_size=0)
            data = json.loads(raw)
            metadata = data["cart"]["metadata"]
            expires_at = _parse_datetime(metadata.get("expiresAt"))
            days_left = 0
            if expires_at is not None:
                days_left = max(0, (expires_at - self.clock()).days)
            return CartStatistics(
                item_count=len(data["cart"]["items"]),
                storage_size=len(raw.encode("utf-8")),
                draft_count=len(data.get("drafts") or []),
                created_at=_parse_datetime(metadata.get("createdAt")),
                updated_at=_parse_datetime(metadata.get("updatedAt")),
                expires_at=expires_at,
                days_until_expiry=days_left,
            )
        except Exception as e:
            logger.error(f"Error reading cart statistics: {type(e).__name__}: {e}")
            return CartStatistics(item_count=0, storage_size=0)

    async def is_cart_near_expiry(self, threshold_days: Optional[int] = None) -> bool:
        threshold = self.config.near_expiry_days if threshold_days is None else threshold_days
        stats = await self.get_cart_statistics()
        if stats.expires_at is None:
            return False
        return stats.days_until_expiry <= threshold

    async def extend_cart_expiry(self, days: Optional[int] = None) -> None:
        days = self.config.cart_expiry_days if days is None else days
        data = await self._read_for_write()
        data["cart"]["metadata"]["expiresAt"] = _dump_datetime(self.clock() + timedelta(days=days))
        await self._write(data, msg.ERROR_STORAGE_EXPIRY)

    async def optimize_storage(self) -> int:
        """Drop drafts not updated within the retention window. Returns removed count."""
        try:
            data = await self._read()
            if data is None:
                return 0
            cutoff = self.clock() - timedelta(days=self.config.draft_retention_days)
            drafts = data.get("drafts") or []
            kept = [
                d for d in drafts
                if (_parse_datetime(d.get("updatedAt")) or cutoff) > cutoff
            ]
            removed = len(drafts) - len(kept)
            if removed:
                data["drafts"] = kept
                await self.store.set(self.key, json.dumps(data))
                logger.info(f"Removed {removed} stale draft(s)")
            return removed
        except Exception as e:
            logger.error(f"Error optimizing storage: {type(e).__name__}: {e}")
            return 0

    async def load_preferences(self) -> Dict[str, Any]:
        data = await self._get_storage_data()
        if data is None:
            return self._default_schema()["preferences"]
        return data.get("preferences") or self._default_schema()["preferences"]
