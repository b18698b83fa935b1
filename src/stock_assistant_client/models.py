from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stock_assistant_client.errors import ParseFailureError


class Author(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class TranscriptEntry:
    author: Author
    text: str

    def with_appended(self, delta: str) -> TranscriptEntry:
        return TranscriptEntry(self.author, self.text + delta)


@dataclass(frozen=True)
class TranscriptSnapshot:
    entries: tuple[TranscriptEntry, ...] = ()
    composing: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def last(self) -> TranscriptEntry | None:
        return self.entries[-1] if self.entries else None


@dataclass(frozen=True)
class StockOverviewSnapshot:
    total_items: int
    total_quantity: int
    low_stock_count: int
    expiring_count: int


@dataclass(frozen=True)
class LocationStockItem:
    product: str
    quantity: int
    category: str | None = None
    unit: str | None = None
    price: float | None = None
    expiry_date: str | None = None


@dataclass(frozen=True)
class LocationStockSnapshot:
    location_id: int
    items: tuple[LocationStockItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LiveUpdateEvent:
    location_id: int | None = None


@dataclass(frozen=True)
class CacheSnapshot:
    overview: StockOverviewSnapshot | None = None
    location_stock: LocationStockSnapshot | None = None
    selected_location_id: int | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    transcript: TranscriptSnapshot
    cache: CacheSnapshot

    @property
    def composing(self) -> bool:
        return self.transcript.composing

    @property
    def overview(self) -> StockOverviewSnapshot | None:
        return self.cache.overview

    @property
    def location_stock(self) -> LocationStockSnapshot | None:
        return self.cache.location_stock

    @property
    def selected_location_id(self) -> int | None:
        return self.cache.selected_location_id


def _require_object(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ParseFailureError(f"{what}: expected a JSON object, got {type(payload).__name__}")
    return payload


def _non_negative_int(payload: dict[str, Any], key: str, what: str) -> int:
    value = payload.get(key)
    # bool is an int subclass; a JSON true is not a count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseFailureError(f"{what}: field {key!r} must be an integer, got {value!r}")
    if value < 0:
        raise ParseFailureError(f"{what}: field {key!r} must be non-negative, got {value}")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_stock_overview(payload: Any) -> StockOverviewSnapshot:
    data = _require_object(payload, "stock overview")
    return StockOverviewSnapshot(
        total_items=_non_negative_int(data, "total_items", "stock overview"),
        total_quantity=_non_negative_int(data, "total_quantity", "stock overview"),
        low_stock_count=_non_negative_int(data, "low_stock", "stock overview"),
        expiring_count=_non_negative_int(data, "expiring", "stock overview"),
    )


def parse_location_stock_item(payload: Any) -> LocationStockItem:
    data = _require_object(payload, "stock item")
    product = data.get("product")
    if not isinstance(product, str):
        raise ParseFailureError(f"stock item: field 'product' must be a string, got {product!r}")
    price = data.get("price")
    if price is not None:
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise ParseFailureError(f"stock item: field 'price' must be a number, got {price!r}")
        price = float(price)
    return LocationStockItem(
        product=product,
        quantity=_non_negative_int(data, "quantity", "stock item"),
        category=_optional_str(data.get("category")),
        unit=_optional_str(data.get("uom")),
        price=price,
        expiry_date=_optional_str(data.get("expiry_date")),
    )


def parse_location_stock(payload: Any, *, location_id: int) -> LocationStockSnapshot:
    """Parse a ``/stock/store/{id}`` body.

    The response's own ``store_id`` wins when present; ``location_id`` is the
    id that was requested and is used when the backend omits it.
    """
    data = _require_object(payload, "location stock")
    store_id = data.get("store_id", location_id)
    if isinstance(store_id, bool) or not isinstance(store_id, int):
        raise ParseFailureError(f"location stock: field 'store_id' must be an integer, got {store_id!r}")
    items = data.get("items", [])
    if not isinstance(items, list):
        raise ParseFailureError("location stock: field 'items' must be a list")
    return LocationStockSnapshot(
        location_id=store_id,
        items=tuple(parse_location_stock_item(item) for item in items),
    )
