from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from stock_assistant_client.errors import ParseFailureError, TransportFailureError

_DEFAULT_THRESHOLD = 10


@dataclass(frozen=True)
class LowStockItem:
    product: str
    quantity: int


@dataclass(frozen=True)
class LowStockReport:
    location_id: int
    items: tuple[LowStockItem, ...]


@dataclass(frozen=True)
class TransferRequest:
    product_name: str
    from_location_id: int
    to_location_id: int
    quantity: int


@dataclass(frozen=True)
class TransferResult:
    ok: bool
    detail: str


class InventoryToolsClient:
    """Direct calls to the backend's inventory tool endpoints."""

    def __init__(self, *, http_client: httpx.AsyncClient, timeout_seconds: float = 30.0):
        self._http = http_client
        self._timeout = timeout_seconds

    async def get_low_stock(self, location_id: int, threshold: int = _DEFAULT_THRESHOLD) -> LowStockReport:
        payload = await self._request(
            "GET",
            "/tool/get_low_stock",
            params={"store_id": location_id, "threshold": threshold},
        )
        raw_items = payload.get("low_stock_items", [])
        if not isinstance(raw_items, list):
            raise ParseFailureError("low stock: field 'low_stock_items' must be a list")
        items: list[LowStockItem] = []
        for raw in raw_items:
            if not isinstance(raw, dict) or not isinstance(raw.get("product"), str):
                raise ParseFailureError(f"low stock: malformed item {raw!r}")
            qty = raw.get("qty", 0)
            if isinstance(qty, bool) or not isinstance(qty, int):
                raise ParseFailureError(f"low stock: field 'qty' must be an integer, got {qty!r}")
            items.append(LowStockItem(product=raw["product"], quantity=qty))
        store_id = payload.get("store_id")
        if isinstance(store_id, bool) or not isinstance(store_id, int):
            store_id = location_id
        return LowStockReport(location_id=store_id, items=tuple(items))

    async def transfer_stock(self, request: TransferRequest) -> TransferResult:
        payload = await self._request(
            "POST",
            "/tool/transfer_stock",
            json={
                "product_name": request.product_name,
                "from_store": request.from_location_id,
                "to_store": request.to_location_id,
                "quantity": request.quantity,
            },
        )
        return TransferResult(ok=bool(payload.get("ok", False)), detail=str(payload.get("detail", "")))

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http.request(method, path, timeout=self._timeout, **kwargs)
        except httpx.HTTPError as ex:
            logger.warning(f"{method} {path} failed: {type(ex).__name__}: {ex}")
            raise TransportFailureError(
                f"{method} {path} failed: {str(ex) or type(ex).__name__}", channel="tools"
            ) from ex
        if response.status_code >= 400:
            raise TransportFailureError(
                f"{method} {path} returned HTTP {response.status_code}",
                channel="tools",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as ex:
            raise ParseFailureError(f"{method} {path} returned a body that is not JSON") from ex
        if not isinstance(payload, dict):
            raise ParseFailureError(f"{method} {path} returned {type(payload).__name__}, expected object")
        return payload


def format_low_stock(report: LowStockReport) -> str:
    if not report.items:
        return f"No low stock items for store {report.location_id}."
    return "\n".join(f"{item.product}: {item.quantity}" for item in report.items)
