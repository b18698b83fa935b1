from __future__ import annotations

import json
import threading
from collections.abc import Callable
from typing import Any

import httpx
from loguru import logger

from stock_assistant_client.errors import ParseFailureError, TransportFailureError
from stock_assistant_client.models import (
    CacheSnapshot,
    LocationStockSnapshot,
    StockOverviewSnapshot,
    parse_location_stock,
    parse_stock_overview,
)

CacheListener = Callable[[CacheSnapshot], None]


class ReferenceDataCache:
    """Last-fetched stock overview and the selected location's stock.

    Each slice is replaced wholesale when a pull succeeds and left alone when
    it fails. Responses are applied in the order they arrive, so concurrent
    pulls resolve last-response-wins.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        selected_location_id: int | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = http_client
        self._timeout = timeout_seconds
        self._lock = threading.Lock()
        self._overview: StockOverviewSnapshot | None = None
        self._location_stock: LocationStockSnapshot | None = None
        self._selected_location_id = selected_location_id
        self._listeners: list[CacheListener] = []

    @property
    def selected_location_id(self) -> int | None:
        return self._selected_location_id

    @property
    def overview(self) -> StockOverviewSnapshot | None:
        return self._overview

    @property
    def location_stock(self) -> LocationStockSnapshot | None:
        return self._location_stock

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(self._overview, self._location_stock, self._selected_location_id)

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def pull_overview(self) -> StockOverviewSnapshot:
        payload = await self._get_json("/stock/overview", channel="overview")
        overview = parse_stock_overview(payload)
        with self._lock:
            self._overview = overview
        logger.debug(
            f"Overview refreshed: items={overview.total_items}, low={overview.low_stock_count}, "
            f"expiring={overview.expiring_count}"
        )
        self._notify()
        return overview

    async def pull_location_stock(self, location_id: int) -> LocationStockSnapshot:
        payload = await self._get_json(f"/stock/store/{location_id}", channel="location")
        stock = parse_location_stock(payload, location_id=location_id)
        with self._lock:
            self._location_stock = stock
            self._selected_location_id = location_id
        logger.debug(f"Location {location_id} stock refreshed: {len(stock.items)} item(s)")
        self._notify()
        return stock

    async def switch_location(self, location_id: int) -> LocationStockSnapshot:
        """Select ``location_id`` and pull its stock.

        The previous snapshot stays visible until the pull succeeds.
        """
        with self._lock:
            changed = self._selected_location_id != location_id
            self._selected_location_id = location_id
        if changed:
            self._notify()
        return await self.pull_location_stock(location_id)

    async def _get_json(self, path: str, *, channel: str) -> Any:
        try:
            response = await self._http.get(path, timeout=self._timeout)
        except httpx.HTTPError as ex:
            logger.warning(f"GET {path} failed: {type(ex).__name__}: {ex}")
            raise TransportFailureError(f"GET {path} failed: {str(ex) or type(ex).__name__}", channel=channel) from ex
        if response.status_code >= 400:
            logger.warning(f"GET {path} returned HTTP {response.status_code}")
            raise TransportFailureError(
                f"GET {path} returned HTTP {response.status_code}",
                channel=channel,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as ex:
            raise ParseFailureError(f"GET {path} returned a body that is not JSON") from ex

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as ex:
                logger.warning(f"Cache listener failed: {ex}")
