from __future__ import annotations

import json
from collections.abc import Awaitable, Callable

import httpx
from loguru import logger

from stock_assistant_client.errors import ParseFailureError, StockAssistantError, TransportFailureError
from stock_assistant_client.models import LiveUpdateEvent
from stock_assistant_client.reference_cache import ReferenceDataCache

PAYLOAD_PREFIX = "data:"


def parse_live_update_line(line: str) -> LiveUpdateEvent | None:
    """Parse one line of the push stream.

    Returns ``None`` for lines that do not carry a payload. Raises
    ``ParseFailureError`` when a payload line is not a JSON object.
    """
    if not line.startswith(PAYLOAD_PREFIX):
        return None
    body = line[len(PAYLOAD_PREFIX):].strip()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as ex:
        raise ParseFailureError(f"Live update payload is not JSON: {body[:80]!r}") from ex
    if not isinstance(payload, dict):
        raise ParseFailureError(f"Live update payload is not an object: {body[:80]!r}")
    return LiveUpdateEvent(location_id=_coerce_location_id(payload.get("store_id")))


def format_live_update_line(event: LiveUpdateEvent) -> str:
    payload = {} if event.location_id is None else {"store_id": event.location_id}
    return PAYLOAD_PREFIX + json.dumps(payload, separators=(",", ":"))


def _coerce_location_id(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class LiveUpdateSubscriber:
    """Single read loop over ``GET /stock/live``.

    Each event refreshes the overview, and the selected location's stock when
    the event is scoped to it. The loop never retries: any connection failure,
    including the server closing the stream, ends ``run()`` with a
    ``TransportFailureError`` for the owner to act on.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        cache: ReferenceDataCache,
        read_timeout_seconds: float = 60.0,
        connect_timeout_seconds: float = 10.0,
        on_error: Callable[[StockAssistantError], None] | None = None,
    ) -> None:
        self._http = http_client
        self._cache = cache
        self._timeout = httpx.Timeout(read_timeout_seconds, connect=connect_timeout_seconds)
        self._on_error = on_error
        self._metrics = {
            "connections": 0,
            "events": 0,
            "skipped_lines": 0,
            "overview_pulls": 0,
            "location_pulls": 0,
        }

    @property
    def metrics(self) -> dict[str, int]:
        return dict(self._metrics)

    async def run(self) -> None:
        try:
            async with self._http.stream("GET", "/stock/live", timeout=self._timeout) as response:
                if response.status_code >= 400:
                    raise TransportFailureError(
                        f"Live update stream returned HTTP {response.status_code}",
                        channel="live",
                        status_code=response.status_code,
                    )
                self._metrics["connections"] += 1
                logger.info("Live update stream connected")
                async for line in response.aiter_lines():
                    await self._handle_line(line)
        except httpx.HTTPError as ex:
            logger.warning(f"Live update stream failed: {type(ex).__name__}: {ex}")
            raise TransportFailureError(
                f"Live update stream failed: {str(ex) or type(ex).__name__}", channel="live"
            ) from ex
        raise TransportFailureError("Live update stream closed by server", channel="live")

    async def _handle_line(self, line: str) -> None:
        try:
            event = parse_live_update_line(line)
        except ParseFailureError as ex:
            self._metrics["skipped_lines"] += 1
            logger.debug(f"Skipping live update line: {ex}")
            return
        if event is None:
            return
        self._metrics["events"] += 1
        await self.handle_event(event)

    async def handle_event(self, event: LiveUpdateEvent) -> None:
        self._metrics["overview_pulls"] += 1
        await self._pull(self._cache.pull_overview())

        selected = self._cache.selected_location_id
        if event.location_id is None or event.location_id != selected:
            return
        self._metrics["location_pulls"] += 1
        await self._pull(self._cache.pull_location_stock(event.location_id))

    async def _pull(self, pull: Awaitable[object]) -> None:
        try:
            await pull
        except StockAssistantError as ex:
            logger.warning(f"Live update refresh failed: {ex}")
            if self._on_error is not None:
                self._on_error(ex)
