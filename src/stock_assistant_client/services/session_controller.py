from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import Awaitable, Callable

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stock_assistant_client.chat_stream_client import ChatStreamClient
from stock_assistant_client.errors import (
    ConcurrentRequestRejectedError,
    InvalidInputError,
    SessionClosedError,
    StockAssistantError,
    TransportFailureError,
)
from stock_assistant_client.inventory_tools import (
    InventoryToolsClient,
    LowStockReport,
    TransferRequest,
    TransferResult,
)
from stock_assistant_client.live_updates import LiveUpdateSubscriber
from stock_assistant_client.models import LocationStockSnapshot, SessionSnapshot, TranscriptEntry
from stock_assistant_client.reference_cache import ReferenceDataCache
from stock_assistant_client.session_config import SessionConfig
from stock_assistant_client.transcript_store import TranscriptStore

SnapshotListener = Callable[[SessionSnapshot], None]
ErrorListener = Callable[[StockAssistantError], None]

SCAN_PREFIX = "scan:"


class SessionController:
    """Facade used by the UI, voice input and scanner collaborators.

    Owns the transcript, the reference data cache, one chat client and the
    live update subscriber, plus the HTTP client they share unless one is
    injected.
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        on_error: ErrorListener | None = None,
    ) -> None:
        self._config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=config.base_url)
        self._on_error = on_error
        self._errors: deque[StockAssistantError] = deque(maxlen=max(1, config.max_error_history))

        self._store = TranscriptStore()
        self._cache = ReferenceDataCache(
            http_client=self._http,
            timeout_seconds=config.request_timeout_seconds,
        )
        self._chat = ChatStreamClient(
            http_client=self._http,
            store=self._store,
            connect_timeout_seconds=config.connect_timeout_seconds,
        )
        self._live = LiveUpdateSubscriber(
            http_client=self._http,
            cache=self._cache,
            read_timeout_seconds=config.live_read_timeout_seconds,
            connect_timeout_seconds=config.connect_timeout_seconds,
            on_error=self._report_error,
        )
        self._tools = InventoryToolsClient(
            http_client=self._http,
            timeout_seconds=config.request_timeout_seconds,
        )

        self._chat_task: asyncio.Task | None = None
        self._live_task: asyncio.Task | None = None
        self._started = False
        self._closed = False

    async def __aenter__(self) -> SessionController:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def session_id(self) -> str:
        return self._config.session_id

    @property
    def is_busy(self) -> bool:
        return self._chat_task is not None and not self._chat_task.done()

    @property
    def live_updates_running(self) -> bool:
        return self._live_task is not None and not self._live_task.done()

    @property
    def live_update_metrics(self) -> dict[str, int]:
        return self._live.metrics

    @property
    def errors(self) -> tuple[StockAssistantError, ...]:
        return tuple(self._errors)

    @property
    def last_error(self) -> StockAssistantError | None:
        return self._errors[-1] if self._errors else None

    # -- observation --

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(self._store.snapshot(), self._cache.snapshot())

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every state change."""

        def forward(_: object) -> None:
            listener(self.snapshot())

        unsubscribers = [self._store.subscribe(forward), self._cache.subscribe(forward)]

        def unsubscribe() -> None:
            for fn in unsubscribers:
                fn()

        return unsubscribe

    def on_reply_finalized(self, listener: Callable[[TranscriptEntry], None]) -> Callable[[], None]:
        """Register a speech-output style observer for completed assistant replies."""
        return self._store.subscribe_finalized(listener)

    # -- conversation --

    async def submit(self, text: str) -> TranscriptEntry | None:
        """Send one user turn and wait until the assistant stops composing."""
        return await self._await_turn(self.submit_nowait(text))

    async def submit_once(self, text: str) -> TranscriptEntry | None:
        """Like ``submit`` but over the non-streaming endpoint."""
        return await self._await_turn(self.submit_nowait(text, streaming=False))

    def submit_nowait(self, text: str, *, streaming: bool | None = None) -> asyncio.Task:
        """Start a user turn and return its task; observe progress via ``subscribe``."""
        self._ensure_open()
        trimmed = (text or "").strip()
        if not trimmed:
            raise InvalidInputError("Message text must not be blank")
        if self.is_busy or self._chat.is_running:
            raise ConcurrentRequestRejectedError("Wait for the current reply before sending another message")
        self._store.append_user(trimmed)
        use_streaming = self._config.streaming if streaming is None else streaming
        self._chat_task = asyncio.create_task(self._run_turn(trimmed, use_streaming))
        return self._chat_task

    async def submit_scan(self, code: str) -> TranscriptEntry | None:
        trimmed = (code or "").strip()
        if not trimmed:
            raise InvalidInputError("Scanned code must not be blank")
        return await self.submit(f"{SCAN_PREFIX}{trimmed}")

    async def wait_until_idle(self) -> None:
        """Return once no turn is in flight. Never raises the turn's outcome."""
        task = self._chat_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    @staticmethod
    async def _await_turn(task: asyncio.Task) -> TranscriptEntry | None:
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # the turn was cancelled by stop(), not by our caller
            return None

    async def _run_turn(self, text: str, streaming: bool) -> TranscriptEntry | None:
        if streaming:
            return await self._chat.run(text, self._config.session_id)
        return await self._chat.run_once(text, self._config.session_id)

    # -- reference data --

    async def switch_location(self, location_id: int) -> LocationStockSnapshot:
        self._ensure_open()
        try:
            return await self._cache.switch_location(location_id)
        except StockAssistantError as ex:
            self._report_error(ex)
            raise

    async def refresh(self) -> None:
        """Re-pull the overview and the selected location, reporting failures."""
        self._ensure_open()
        await self._pull_reported(self._cache.pull_overview())
        selected = self._cache.selected_location_id
        if selected is not None:
            await self._pull_reported(self._cache.pull_location_stock(selected))

    async def low_stock_report(self, location_id: int | None = None) -> LowStockReport:
        self._ensure_open()
        target = location_id if location_id is not None else self._cache.selected_location_id
        if target is None:
            raise InvalidInputError("No location selected")
        return await self._tools.get_low_stock(target, threshold=self._config.low_stock_threshold)

    async def transfer_stock(self, request: TransferRequest) -> TransferResult:
        self._ensure_open()
        if request.quantity <= 0:
            raise InvalidInputError("Transfer quantity must be positive")
        result = await self._tools.transfer_stock(request)
        if result.ok:
            await self.refresh()
        return result

    # -- lifecycle --

    async def start(self) -> None:
        self._ensure_open()
        if self._started:
            return
        self._started = True
        await self._pull_reported(self._cache.pull_overview())
        if self._config.default_location_id is not None:
            await self._pull_reported(self._cache.switch_location(self._config.default_location_id))
        self._live_task = asyncio.create_task(self._supervise_live_updates())
        logger.info(f"Session {self._config.session_id} started against {self._config.base_url}")

    async def restart_live_updates(self) -> None:
        self._ensure_open()
        await self._cancel(self._live_task)
        self._live_task = asyncio.create_task(self._supervise_live_updates())

    async def stop(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._cancel(self._chat_task)
            await self._cancel(self._live_task)
        finally:
            self._chat_task = None
            self._live_task = None
            if self._owns_http:
                await self._http.aclose()
        logger.info(f"Session {self._config.session_id} stopped")

    async def _supervise_live_updates(self) -> None:
        """Keep the live update stream connected for the session lifetime.

        The retry budget only counts consecutive attempts that never got a
        connection; a stream that connected and later dropped starts a fresh
        budget.
        """
        while True:
            retrying = AsyncRetrying(
                retry=retry_if_exception_type(TransportFailureError),
                wait=wait_exponential(
                    multiplier=self._config.live_retry_initial_wait_seconds,
                    min=self._config.live_retry_initial_wait_seconds,
                    max=self._config.live_retry_max_wait_seconds,
                ),
                stop=stop_after_attempt(max(1, self._config.live_retry_attempts)),
                before_sleep=self._on_live_retry,
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        await self._run_live_connection()
            except TransportFailureError as ex:
                logger.error(
                    f"Live updates stopped after {self._config.live_retry_attempts} failed attempt(s): {ex}"
                )
                self._report_error(ex)
                return
            await asyncio.sleep(self._config.live_retry_initial_wait_seconds)

    async def _run_live_connection(self) -> None:
        connections = self._live.metrics["connections"]
        try:
            await self._live.run()
        except TransportFailureError as ex:
            if self._live.metrics["connections"] == connections:
                raise
            logger.warning(f"{ex}. Reconnecting in {self._config.live_retry_initial_wait_seconds:.1f}s...")
            self._report_error(ex)

    def _on_live_retry(self, retry_state) -> None:
        attempt = retry_state.attempt_number
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{exc or 'Live update stream ended'}. Reconnecting in {wait:.1f}s "
            f"(attempt {attempt}/{self._config.live_retry_attempts})..."
        )
        if isinstance(exc, StockAssistantError):
            self._report_error(exc)

    async def _pull_reported(self, pull: Awaitable[object]) -> None:
        try:
            await pull
        except StockAssistantError as ex:
            self._report_error(ex)

    @staticmethod
    async def _cancel(task: asyncio.Task | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Session {self._config.session_id} has been stopped")

    def _report_error(self, error: StockAssistantError) -> None:
        self._errors.append(error)
        logger.warning(f"Recoverable error ({type(error).__name__}): {error}")
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception as ex:
                logger.warning(f"Error listener failed: {ex}")
