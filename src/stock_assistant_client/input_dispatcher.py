from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable

from loguru import logger

from stock_assistant_client.errors import ConcurrentRequestRejectedError, StockAssistantError
from stock_assistant_client.services.session_controller import SCAN_PREFIX

SubmitFn = Callable[[str], Awaitable[object]]
WaitIdleFn = Callable[[], Awaitable[None]]


class InputDispatcher:
    """Queues utterances from voice and scanner collaborators.

    Inputs are handed to ``submit`` one at a time. An input that finds another
    turn in flight, including one started outside the dispatcher, waits on
    ``wait_idle`` and is submitted again instead of being dropped.
    """

    def __init__(self, *, submit: SubmitFn, wait_idle: WaitIdleFn) -> None:
        self._submit = submit
        self._wait_idle = wait_idle
        self._queue: asyncio.Queue[tuple[str, float]] = asyncio.Queue()
        self._consumer_task: asyncio.Task | None = None
        self._metrics = self._fresh_metrics()

    @staticmethod
    def _fresh_metrics() -> dict[str, float]:
        return {
            "queued_count": 0,
            "processed_count": 0,
            "failed_count": 0,
            "deferred_count": 0,
            "avg_queue_wait_ms": 0.0,
            "avg_process_ms": 0.0,
            "last_process_ms": 0.0,
        }

    @property
    def is_running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    @property
    def metrics(self) -> dict[str, float]:
        return dict(self._metrics)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.is_running:
            return
        self._queue = asyncio.Queue()
        self._metrics = self._fresh_metrics()
        self._consumer_task = asyncio.create_task(self._consumer_loop())

    async def stop(self) -> None:
        task = self._consumer_task
        self._consumer_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def push_utterance(self, text: str) -> bool:
        """Queue a recognized utterance. Blank input is dropped."""
        trimmed = (text or "").strip()
        if not trimmed:
            return False
        self._metrics["queued_count"] += 1
        self._queue.put_nowait((trimmed, time.perf_counter()))
        return True

    def push_scan(self, code: str) -> bool:
        trimmed = (code or "").strip()
        if not trimmed:
            return False
        return self.push_utterance(f"{SCAN_PREFIX}{trimmed}")

    async def _consumer_loop(self) -> None:
        while True:
            text, queued_at = await self._queue.get()
            wait_ms = (time.perf_counter() - queued_at) * 1000
            process_start = time.perf_counter()
            try:
                await self._submit_when_idle(text)
            except StockAssistantError as ex:
                # one bad input must not stop the queue
                self._metrics["failed_count"] += 1
                logger.warning(f"Queued input rejected: {ex}")
                continue
            process_ms = (time.perf_counter() - process_start) * 1000

            self._metrics["processed_count"] += 1
            n = self._metrics["processed_count"]
            self._metrics["avg_queue_wait_ms"] = (self._metrics["avg_queue_wait_ms"] * (n - 1) + wait_ms) / n
            self._metrics["avg_process_ms"] = (self._metrics["avg_process_ms"] * (n - 1) + process_ms) / n
            self._metrics["last_process_ms"] = process_ms

    async def _submit_when_idle(self, text: str) -> None:
        while True:
            try:
                await self._submit(text)
                return
            except ConcurrentRequestRejectedError:
                self._metrics["deferred_count"] += 1
                logger.debug("Session busy; queued input waits for the current reply")
                await self._wait_idle()
