from __future__ import annotations

import sys
import threading
from typing import TextIO

from loguru import logger

from stock_assistant_client.commands.quick_actions import (
    TRANSFER_USAGE,
    low_stock_utterance,
    parse_command,
    parse_location_argument,
    parse_transfer_command,
)
from stock_assistant_client.commands.router import CommandRouter
from stock_assistant_client.errors import StockAssistantError
from stock_assistant_client.inventory_tools import format_low_stock
from stock_assistant_client.models import Author, SessionSnapshot
from stock_assistant_client.services.session_controller import SessionController

_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class ComposingIndicator:
    """Animated marker shown while a reply is being composed but has no text yet.

    Frames and transcript text share one lock so they never interleave on the
    line.
    """

    def __init__(self, *, out: TextIO, prefix: str = "", label: str = " Checking stock...", interval: float = 0.08):
        self._out = out
        self._prefix = prefix
        self._label = label
        self._interval = interval
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def visible(self) -> bool:
        return self._thread is not None

    def update(self, *, composing: bool, has_text: bool) -> None:
        if composing and not has_text:
            self._show()
        else:
            self._hide()

    def write(self, text: str) -> None:
        with self._lock:
            self._out.write(text)
            self._out.flush()

    def _show(self) -> None:
        if self._thread is not None:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop,), daemon=True)
        self._thread.start()

    def _hide(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        # blank the frame and leave the cursor at column 0
        self.write("\r" + " " * (len(self._prefix) + 1 + len(self._label)) + "\r")

    def _run(self, stop: threading.Event) -> None:
        i = 0
        try:
            while not stop.is_set():
                frame = _FRAMES[i % len(_FRAMES)] + self._label
                self.write("\r" + self._prefix + frame)
                stop.wait(self._interval)
                i += 1
        except (UnicodeEncodeError, OSError):
            pass  # terminal can't draw the frames


class TranscriptPrinter:
    """Echoes the open assistant entry as fragments arrive."""

    def __init__(self, *, line_prefix: str, out: TextIO | None = None, indicator: ComposingIndicator | None = None):
        self._line_prefix = line_prefix
        out = out or sys.stdout
        self._indicator = indicator or ComposingIndicator(out=out, prefix=line_prefix)
        self._index: int | None = None
        self._printed = 0

    def __call__(self, snapshot: SessionSnapshot) -> None:
        transcript = snapshot.transcript
        last = transcript.last
        text = ""
        if last is not None and last.author is Author.ASSISTANT:
            last_index = len(transcript) - 1
            if self._index != last_index:
                self._index = last_index
                self._printed = 0
            text = last.text
        self._indicator.update(composing=transcript.composing, has_text=bool(text))
        if len(text) > self._printed:
            prefix = self._line_prefix if self._printed == 0 else ""
            self._indicator.write(prefix + text[self._printed:])
            self._printed = len(text)


class ConsoleApp:
    LINE_PREFIX = "assistant> "
    USER_PROMPT = "you> "

    def __init__(self, session: SessionController):
        self._session = session
        self._printer = TranscriptPrinter(line_prefix=self.LINE_PREFIX)
        self._session.subscribe(self._printer)
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_store=self._handle_store_command,
            on_overview=self._handle_overview_command,
            on_stock=self._handle_stock_command,
            on_scan=self._handle_scan_command,
            on_low_stock=self._handle_low_stock_command,
            on_transfer=self._handle_transfer_command,
            on_once=self._handle_once_command,
            on_live=self._handle_live_command,
            on_unknown=self._on_unknown_command,
        )

    async def handle(self, user_message: str) -> None:
        if await self._command_router.try_handle(user_message):
            return
        await self._submit(user_message)

    async def _submit(self, text: str) -> None:
        try:
            await self._session.submit(text)
        except StockAssistantError as ex:
            print(f"{self.LINE_PREFIX}{ex}")
            return
        print("\n")

    async def _on_help(self) -> None:
        print(f"{self.LINE_PREFIX}Available commands:")
        print(f"{self.LINE_PREFIX}- /help")
        print(f"{self.LINE_PREFIX}- /store [store_id]  (show or switch the selected store)")
        print(f"{self.LINE_PREFIX}- /overview")
        print(f"{self.LINE_PREFIX}- /stock")
        print(f"{self.LINE_PREFIX}- /scan <code>")
        print(f"{self.LINE_PREFIX}- /low [store_id]  (add --ask to ask the assistant instead)")
        print(f"{self.LINE_PREFIX}- {TRANSFER_USAGE[len('Usage: '):]}")
        print(f"{self.LINE_PREFIX}- /once <message>  (send without streaming)")
        print(f"{self.LINE_PREFIX}- /live [status|restart]")

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self.LINE_PREFIX}Unknown local command: {trimmed}")

    async def _handle_store_command(self, command: str) -> None:
        parts = command.split()
        location_id, error = parse_location_argument(
            parts, line_prefix=self.LINE_PREFIX, usage="Usage: /store [store_id]"
        )
        if error:
            print(error)
            return
        if location_id is None:
            selected = self._session.snapshot().selected_location_id
            print(f"{self.LINE_PREFIX}Selected store: {selected if selected is not None else 'none'}")
            return
        try:
            stock = await self._session.switch_location(location_id)
        except StockAssistantError as ex:
            print(f"{self.LINE_PREFIX}Could not load store {location_id}: {ex}")
            return
        print(f"{self.LINE_PREFIX}Store {stock.location_id}: {len(stock.items)} item(s)")

    async def _handle_overview_command(self) -> None:
        overview = self._session.snapshot().overview
        if overview is None:
            print(f"{self.LINE_PREFIX}Overview not loaded yet")
            return
        print(
            f"{self.LINE_PREFIX}Items: {overview.total_items} | Quantity: {overview.total_quantity} | "
            f"Low stock: {overview.low_stock_count} | Expiring: {overview.expiring_count}"
        )

    async def _handle_stock_command(self) -> None:
        stock = self._session.snapshot().location_stock
        if stock is None:
            print(f"{self.LINE_PREFIX}No store stock loaded yet")
            return
        print(f"{self.LINE_PREFIX}Store {stock.location_id}:")
        for item in stock.items:
            unit = f" {item.unit}" if item.unit else ""
            category = f" [{item.category}]" if item.category else ""
            print(f"{self.LINE_PREFIX}- {item.product}: {item.quantity}{unit}{category}")

    async def _handle_scan_command(self, command: str) -> None:
        _, _, code = command.partition(" ")
        if not code.strip():
            print(f"{self.LINE_PREFIX}Usage: /scan <code>")
            return
        try:
            await self._session.submit_scan(code)
        except StockAssistantError as ex:
            print(f"{self.LINE_PREFIX}{ex}")
            return
        print("\n")

    async def _handle_low_stock_command(self, command: str) -> None:
        parts = command.split()
        ask = "--ask" in parts
        parts = [p for p in parts if p != "--ask"]
        location_id, error = parse_location_argument(
            parts, line_prefix=self.LINE_PREFIX, usage="Usage: /low [store_id] [--ask]"
        )
        if error:
            print(error)
            return
        target = location_id or self._session.snapshot().selected_location_id
        if target is None:
            print(f"{self.LINE_PREFIX}No store selected; use /low <store_id>")
            return
        if ask:
            await self._submit(low_stock_utterance(target))
            return
        try:
            report = await self._session.low_stock_report(target)
        except StockAssistantError as ex:
            print(f"{self.LINE_PREFIX}Error fetching low stock: {ex}")
            return
        for line in format_low_stock(report).splitlines():
            print(f"{self.LINE_PREFIX}{line}")

    async def _handle_transfer_command(self, command: str) -> None:
        try:
            parts = parse_command(command)
        except ValueError:
            print(f"{self.LINE_PREFIX}Invalid command syntax")
            return
        request, error = parse_transfer_command(parts, line_prefix=self.LINE_PREFIX)
        if request is None:
            print(error or f"{self.LINE_PREFIX}{TRANSFER_USAGE}")
            return
        try:
            result = await self._session.transfer_stock(request)
        except StockAssistantError as ex:
            print(f"{self.LINE_PREFIX}Error performing transfer: {ex}")
            return
        status = "done" if result.ok else "failed"
        print(f"{self.LINE_PREFIX}Transfer {status}: {result.detail}")

    async def _handle_once_command(self, command: str) -> None:
        _, _, text = command.partition(" ")
        if not text.strip():
            print(f"{self.LINE_PREFIX}Usage: /once <message>")
            return
        try:
            entry = await self._session.submit_once(text)
        except StockAssistantError as ex:
            print(f"{self.LINE_PREFIX}{ex}")
            return
        if entry is not None:
            logger.debug(f"Non-streaming reply: {len(entry.text)} chars")
        print("\n")

    async def _handle_live_command(self, command: str) -> None:
        parts = command.split()
        action = parts[1].lower() if len(parts) > 1 else "status"
        if action == "restart":
            await self._session.restart_live_updates()
            print(f"{self.LINE_PREFIX}Live updates restarted")
            return
        if action != "status":
            print(f"{self.LINE_PREFIX}Usage: /live [status|restart]")
            return
        state = "running" if self._session.live_updates_running else "stopped"
        metrics = self._session.live_update_metrics
        last_error = self._session.last_error
        print(
            f"{self.LINE_PREFIX}Live updates {state} events={metrics['events']} "
            f"skipped={metrics['skipped_lines']} overview_pulls={metrics['overview_pulls']} "
            f"store_pulls={metrics['location_pulls']}"
            + (f" last_error='{last_error}'" if last_error else "")
        )

