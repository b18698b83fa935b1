from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_store: Callable[[str], Awaitable[None]],
        on_overview: Callable[[], Awaitable[None]],
        on_stock: Callable[[], Awaitable[None]],
        on_scan: Callable[[str], Awaitable[None]],
        on_low_stock: Callable[[str], Awaitable[None]],
        on_transfer: Callable[[str], Awaitable[None]],
        on_once: Callable[[str], Awaitable[None]],
        on_live: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_store = on_store
        self._on_overview = on_overview
        self._on_stock = on_stock
        self._on_scan = on_scan
        self._on_low_stock = on_low_stock
        self._on_transfer = on_transfer
        self._on_once = on_once
        self._on_live = on_live
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, _ = trimmed.partition(" ")
        if command == "/help":
            await self._on_help()
            return True
        if command == "/store":
            await self._on_store(trimmed)
            return True
        if command == "/overview":
            await self._on_overview()
            return True
        if command == "/stock":
            await self._on_stock()
            return True
        if command == "/scan":
            await self._on_scan(trimmed)
            return True
        if command == "/low":
            await self._on_low_stock(trimmed)
            return True
        if command == "/transfer":
            await self._on_transfer(trimmed)
            return True
        if command == "/once":
            await self._on_once(trimmed)
            return True
        if command == "/live":
            await self._on_live(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
