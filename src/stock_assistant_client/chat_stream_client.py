from __future__ import annotations

import asyncio
import json

import httpx
from loguru import logger

from stock_assistant_client.errors import ConcurrentRequestRejectedError
from stock_assistant_client.models import TranscriptEntry
from stock_assistant_client.transcript_store import TranscriptStore

UNREACHABLE_MESSAGE = (
    "\n⚠️ Could not reach stock server.\n"
    "Check your network connection and the configured server address."
)
INTERRUPTED_MESSAGE = "\n⚠️ Connection to stock server was lost; the reply above may be incomplete."
_EMPTY_REPLY = "..."


class ChatStreamClient:
    """Drives one chat request/response cycle per user turn.

    Response text is mirrored into the transcript store as it arrives. Transport
    problems become visible diagnostic text in the transcript instead of
    exceptions; only overlapping runs raise.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        store: TranscriptStore,
        connect_timeout_seconds: float = 10.0,
    ) -> None:
        self._http = http_client
        self._store = store
        # once bytes flow there is no per-chunk limit; slow generation is normal
        self._timeout = httpx.Timeout(None, connect=connect_timeout_seconds)
        self._active = False

    @property
    def is_running(self) -> bool:
        return self._active

    async def run(self, text: str, session_id: str) -> TranscriptEntry | None:
        """Stream ``POST /chat_stream`` into the transcript.

        Returns the finalized assistant entry.
        """
        self._claim()
        try:
            return await self._run_streaming(text, session_id)
        finally:
            self._active = False

    async def run_once(self, text: str, session_id: str) -> TranscriptEntry:
        """Non-streaming fallback over ``POST /chat``."""
        self._claim()
        try:
            return await self._run_once(text, session_id)
        finally:
            self._active = False

    def _claim(self) -> None:
        if self._active:
            raise ConcurrentRequestRejectedError("A chat request is already in flight for this session")
        self._active = True

    async def _run_streaming(self, text: str, session_id: str) -> TranscriptEntry | None:
        self._store.set_composing(True)
        self._store.begin_assistant_entry()
        received_chars = 0
        cancelled = False
        try:
            logger.debug(f"Chat stream request: session={session_id}, chars={len(text)}")
            async with self._http.stream(
                "POST",
                "/chat_stream",
                json={"message": text, "session_id": session_id},
                timeout=self._timeout,
            ) as response:
                if response.status_code >= 400:
                    logger.warning(f"Chat stream rejected: HTTP {response.status_code}")
                    self._store.append_fragment(UNREACHABLE_MESSAGE)
                else:
                    # aiter_text keeps multi-byte sequences split across chunks intact
                    async for fragment in response.aiter_text():
                        if not fragment:
                            continue
                        received_chars += len(fragment)
                        self._store.append_fragment(fragment)
            logger.debug(f"Chat stream complete: session={session_id}, chars={received_chars}")
        except httpx.HTTPError as ex:
            if received_chars == 0:
                logger.warning(f"Chat stream could not start: {type(ex).__name__}: {ex}")
                self._store.append_fragment(UNREACHABLE_MESSAGE)
            else:
                logger.warning(
                    f"Chat stream interrupted after {received_chars} chars: {type(ex).__name__}: {ex}"
                )
                self._store.append_fragment(INTERRUPTED_MESSAGE)
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            self._store.set_composing(False)
            finalized = self._store.close_assistant_entry(notify=not cancelled)
        return finalized

    async def _run_once(self, text: str, session_id: str) -> TranscriptEntry:
        self._store.set_composing(True)
        try:
            logger.debug(f"Chat request: session={session_id}, chars={len(text)}")
            response = await self._http.post(
                "/chat",
                json={"message": text, "session_id": session_id},
                timeout=self._timeout,
            )
            if response.status_code >= 400:
                logger.warning(f"Chat request rejected: HTTP {response.status_code}")
                reply = f"Error: HTTP {response.status_code}"
            else:
                reply = extract_reply(response.text)
        except httpx.HTTPError as ex:
            logger.warning(f"Chat request failed: {type(ex).__name__}: {ex}")
            reply = f"Error: {str(ex) or type(ex).__name__}"
        finally:
            self._store.set_composing(False)
        return self._store.append_assistant(reply)


def extract_reply(raw: str) -> str:
    """Pull the ``reply`` field out of a ``/chat`` body, tolerating plain text."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip() or _EMPTY_REPLY
    if isinstance(payload, dict):
        reply = payload.get("reply")
        if isinstance(reply, str):
            return reply
        return _EMPTY_REPLY
    return raw.strip() or _EMPTY_REPLY
