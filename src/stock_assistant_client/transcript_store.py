from __future__ import annotations

import threading
from collections.abc import Callable

from loguru import logger

from stock_assistant_client.errors import InvalidInputError
from stock_assistant_client.models import Author, TranscriptEntry, TranscriptSnapshot

TranscriptListener = Callable[[TranscriptSnapshot], None]
FinalizedListener = Callable[[TranscriptEntry], None]


class TranscriptStore:
    """Ordered conversation entries plus the "assistant is composing" flag.

    Every write replaces the whole entry tuple under a lock, so a snapshot
    taken from any task or thread is never a half-applied update. The open
    assistant entry is tracked by index and is extended by replacement.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: tuple[TranscriptEntry, ...] = ()
        self._composing = False
        self._open_index: int | None = None
        self._listeners: list[TranscriptListener] = []
        self._finalized_listeners: list[FinalizedListener] = []

    def snapshot(self) -> TranscriptSnapshot:
        with self._lock:
            return TranscriptSnapshot(self._entries, self._composing)

    @property
    def composing(self) -> bool:
        return self._composing

    def append_user(self, text: str) -> int:
        if not text or not text.strip():
            raise InvalidInputError("Message text must not be blank")
        with self._lock:
            self._entries = self._entries + (TranscriptEntry(Author.USER, text),)
            # a user entry terminates whatever assistant entry was open
            self._open_index = None
            length = len(self._entries)
        self._notify()
        return length

    def begin_assistant_entry(self) -> None:
        with self._lock:
            self._entries = self._entries + (TranscriptEntry(Author.ASSISTANT, ""),)
            self._open_index = len(self._entries) - 1
        self._notify()

    def append_fragment(self, delta: str) -> None:
        if not delta:
            return
        with self._lock:
            last_index = len(self._entries) - 1
            if self._open_index is not None and self._open_index == last_index:
                updated = self._entries[last_index].with_appended(delta)
                self._entries = self._entries[:last_index] + (updated,)
            else:
                self._entries = self._entries + (TranscriptEntry(Author.ASSISTANT, delta),)
                self._open_index = len(self._entries) - 1
        self._notify()

    def append_assistant(self, text: str) -> TranscriptEntry:
        """Append a complete assistant entry that is finalized immediately."""
        entry = TranscriptEntry(Author.ASSISTANT, text)
        with self._lock:
            self._entries = self._entries + (entry,)
            self._open_index = None
        self._notify()
        self._notify_finalized(entry)
        return entry

    def close_assistant_entry(self, *, notify: bool = True) -> TranscriptEntry | None:
        """Finalize the open assistant entry, if any, and return it.

        With ``notify=False`` the entry is closed without telling
        finalized-entry listeners, as for a reply abandoned mid-stream.
        """
        with self._lock:
            if self._open_index is None:
                return None
            entry = self._entries[self._open_index]
            self._open_index = None
        if notify:
            self._notify_finalized(entry)
        return entry

    def set_composing(self, composing: bool) -> None:
        with self._lock:
            if self._composing == composing:
                return
            self._composing = composing
        self._notify()

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._remove(self._listeners, listener)

    def subscribe_finalized(self, listener: FinalizedListener) -> Callable[[], None]:
        self._finalized_listeners.append(listener)
        return lambda: self._remove(self._finalized_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: object) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as ex:
                logger.warning(f"Transcript listener failed: {ex}")

    def _notify_finalized(self, entry: TranscriptEntry) -> None:
        if entry.author is not Author.ASSISTANT:
            return
        for listener in list(self._finalized_listeners):
            try:
                listener(entry)
            except Exception as ex:
                logger.warning(f"Finalized-entry listener failed: {ex}")
