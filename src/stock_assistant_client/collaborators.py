from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from loguru import logger

from stock_assistant_client.models import Author, SessionSnapshot, TranscriptEntry
from stock_assistant_client.services.session_controller import SessionController


@runtime_checkable
class SpeechOutput(Protocol):
    def speak(self, text: str) -> None: ...

    def stop_speaking(self) -> None: ...


def attach_speech_output(session: SessionController, speech: SpeechOutput) -> Callable[[], None]:
    """Vocalize each completed assistant reply. Returns a detach callable.

    Speech is cut off as soon as the user sends something new; user entries
    are never spoken.
    """
    seen = {"count": len(session.snapshot().transcript)}

    def on_change(snapshot: SessionSnapshot) -> None:
        count = len(snapshot.transcript)
        if count > seen["count"]:
            last = snapshot.transcript.last
            if last is not None and last.author is Author.USER:
                speech.stop_speaking()
        seen["count"] = count

    def on_finalized(entry: TranscriptEntry) -> None:
        if entry.author is not Author.ASSISTANT:
            return
        text = entry.text.strip()
        if not text:
            return
        speech.stop_speaking()
        logger.debug(f"Speaking reply ({len(text)} chars)")
        speech.speak(text)

    detach_finalized = session.on_reply_finalized(on_finalized)
    detach_changes = session.subscribe(on_change)

    def detach() -> None:
        detach_finalized()
        detach_changes()

    return detach
