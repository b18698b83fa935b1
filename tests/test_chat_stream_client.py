import asyncio
import unittest

import httpx

from http_fakes import ChunkStream, make_client, request_json
from stock_assistant_client.chat_stream_client import (
    INTERRUPTED_MESSAGE,
    UNREACHABLE_MESSAGE,
    ChatStreamClient,
    extract_reply,
)
from stock_assistant_client.errors import ConcurrentRequestRejectedError
from stock_assistant_client.models import Author
from stock_assistant_client.transcript_store import TranscriptStore


class ChatStreamClientTests(unittest.TestCase):
    def _run(self, handler, text: str = "hi", *, once: bool = False) -> tuple[TranscriptStore, object]:
        store = TranscriptStore()

        async def scenario():
            async with make_client(handler) as http:
                client = ChatStreamClient(http_client=http, store=store)
                if once:
                    return await client.run_once(text, "s-1")
                return await client.run(text, "s-1")

        return store, asyncio.run(scenario())

    def test_streams_fragments_into_one_entry(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, stream=ChunkStream([b"Low stock ", b"at store ", b"103: bread"]))

        store, finalized = self._run(handler, "low stock 103")

        snapshot = store.snapshot()
        self.assertEqual(1, len(snapshot))
        self.assertEqual("Low stock at store 103: bread", snapshot.last.text)
        self.assertEqual(snapshot.last, finalized)
        self.assertFalse(snapshot.composing)
        self.assertEqual("/chat_stream", requests[0].url.path)
        self.assertEqual({"message": "low stock 103", "session_id": "s-1"}, request_json(requests[0]))

    def test_multibyte_characters_split_across_chunks(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, stream=ChunkStream([b"caf\xc3", b"\xa9 \xe2\x9c", b"\x93 ok"]))

        store, _ = self._run(handler)

        self.assertEqual("café ✓ ok", store.snapshot().last.text)

    def test_connect_failure_becomes_diagnostic_entry(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        store, finalized = self._run(handler)

        snapshot = store.snapshot()
        self.assertEqual(UNREACHABLE_MESSAGE, snapshot.last.text)
        self.assertEqual(Author.ASSISTANT, snapshot.last.author)
        self.assertFalse(snapshot.composing)
        self.assertIsNotNone(finalized)

    def test_error_status_becomes_diagnostic_entry(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="down")

        store, _ = self._run(handler)

        self.assertEqual(UNREACHABLE_MESSAGE, store.snapshot().last.text)

    def test_mid_stream_failure_keeps_partial_text(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                stream=ChunkStream([b"Hel", b"lo"], error=httpx.ReadError("connection reset")),
            )

        store, _ = self._run(handler)

        snapshot = store.snapshot()
        self.assertEqual(1, len(snapshot))
        self.assertTrue(snapshot.last.text.startswith("Hello"))
        self.assertEqual("Hello" + INTERRUPTED_MESSAGE, snapshot.last.text)
        self.assertFalse(snapshot.composing)

    def test_overlapping_run_is_rejected_and_first_run_completes(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        store = TranscriptStore()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            return httpx.Response(200, stream=ChunkStream([b"first ", b"reply"], hold=release))

        async def scenario() -> None:
            async with make_client(handler) as http:
                client = ChatStreamClient(http_client=http, store=store)
                first = asyncio.create_task(client.run("one", "s-1"))
                await started.wait()
                self.assertTrue(client.is_running)
                self.assertTrue(store.snapshot().composing)

                with self.assertRaises(ConcurrentRequestRejectedError):
                    await client.run("two", "s-1")

                release.set()
                await first
                self.assertFalse(client.is_running)

        asyncio.run(scenario())

        snapshot = store.snapshot()
        self.assertEqual(1, len(snapshot))
        self.assertEqual("first reply", snapshot.last.text)
        self.assertFalse(snapshot.composing)

    def test_cancelled_run_resets_composing(self) -> None:
        started = asyncio.Event()
        store = TranscriptStore()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            return httpx.Response(200, stream=ChunkStream([b"partial"], hold=asyncio.Event()))

        async def scenario() -> None:
            async with make_client(handler) as http:
                client = ChatStreamClient(http_client=http, store=store)
                task = asyncio.create_task(client.run("one", "s-1"))
                await started.wait()
                await asyncio.sleep(0.01)
                task.cancel()
                with self.assertRaises(asyncio.CancelledError):
                    await task
                self.assertFalse(client.is_running)

        asyncio.run(scenario())

        snapshot = store.snapshot()
        self.assertFalse(snapshot.composing)
        self.assertEqual("partial", snapshot.last.text)

    def test_run_once_appends_reply(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"reply": "Transferred 2 bread."})

        store, entry = self._run(handler, "transfer", once=True)

        self.assertEqual("/chat", requests[0].url.path)
        self.assertEqual("Transferred 2 bread.", entry.text)
        self.assertEqual(entry, store.snapshot().last)
        self.assertFalse(store.snapshot().composing)

    def test_run_once_failure_appends_error_entry(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host")

        store, entry = self._run(handler, once=True)

        self.assertTrue(entry.text.startswith("Error: "))
        self.assertIn("no route to host", entry.text)
        self.assertFalse(store.snapshot().composing)


class ExtractReplyTests(unittest.TestCase):
    def test_reply_field(self) -> None:
        self.assertEqual("ok", extract_reply('{"reply": "ok"}'))

    def test_missing_reply_field(self) -> None:
        self.assertEqual("...", extract_reply('{"answer": "ok"}'))

    def test_plain_text_body(self) -> None:
        self.assertEqual("plain words", extract_reply("  plain words \n"))
        self.assertEqual("...", extract_reply("   "))


if __name__ == "__main__":
    unittest.main()
