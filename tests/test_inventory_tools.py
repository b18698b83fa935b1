import asyncio
import unittest

import httpx

from http_fakes import make_client, request_json
from stock_assistant_client.errors import ParseFailureError, TransportFailureError
from stock_assistant_client.inventory_tools import (
    InventoryToolsClient,
    LowStockItem,
    LowStockReport,
    TransferRequest,
    format_low_stock,
)


class InventoryToolsClientTests(unittest.TestCase):
    def test_get_low_stock(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"store_id": 101, "low_stock_items": [{"product": "Milk", "qty": 2}]},
            )

        async def scenario() -> LowStockReport:
            async with make_client(handler) as http:
                return await InventoryToolsClient(http_client=http).get_low_stock(101, threshold=5)

        report = asyncio.run(scenario())

        self.assertEqual(LowStockReport(101, (LowStockItem("Milk", 2),)), report)
        self.assertEqual("/tool/get_low_stock", seen[0].url.path)
        self.assertEqual({"store_id": "101", "threshold": "5"}, dict(seen[0].url.params))

    def test_malformed_low_stock_item_is_a_parse_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"low_stock_items": [{"product": "Milk", "qty": "two"}]})

        async def scenario() -> None:
            async with make_client(handler) as http:
                await InventoryToolsClient(http_client=http).get_low_stock(101)

        with self.assertRaises(ParseFailureError):
            asyncio.run(scenario())

    def test_transfer_stock(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request_json(request))
            return httpx.Response(200, json={"ok": True, "detail": "Moved 4 Milk"})

        async def scenario():
            async with make_client(handler) as http:
                return await InventoryToolsClient(http_client=http).transfer_stock(
                    TransferRequest("Milk", 101, 102, 4)
                )

        result = asyncio.run(scenario())

        self.assertTrue(result.ok)
        self.assertEqual("Moved 4 Milk", result.detail)
        self.assertEqual([{"product_name": "Milk", "from_store": 101, "to_store": 102, "quantity": 4}], bodies)

    def test_http_error_status_is_a_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        async def scenario() -> None:
            async with make_client(handler) as http:
                await InventoryToolsClient(http_client=http).transfer_stock(TransferRequest("Milk", 101, 102, 4))

        with self.assertRaises(TransportFailureError) as ctx:
            asyncio.run(scenario())
        self.assertEqual(502, ctx.exception.status_code)
        self.assertEqual("tools", ctx.exception.channel)

    def test_format_low_stock(self) -> None:
        self.assertEqual("No low stock items for store 7.", format_low_stock(LowStockReport(7, ())))
        report = LowStockReport(7, (LowStockItem("Milk", 2), LowStockItem("Eggs", 0)))
        self.assertEqual("Milk: 2\nEggs: 0", format_low_stock(report))


if __name__ == "__main__":
    unittest.main()
