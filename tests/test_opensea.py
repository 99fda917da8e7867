from __future__ import annotations

import unittest
from unittest.mock import patch

from embedbot.opensea import NFTNotFoundError, OpenSeaClient, short_address
from embedbot.registry import CollectionConfig

ADDRESS = "0x38a16bd5c2c0ee2e28c2e6bb9e5f1cd1a7ac7eb3"


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, reason: str = "OK") -> None:  # noqa: ANN001
        self.status = status
        self.reason = reason
        self._payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):  # noqa: ANN002
        return False

    async def json(self, content_type=None):  # noqa: ANN001
        return self._payload

    async def text(self) -> str:
        return str(self._payload)


class FakeSession:
    """Routes URLs to canned responses by substring."""

    def __init__(self, routes) -> None:  # noqa: ANN001
        self.routes = routes
        self.requests = []
        self.closed = False

    def get(self, url, headers=None):  # noqa: ANN001
        self.requests.append(url)
        for needle, response in self.routes:
            if needle in url:
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(404, None, "Not Found")

    async def close(self) -> None:
        self.closed = True


def collection() -> CollectionConfig:
    return CollectionConfig(prefix="", address="0xabc", name="TestNFT", min_token_id=1, max_token_id=100)


class OpenSeaClientTests(unittest.IsolatedAsyncioTestCase):
    def make_client(self, routes) -> OpenSeaClient:  # noqa: ANN001
        self.session = FakeSession(routes)
        return OpenSeaClient("key", session=self.session)

    async def test_slug_lookup_is_cached(self) -> None:
        client = self.make_client([("/contract/0xabc", FakeResponse(payload={"collection": "test-nft"}))])

        first = await client.fetch_collection_slug(collection(), [])
        second = await client.fetch_collection_slug(collection(), [])

        self.assertEqual((first, second), ("test-nft", "test-nft"))
        self.assertEqual(len(self.session.requests), 1)

    async def test_http_error_is_logged_and_absent(self) -> None:
        client = self.make_client([("/events/", FakeResponse(500, None, "Server Error"))])
        user_log = []

        sale = await client.fetch_last_sale(collection(), 5, user_log)

        self.assertIsNone(sale)
        self.assertEqual(len(user_log), 1)
        self.assertIn("500: Server Error", user_log[0])

    async def test_network_error_is_logged_and_absent(self) -> None:
        client = self.make_client([("/collections/", OSError("connection reset"))])
        user_log = []

        self.assertIsNone(await client.fetch_total_supply("test-nft", user_log))
        self.assertIn("connection reset", user_log[0])

    async def test_missing_offer_and_listing_are_not_errors(self) -> None:
        client = self.make_client([])
        user_log = []

        self.assertIsNone(await client.fetch_best_offer("test-nft", 5, user_log))
        self.assertIsNone(await client.fetch_best_listing("test-nft", 5, user_log))
        self.assertEqual(user_log, [])

    async def test_fetch_nft_raises_when_absent(self) -> None:
        client = self.make_client([])

        with self.assertRaises(NFTNotFoundError) as ctx:
            await client.fetch_nft(collection(), 5, [])

        self.assertEqual(ctx.exception.token_id, 5)
        self.assertEqual(ctx.exception.collection.name, "TestNFT")

    async def test_fetch_nft_and_last_sale(self) -> None:
        client = self.make_client(
            [
                ("/nfts/5?", FakeResponse(payload={"asset_events": [{"event_type": "sale"}]})),
                ("/nfts/5", FakeResponse(payload={"nft": {"identifier": "5", "name": "TestNFT #5"}})),
            ]
        )

        nft = await client.fetch_nft(collection(), 5, [])
        sale = await client.fetch_last_sale(collection(), 5, [])

        self.assertEqual(nft["name"], "TestNFT #5")
        self.assertEqual(sale, {"event_type": "sale"})

    async def test_total_supply(self) -> None:
        client = self.make_client([("/collections/test-nft", FakeResponse(payload={"total_supply": 777}))])

        self.assertEqual(await client.fetch_total_supply("test-nft", []), 777)

    async def test_username_cache_stores_empty_username(self) -> None:
        client = self.make_client([("/accounts/", FakeResponse(payload={"address": ADDRESS, "username": ""}))])

        first = await client.get_username(ADDRESS, [])
        second = await client.get_username(ADDRESS, [])

        self.assertEqual(first, short_address(ADDRESS))
        self.assertEqual(second, first)
        self.assertEqual(len(self.session.requests), 1)
        self.assertIn(ADDRESS, client.username_cache)

    async def test_username_falls_back_on_errors(self) -> None:
        client = self.make_client([("/accounts/", FakeResponse(503, None, "Unavailable"))])

        self.assertEqual(await client.get_username(ADDRESS, []), "0x38a16…c7eb3")

    async def test_account_nfts_follow_cursor(self) -> None:
        client = self.make_client(
            [
                ("next=page2", FakeResponse(payload={"nfts": [{"identifier": "2"}]})),
                ("/account/", FakeResponse(payload={"nfts": [{"identifier": "1"}], "next": "page2"})),
            ]
        )

        nfts = await client.fetch_account_nfts(ADDRESS, "ethereum", [], "test-nft")

        self.assertEqual([n["identifier"] for n in nfts], ["1", "2"])
        self.assertIn("collection=test-nft", self.session.requests[0])
        self.assertIn("limit=50", self.session.requests[0])

    async def test_account_nfts_stop_after_four_pages(self) -> None:
        client = self.make_client([("/account/", FakeResponse(payload={"nfts": [{"identifier": "1"}], "next": "more"}))])

        nfts = await client.fetch_account_nfts(ADDRESS, "ethereum", [])

        self.assertEqual(len(nfts), 4)
        self.assertEqual(len(self.session.requests), 4)

    async def test_random_user_nft(self) -> None:
        client = self.make_client(
            [
                ("/accounts/alice", FakeResponse(payload={"address": ADDRESS, "username": "alice"})),
                ("/account/", FakeResponse(payload={"nfts": [{"identifier": "7", "contract": "0xabc"}, {"identifier": "x"}]})),
            ]
        )
        user_log = []

        with patch("embedbot.opensea.random.choice", side_effect=lambda items: items[0]):
            picked = await client.fetch_random_user_nft("alice", "ethereum", user_log)

        self.assertEqual(picked.token_id, 7)
        self.assertEqual(picked.nft["contract"], "0xabc")
        self.assertEqual(user_log[0], "Looking up NFTs owned by @alice…")

    async def test_random_user_nft_unknown_user(self) -> None:
        client = self.make_client([])
        user_log = []

        self.assertIsNone(await client.fetch_random_user_nft("ghost", "ethereum", user_log))
        self.assertIn("User @ghost not found", user_log)

    async def test_random_user_nft_owns_nothing(self) -> None:
        client = self.make_client(
            [
                ("/accounts/alice", FakeResponse(payload={"address": ADDRESS})),
                ("/account/", FakeResponse(payload={"nfts": []})),
            ]
        )
        user_log = []

        self.assertIsNone(await client.fetch_random_user_nft("alice", "ethereum", user_log, "test-nft"))
        self.assertIn("No NFTs found for @alice in collection test-nft", user_log)

    async def test_close_leaves_injected_session_open(self) -> None:
        client = self.make_client([])

        await client.close()

        self.assertFalse(self.session.closed)

    def test_headers(self) -> None:
        client = OpenSeaClient("secret")

        self.assertEqual(client.headers["X-API-KEY"], "secret")
        self.assertEqual(client.headers["Accept"], "application/json")


if __name__ == "__main__":
    unittest.main()
