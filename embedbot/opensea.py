"""Async OpenSea v2 client used for item metadata, prices and accounts."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp

from .cache import LRUCache
from .config import (
    COLLECTION_SLUG_CACHE_CAPACITY,
    OPENSEA_API_BASE,
    USERNAME_CACHE_CAPACITY,
)
from .registry import CollectionConfig

log = logging.getLogger(__name__)

ADDRESS_PREFIX_LENGTH = 7
ADDRESS_SUFFIX_START = 37
ADDRESS_SUFFIX_END = 42

ACCOUNT_NFTS_PAGE_SIZE = 50
ACCOUNT_NFTS_MAX_PAGES = 4


class NFTNotFoundError(LookupError):
    """The marketplace has no metadata for a requested item."""

    def __init__(self, collection: CollectionConfig, token_id: int) -> None:
        super().__init__(
            f"NFT not found: {collection.name} #{token_id} "
            f"(contract: {collection.address}, chain: {collection.chain})"
        )
        self.collection = collection
        self.token_id = token_id


@dataclass
class UserNFT:
    nft: Dict[str, Any]
    token_id: int


def short_address(address: str) -> str:
    """``0x38a16…c7eb3`` style display for a full address."""

    return f"{address[:ADDRESS_PREFIX_LENGTH]}…{address[ADDRESS_SUFFIX_START:ADDRESS_SUFFIX_END]}"


class OpenSeaUrls:
    def __init__(self, base: str = OPENSEA_API_BASE) -> None:
        self.base = base.rstrip("/")

    def account(self, address_or_username: str) -> str:
        return f"{self.base}/accounts/{address_or_username}"

    def nft(self, collection: CollectionConfig, token_id: int) -> str:
        return f"{self.base}/chain/{collection.chain}/contract/{collection.address}/nfts/{token_id}"

    def contract(self, collection: CollectionConfig) -> str:
        return f"{self.base}/chain/{collection.chain}/contract/{collection.address}"

    def collection(self, slug: str) -> str:
        return f"{self.base}/collections/{slug}"

    def best_offer(self, slug: str, token_id: int) -> str:
        return f"{self.base}/offers/collection/{slug}/nfts/{token_id}/best"

    def best_listing(self, slug: str, token_id: int) -> str:
        return f"{self.base}/listings/collection/{slug}/nfts/{token_id}/best"

    def events(self, collection: CollectionConfig, token_id: int) -> str:
        return (
            f"{self.base}/events/chain/{collection.chain}"
            f"/contract/{collection.address}/nfts/{token_id}"
        )

    def last_sale(self, collection: CollectionConfig, token_id: int) -> str:
        return f"{self.events(collection, token_id)}?{urlencode({'event_type': 'sale', 'limit': 1})}"

    def account_nfts(
        self,
        chain: str,
        address: str,
        collection_slug: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> str:
        params = {"limit": str(ACCOUNT_NFTS_PAGE_SIZE)}
        if collection_slug:
            params["collection"] = collection_slug
        if cursor:
            params["next"] = cursor
        return f"{self.base}/chain/{chain}/account/{address}/nfts?{urlencode(params)}"


class OpenSeaClient:
    """Marketplace lookups.

    Every fetch takes ``user_log``, a list of human-readable lines reported
    after the message is handled. Failures are appended there and resolve to
    ``None``; only ``fetch_nft`` raises.
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        api_base: str = OPENSEA_API_BASE,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.urls = OpenSeaUrls(api_base)
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self.slug_cache: LRUCache[str, str] = LRUCache(COLLECTION_SLUG_CACHE_CAPACITY)
        self.username_cache: LRUCache[str, str] = LRUCache(USERNAME_CACHE_CAPACITY)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "X-API-KEY": self.api_key}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def get_json(self, url: str, user_log: List[str], expect_404: bool = False) -> Optional[Any]:
        """GET ``url``; ``expect_404`` marks a 404 as "nothing there" rather than an error."""

        started = time.monotonic()
        try:
            log.debug("fetching %s", url)
            async with self._get_session().get(url, headers=self.headers) as resp:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if not 200 <= resp.status < 300:
                    if resp.status == 404 and expect_404:
                        log.debug("no data at %s (%sms)", url, elapsed_ms)
                        return None
                    user_log.append(f"Fetch Error for {url} - {resp.status}: {resp.reason}")
                    log.warning("api error %s for %s (%sms): %s", resp.status, url, elapsed_ms, resp.reason)
                    if log.isEnabledFor(logging.DEBUG):
                        try:
                            log.debug("response body: %s", await resp.text())
                        except Exception as exc:
                            log.debug("could not read error body: %s", exc)
                    return None
                payload = await resp.json(content_type=None)
                log.debug("fetched %s (%sms)", url, elapsed_ms)
                return payload
        except Exception as exc:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            user_log.append(f"Fetch Error for {url}: {exc}")
            log.error("request failed for %s (%sms): %s", url, elapsed_ms, exc)
            return None

    async def fetch_collection_slug(self, collection: CollectionConfig, user_log: List[str]) -> Optional[str]:
        cache_key = f"{collection.chain}:{collection.address}"
        cached = self.slug_cache.get(cache_key)
        if cached:
            log.debug("slug cache hit for %s: %s", collection.name, cached)
            return cached

        log.info("fetching slug for %s (%s)", collection.name, collection.address)
        result = await self.get_json(self.urls.contract(collection), user_log)
        slug = result.get("collection") if isinstance(result, dict) else None
        if slug:
            self.slug_cache.put(cache_key, slug)
            log.info("slug for %s: %s", collection.name, slug)
            return slug
        log.warning("failed to get slug for %s", collection.name)
        return None

    async def fetch_total_supply(self, slug: str, user_log: List[str]) -> Optional[int]:
        result = await self.get_json(self.urls.collection(slug), user_log)
        if not isinstance(result, dict):
            return None
        try:
            return int(result["total_supply"])
        except (KeyError, TypeError, ValueError):
            user_log.append(f"No total supply reported for {slug}")
            log.warning("no total_supply in collection response for %s", slug)
            return None

    async def fetch_nft(self, collection: CollectionConfig, token_id: int, user_log: List[str]) -> Dict[str, Any]:
        log.debug("fetching nft %s #%s", collection.name, token_id)
        user_log.append(f"Fetching {collection.name} #{token_id}…")
        result = await self.get_json(self.urls.nft(collection, token_id), user_log)
        nft = result.get("nft") if isinstance(result, dict) else None
        if not nft:
            log.error("nft not found: %s #%s (contract: %s)", collection.name, token_id, collection.address)
            raise NFTNotFoundError(collection, token_id)
        return nft

    async def fetch_last_sale(
        self, collection: CollectionConfig, token_id: int, user_log: List[str]
    ) -> Optional[Dict[str, Any]]:
        result = await self.get_json(self.urls.last_sale(collection, token_id), user_log)
        events = result.get("asset_events") if isinstance(result, dict) else None
        if events:
            log.debug("found last sale for %s #%s", collection.name, token_id)
            return events[0]
        return None

    async def fetch_best_offer(self, slug: str, token_id: int, user_log: List[str]) -> Optional[Dict[str, Any]]:
        log.debug("fetching best offer %s #%s", slug, token_id)
        return await self.get_json(self.urls.best_offer(slug, token_id), user_log, expect_404=True)

    async def fetch_best_listing(self, slug: str, token_id: int, user_log: List[str]) -> Optional[Dict[str, Any]]:
        log.debug("fetching best listing %s #%s", slug, token_id)
        return await self.get_json(self.urls.best_listing(slug, token_id), user_log, expect_404=True)

    async def fetch_account(self, address_or_username: str, user_log: List[str]) -> Optional[Dict[str, Any]]:
        result = await self.get_json(self.urls.account(address_or_username), user_log)
        return result if isinstance(result, dict) else None

    async def get_username(self, address: str, user_log: List[str]) -> str:
        """OpenSea username for ``address``, else its shortened form. Never raises."""

        if address in self.username_cache:
            cached = self.username_cache.get(address)
            display = cached or short_address(address)
            log.debug("username cache hit for %s: %s", address, display)
            return display

        account = await self.fetch_account(address, user_log)
        username = (account or {}).get("username") or ""
        self.username_cache.put(address, username)
        display = username or short_address(address)
        log.debug("resolved username for %s: %s", address, display)
        return display

    async def fetch_account_address(self, username: str, user_log: List[str]) -> Optional[str]:
        account = await self.fetch_account(username, user_log)
        address = (account or {}).get("address")
        if address:
            log.debug("resolved %s to %s", username, address)
            return address
        log.warning("username not found: %s", username)
        return None

    async def fetch_account_nfts(
        self,
        address: str,
        chain: str,
        user_log: List[str],
        collection_slug: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        nfts: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        for _ in range(ACCOUNT_NFTS_MAX_PAGES):
            url = self.urls.account_nfts(chain, address, collection_slug, cursor)
            result = await self.get_json(url, user_log)
            if not isinstance(result, dict):
                break
            nfts.extend(item for item in result.get("nfts") or [] if isinstance(item, dict))
            cursor = result.get("next")
            if not cursor:
                break
        log.debug("found %s nfts for %s", len(nfts), address)
        return nfts

    async def fetch_random_user_nft(
        self,
        username: str,
        chain: str,
        user_log: List[str],
        collection_slug: Optional[str] = None,
    ) -> Optional[UserNFT]:
        scope = f" in collection {collection_slug}" if collection_slug else ""
        log.info("fetching random nft for %s%s", username, scope)
        user_log.append(f"Looking up NFTs owned by @{username}…")

        address = await self.fetch_account_address(username, user_log)
        if not address:
            user_log.append(f"User @{username} not found")
            return None

        candidates = []
        for nft in await self.fetch_account_nfts(address, chain, user_log, collection_slug):
            try:
                candidates.append(UserNFT(nft=nft, token_id=int(nft.get("identifier"))))
            except (TypeError, ValueError):
                continue
        if not candidates:
            user_log.append(f"No NFTs found for @{username}{scope}")
            return None

        picked = random.choice(candidates)
        log.info("selected %s for @%s", picked.nft.get("name") or f"#{picked.token_id}", username)
        return picked
