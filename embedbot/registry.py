"""Collection configuration parsing and the in-process collection registry."""

from __future__ import annotations

import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .config import DEFAULT_CHAIN, DEFAULT_EMBED_COLOR, LegacyCollectionSettings

log = logging.getLogger(__name__)

ADDRESS_MARKER = "0x"
DYNAMIC_SUPPLY_MARKER = "*"
DEFAULT_MAX_TOKEN_ID = 10_000

COLLECTIONS_FORMAT = (
    "address:name:minId:maxId[:chain][:color][:customDescription][:imageUrl],"
    "prefix:address:name:minId:maxId[:chain][:color][:customDescription][:imageUrl]"
)
COLLECTIONS_EXAMPLE = "0x123...:MyNFT:1:10000,other:0x456...:OtherNFT:0:5000"

# a URL not opened by a markdown link's "("
STANDALONE_URL_PATTERN = re.compile(r"(?<!\()https?://[^\s)]+")
BROKEN_LINK_URL_PATTERN = re.compile(r"\((https?):/*")
TRAILING_SEPARATOR_PATTERN = re.compile(r":$")


class CollectionConfigError(ValueError):
    """Raised when the collection configuration yields nothing usable."""


@dataclass
class CollectionConfig:
    prefix: str
    address: str
    name: str
    chain: str = DEFAULT_CHAIN
    min_token_id: int = 0
    max_token_id: int = DEFAULT_MAX_TOKEN_ID
    dynamic_supply: bool = False
    color: str = DEFAULT_EMBED_COLOR
    custom_description: Optional[str] = None
    custom_image_url: Optional[str] = None

    @property
    def trigger(self) -> str:
        return f"{self.prefix}#" if self.prefix else "#"

    @property
    def range_display(self) -> str:
        if self.dynamic_supply and self.max_token_id == 0:
            return f"{self.min_token_id}-* (dynamic)"
        return f"{self.min_token_id}-{self.max_token_id}"


def _to_int(value: Optional[str], default: int) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed or default


def _is_integral(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float):
        return not math.isnan(value) and value.is_integer()
    return True


def fix_broken_urls(text: str) -> str:
    """Restore ``scheme://`` inside markdown link targets mangled by the ``:`` split."""

    return BROKEN_LINK_URL_PATTERN.sub(r"(\1://", text)


def parse_extra_fields(extra_parts: List[str]) -> Dict[str, Optional[str]]:
    """Split the free-form tail into a custom description and an image URL.

    The last standalone URL is the image URL when nothing (or only a closing
    parenthesis) follows it; everything before it is the description. Without
    such a URL the whole tail is the description.
    """

    if not extra_parts:
        return {"description": None, "image_url": None}

    joined = ":".join(extra_parts)
    urls = STANDALONE_URL_PATTERN.findall(joined)
    if urls:
        last_url = urls[-1]
        index = joined.rfind(last_url)
        before = joined[:index].strip()
        after = joined[index + len(last_url):].strip()
        before = TRAILING_SEPARATOR_PATTERN.sub("", before).strip()
        if not after or after.startswith(")"):
            return {
                "description": fix_broken_urls(before) if before else None,
                "image_url": last_url,
            }

    return {"description": fix_broken_urls(joined), "image_url": None}


def _extract_collection_fields(parts: List[str], has_prefix: bool) -> CollectionConfig:
    offset = 0 if has_prefix else -1

    def part(index: int) -> str:
        position = index + offset
        return parts[position] if 0 <= position < len(parts) else ""

    extra_start = 7 + offset
    extras = parse_extra_fields(parts[extra_start:] if len(parts) > extra_start else [])

    max_raw = part(4).strip()
    dynamic_supply = max_raw == DYNAMIC_SUPPLY_MARKER
    # placeholder until the supply is fetched
    max_token_id = 0 if dynamic_supply else _to_int(max_raw, DEFAULT_MAX_TOKEN_ID)

    return CollectionConfig(
        prefix=(parts[0] if has_prefix else "").strip().lower(),
        address=part(1).strip(),
        name=part(2).strip(),
        chain=part(5).strip() or DEFAULT_CHAIN,
        min_token_id=_to_int(part(3), 0),
        max_token_id=max_token_id,
        dynamic_supply=dynamic_supply,
        color=part(6).strip() or DEFAULT_EMBED_COLOR,
        custom_description=extras["description"],
        custom_image_url=extras["image_url"],
    )


def parse_collection_entry(entry: str, is_first: bool) -> Optional[CollectionConfig]:
    parts = entry.split(":")
    # only the first entry may omit its prefix; it does so by leading with an address
    has_prefix = not is_first or not parts[0].strip().startswith(ADDRESS_MARKER)
    min_parts = 5 if has_prefix else 4

    if len(parts) < min_parts:
        log.warning("invalid collection config (need at least %s parts): %s", min_parts, entry)
        return None

    config = _extract_collection_fields(parts, has_prefix)
    if not (config.address and config.name):
        log.warning("missing required fields in collection config: %s", entry)
        return None

    label = f'"{config.prefix}"' if config.prefix else "(default)"
    log.debug("parsed collection %s: %s (%s)", label, config.name, config.range_display)
    return config


def parse_collections(raw: str) -> List[CollectionConfig]:
    if not raw or not raw.strip():
        return []
    collections: List[CollectionConfig] = []
    for index, entry in enumerate(part.strip() for part in raw.split(",")):
        config = parse_collection_entry(entry, index == 0)
        if config:
            collections.append(config)
    return collections


def parse_legacy_collection(legacy: LegacyCollectionSettings) -> Optional[CollectionConfig]:
    if not (legacy.token_address and legacy.token_name):
        return None
    log.debug("using legacy single-collection settings (TOKEN_ADDRESS, TOKEN_NAME)")
    return CollectionConfig(
        prefix="",
        address=legacy.token_address,
        name=legacy.token_name,
        chain=legacy.chain or DEFAULT_CHAIN,
        min_token_id=_to_int(legacy.min_token_id, 0),
        max_token_id=_to_int(legacy.max_token_id, DEFAULT_MAX_TOKEN_ID),
        color=legacy.embed_color or DEFAULT_EMBED_COLOR,
        custom_description=legacy.custom_description or None,
    )


class CollectionRegistry:
    """Configured collections keyed by lowercase prefix.

    ``client`` is the marketplace client used for slug and supply lookups; it
    is only needed by the async operations.
    """

    def __init__(self, client=None) -> None:
        self.client = client
        self._collections: Dict[str, CollectionConfig] = {}
        self.version = 0

    def init_collections(
        self,
        raw: str = "",
        legacy: Optional[LegacyCollectionSettings] = None,
    ) -> None:
        log.info("initializing collections")
        self._collections.clear()

        parsed = parse_collections(raw)
        if parsed:
            for collection in parsed:
                if collection.prefix in self._collections:
                    log.warning("duplicate collection prefix %r, keeping the last entry", collection.prefix)
                self._collections[collection.prefix] = collection
                if collection.prefix:
                    log.info('collection "%s": %s', collection.prefix, collection.name)
                else:
                    log.info("default collection: %s", collection.name)
        elif legacy is not None:
            fallback = parse_legacy_collection(legacy)
            if fallback:
                self._collections[""] = fallback
                log.info("collection (legacy): %s", fallback.name)

        self.version += 1

        if not self._collections:
            raise CollectionConfigError(
                "No collections configured. Set COLLECTIONS env var.\n"
                f"Format: {COLLECTIONS_FORMAT}\n"
                f"Example: {COLLECTIONS_EXAMPLE}"
            )
        log.info("loaded %s collection(s)", len(self._collections))

    def get_collections(self) -> List[CollectionConfig]:
        return list(self._collections.values())

    def get_default_collection(self) -> Optional[CollectionConfig]:
        explicit = self._collections.get("")
        if explicit:
            return explicit
        return next(iter(self._collections.values()), None)

    def get_collection_by_prefix(self, prefix: str) -> Optional[CollectionConfig]:
        return self._collections.get((prefix or "").lower())

    def get_collection_by_address(self, address: str, chain: Optional[str] = None) -> Optional[CollectionConfig]:
        wanted = (address or "").lower()
        for collection in self._collections.values():
            if collection.address.lower() != wanted:
                continue
            if chain and collection.chain != chain:
                continue
            return collection
        return None

    def prefixes(self) -> List[str]:
        return [prefix for prefix in self._collections if prefix]

    @staticmethod
    def is_valid_token_id(collection: CollectionConfig, token_id) -> bool:
        if not _is_integral(token_id):
            return False
        return collection.min_token_id <= token_id <= collection.max_token_id

    @staticmethod
    def random_token_id(collection: CollectionConfig) -> int:
        # an unresolved dynamic placeholder collapses the range to its minimum
        upper = max(collection.max_token_id, collection.min_token_id)
        token_id = random.randint(collection.min_token_id, upper)
        log.debug("random token for %s: #%s", collection.name, token_id)
        return token_id

    async def get_slug_for_collection(self, collection: CollectionConfig, user_log: List[str]) -> Optional[str]:
        return await self.client.fetch_collection_slug(collection, user_log)

    async def init_collection_slugs(self) -> None:
        """Resolve every slug and, for dynamic collections, the current supply."""

        log.info("fetching slugs for all collections")
        user_log: List[str] = []
        for collection in self._collections.values():
            slug = await self.get_slug_for_collection(collection, user_log)
            if not slug:
                raise CollectionConfigError(f"Could not find slug for collection: {collection.name}")
            if collection.dynamic_supply:
                total_supply = await self.client.fetch_total_supply(slug, user_log)
                if total_supply is None:
                    raise CollectionConfigError(
                        f"Could not fetch total supply for collection: {collection.name}"
                    )
                collection.max_token_id = total_supply
                log.info("dynamic max token id for %s: %s", collection.name, total_supply)
        for line in user_log:
            log.info(line)
        log.info("all collection slugs initialized")

    async def check_dynamic_token_id(
        self,
        collection: CollectionConfig,
        token_id,
        user_log: List[str],
    ) -> bool:
        if not _is_integral(token_id) or token_id < collection.min_token_id:
            return False
        if token_id <= collection.max_token_id:
            return True
        if not collection.dynamic_supply:
            return False

        log.info(
            "token #%s exceeds current max (%s) for %s, checking for new mints",
            token_id,
            collection.max_token_id,
            collection.name,
        )
        slug = await self.get_slug_for_collection(collection, user_log)
        if not slug:
            return False
        total_supply = await self.client.fetch_total_supply(slug, user_log)
        if total_supply is None:
            log.warning("failed to refresh total supply for %s", collection.name)
            return False
        if total_supply > collection.max_token_id:
            log.info(
                "max token id for %s: %s -> %s",
                collection.name,
                collection.max_token_id,
                total_supply,
            )
            collection.max_token_id = total_supply
        return token_id <= collection.max_token_id

    def get_help_text(self) -> str:
        lines = ["**Available collections:**"]
        for collection in self._collections.values():
            example = f"{collection.prefix}#1234" if collection.prefix else "#1234"
            lines.append(f"• `{example}` - {collection.name}")
        return "\n".join(lines)

    def describe(self) -> List[Tuple[str, str]]:
        """(label, summary) pairs for the startup configuration printout."""

        rows = []
        for collection in self._collections.values():
            syntax = f"#1234, {collection.prefix}#1234" if collection.prefix else "#1234"
            rows.append(
                (
                    collection.name,
                    f"address={collection.address} chain={collection.chain} "
                    f"syntax={syntax} range={collection.range_display}",
                )
            )
        return rows
