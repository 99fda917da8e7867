"""Rich-card assembly for matched tokens."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import discord

from .config import DEFAULT_CHAIN, DEFAULT_EMBED_COLOR, MAX_EMBEDS_PER_MESSAGE
from .formatting import (
    extract_nft_subtitle,
    format_amount,
    format_short_date,
    high_res_image,
    render_template,
)
from .matcher import MessageMatcher, TokenMatch, UsernameMatch
from .opensea import NFTNotFoundError, OpenSeaClient
from .registry import CollectionConfig, CollectionRegistry

log = logging.getLogger(__name__)


@dataclass
class EmbedResult:
    embeds: List[discord.Embed] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)

    @property
    def embed_log(self) -> str:
        return f"Replied with {', '.join(self.labels)}" if self.labels else ""


def parse_color(value: Optional[str]) -> discord.Colour:
    try:
        return discord.Colour.from_str(value or DEFAULT_EMBED_COLOR)
    except ValueError:
        log.warning("invalid embed color %r, using default", value)
        return discord.Colour.from_str(DEFAULT_EMBED_COLOR)


def price_value(data: Dict[str, Any], amount_key: str, symbol_key: str) -> Optional[str]:
    amount = data.get(amount_key)
    if amount is None or amount == "":
        return None
    return format_amount(amount, data.get("decimals", 18), data.get(symbol_key) or "")


def sale_field(sale: Dict[str, Any]) -> Optional[str]:
    payment = sale.get("payment")
    if not isinstance(payment, dict):
        return None
    price = price_value(payment, "quantity", "symbol")
    if price is None:
        return None
    closed = sale.get("closing_date") or sale.get("event_timestamp")
    try:
        return f"{price} ({format_short_date(int(closed))})"
    except (TypeError, ValueError, OverflowError, OSError):
        return price


def listing_field(listing: Optional[Dict[str, Any]]) -> Optional[str]:
    current = ((listing or {}).get("price") or {}).get("current")
    if not isinstance(current, dict):
        return None
    return price_value(current, "value", "currency")


def offer_field(offer: Optional[Dict[str, Any]]) -> Optional[str]:
    if not offer or not isinstance(offer.get("price"), dict):
        return None
    # collection-wide offers are not about this item
    if (offer.get("criteria") or {}).get("collection"):
        return None
    return price_value(offer["price"], "value", "currency")


class EmbedBuilder:
    """Turns message text into cards: matches triggers, resolves ids, fetches data."""

    def __init__(
        self,
        registry: CollectionRegistry,
        client: OpenSeaClient,
        matcher: Optional[MessageMatcher] = None,
        *,
        max_embeds: int = MAX_EMBEDS_PER_MESSAGE,
    ) -> None:
        self.registry = registry
        self.client = client
        self.matcher = matcher or MessageMatcher(registry)
        self.max_embeds = max_embeds

    async def build_embed(
        self,
        collection: CollectionConfig,
        token_id: int,
        user_log: List[str],
    ) -> Optional[discord.Embed]:
        if not await self.registry.check_dynamic_token_id(collection, token_id, user_log):
            user_log.append(f"Skipping invalid token: {collection.name} #{token_id}")
            log.debug("invalid token id: %s #%s", collection.name, token_id)
            return None

        started = time.monotonic()
        slug = await self.client.fetch_collection_slug(collection, user_log)
        if not slug:
            user_log.append(f"No slug found for collection: {collection.name}")
            log.warning("no slug found for collection %s", collection.name)
            return None

        nft, last_sale, best_offer, best_listing = await asyncio.gather(
            self.client.fetch_nft(collection, token_id, user_log),
            self.client.fetch_last_sale(collection, token_id, user_log),
            self.client.fetch_best_offer(slug, token_id, user_log),
            self.client.fetch_best_listing(slug, token_id, user_log),
        )

        description = render_template(collection.custom_description, token_id)
        if not description and nft.get("name"):
            subtitle = extract_nft_subtitle(nft["name"])
            if subtitle != nft["name"]:
                description = subtitle

        embed = discord.Embed(
            title=f"{collection.name} #{token_id}",
            url=nft.get("opensea_url"),
            colour=parse_color(collection.color),
            description=description or None,
        )

        owners = nft.get("owners") or []
        if owners and owners[0].get("address"):
            owner = await self.client.get_username(owners[0]["address"], user_log)
            embed.add_field(name="Owner", value=owner, inline=True)

        for name, value in (
            ("Last Sale", sale_field(last_sale) if last_sale else None),
            ("Listed For", listing_field(best_listing)),
            ("Best Offer", offer_field(best_offer)),
        ):
            if value:
                embed.add_field(name=name, value=value, inline=True)

        if collection.custom_image_url:
            image = render_template(collection.custom_image_url, token_id)
        else:
            image = high_res_image(nft.get("display_image_url") or nft.get("image_url"))
        if image:
            embed.set_image(url=image)

        log.debug(
            "built embed for %s #%s with %s fields (%sms)",
            collection.name,
            token_id,
            len(embed.fields),
            int((time.monotonic() - started) * 1000),
        )
        return embed

    async def resolve_username_matches(
        self,
        matches: List[UsernameMatch],
        user_log: List[str],
    ) -> List[TokenMatch]:
        resolved: List[TokenMatch] = []
        for match in matches:
            collection = match.collection
            slug = None
            if collection is not None:
                slug = await self.client.fetch_collection_slug(collection, user_log)
                # an unfiltered lookup could return another contract's item
                if not slug:
                    user_log.append(f"No slug found for collection: {collection.name}, skipping @{match.username}")
                    continue
            chain = collection.chain if collection else DEFAULT_CHAIN

            picked = await self.client.fetch_random_user_nft(match.username, chain, user_log, slug)
            if picked is None:
                continue
            contract = (picked.nft.get("contract") or "").lower()
            if collection is not None and contract != collection.address.lower():
                user_log.append(f"@{match.username}'s pick is not from {collection.name}")
                log.warning("picked nft contract %s does not match %s", contract, collection.address)
                continue
            if collection is None:
                collection = self.registry.get_collection_by_address(contract, chain)
                if collection is None:
                    user_log.append(f"@{match.username}'s pick is not in a configured collection")
                    continue
            resolved.append(TokenMatch(collection=collection, token_id=picked.token_id))
        return resolved

    async def build_embeds_for_matches(self, matches: List[TokenMatch], user_log: List[str]) -> EmbedResult:
        result = EmbedResult()
        for match in matches[: self.max_embeds]:
            try:
                embed = await self.build_embed(match.collection, match.token_id, user_log)
            except NFTNotFoundError as exc:
                user_log.append(str(exc))
                continue
            except Exception as exc:
                user_log.append(f"Error building {match.label}: {exc}")
                log.exception("failed to build embed for %s: %s", match.label, exc)
                continue
            if embed is not None:
                result.embeds.append(embed)
                result.labels.append(match.label)
        return result

    async def build_reply(self, content: str, user_log: List[str]) -> EmbedResult:
        """Cards for every trigger in ``content``; empty when nothing resolved."""

        matches = self.matcher.parse_message_matches(content)
        if len(matches) < self.max_embeds:
            username_matches = self.matcher.parse_username_matches(content)
            if username_matches:
                room = self.max_embeds - len(matches)
                matches += await self.resolve_username_matches(username_matches[:room], user_log)
        if not matches:
            return EmbedResult()
        return await self.build_embeds_for_matches(matches, user_log)
