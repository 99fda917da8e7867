"""Periodic random posting: ``channelId=minutes[:selector]`` entries and rotation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .registry import CollectionConfig, CollectionRegistry

log = logging.getLogger(__name__)

ALL_COLLECTIONS = "*"
DEFAULT_ALIAS = "default"


@dataclass
class RandomInterval:
    channel_id: str
    minutes: float
    selector: str = ""
    collections: List[CollectionConfig] = field(default_factory=list)

    @property
    def seconds(self) -> float:
        return self.minutes * 60

    @property
    def label(self) -> str:
        return collection_label(self.selector)


def collection_label(selector: str) -> str:
    if not selector or selector == ALL_COLLECTIONS:
        return "all collections"
    return selector.replace("+", ", ")


def resolve_collections(selector: str, registry: CollectionRegistry) -> List[CollectionConfig]:
    """Collections a selector names: empty or ``*`` is every collection,
    otherwise ``+``-joined prefixes where ``default`` is the unprefixed one."""

    if not selector or selector == ALL_COLLECTIONS:
        return registry.get_collections()

    resolved: List[CollectionConfig] = []
    for raw in selector.split("+"):
        prefix = raw.strip().lower()
        if prefix == DEFAULT_ALIAS:
            prefix = ""
        collection = registry.get_collection_by_prefix(prefix)
        if collection is None or (prefix == "" and collection.prefix != ""):
            log.warning('unknown collection prefix in random interval config: "%s"', raw)
            continue
        resolved.append(collection)
    return resolved


def parse_random_intervals(raw: str, registry: CollectionRegistry) -> List[RandomInterval]:
    intervals: List[RandomInterval] = []
    for entry in (part.strip() for part in (raw or "").split(",")):
        if not entry:
            continue
        channel_id, _, config = entry.partition("=")
        minutes_raw, _, selector = config.partition(":")
        channel_id, selector = channel_id.strip(), selector.strip()
        try:
            minutes = float(minutes_raw)
        except ValueError:
            minutes = 0.0
        if not channel_id or minutes <= 0:
            log.warning("invalid random interval config: %s", entry)
            continue

        collections = resolve_collections(selector, registry)
        if not collections:
            log.warning("no valid collections for random interval: %s", entry)
            continue
        intervals.append(
            RandomInterval(
                channel_id=channel_id,
                minutes=minutes,
                selector=selector,
                collections=collections,
            )
        )
    return intervals


class CollectionRotation:
    """Round-robin over a channel's collections; kept in memory only."""

    def __init__(self) -> None:
        self._index: Dict[str, int] = {}

    def next(self, channel_id: str, collections: List[CollectionConfig]) -> Optional[CollectionConfig]:
        if not collections:
            return None
        if len(collections) == 1:
            return collections[0]
        current = self._index.get(channel_id, 0)
        self._index[channel_id] = current + 1
        return collections[current % len(collections)]
