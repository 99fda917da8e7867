"""Trigger recognition: ``#1234``, ``#random``, ``prefix#?``, ``#username``."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from .registry import CollectionConfig, CollectionRegistry

log = logging.getLogger(__name__)

RANDOM_KEYWORDS = {"random", "rand", "?"}
RESERVED_USERNAMES = {"random", "rand"}
USERNAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]{2,14}$")


@dataclass
class TokenMatch:
    collection: CollectionConfig
    token_id: int

    @property
    def label(self) -> str:
        return f"{self.collection.trigger}{self.token_id}"


@dataclass
class UsernameMatch:
    username: str
    collection: Optional[CollectionConfig] = None


def is_username(value: str) -> bool:
    return bool(USERNAME_PATTERN.match(value)) and value.lower() not in RESERVED_USERNAMES


class MessageMatcher:
    """Finds collection triggers in free-form text.

    The prefix alternation is compiled from the registry and rebuilt whenever
    the registry has been re-initialised since the last scan.
    """

    def __init__(self, registry: CollectionRegistry) -> None:
        self.registry = registry
        self._compiled_version: Optional[int] = None
        self._token_regex: Optional[Pattern[str]] = None
        self._username_regex: Optional[Pattern[str]] = None

    def _prefix_group(self) -> str:
        # longest first so "artx" wins over "art"
        prefixes = sorted(self.registry.prefixes(), key=len, reverse=True)
        if not prefixes:
            return "()"
        return "((?:" + "|".join(re.escape(p) for p in prefixes) + ")?)"

    def _patterns(self) -> Tuple[Pattern[str], Pattern[str]]:
        if self._compiled_version != self.registry.version or self._token_regex is None:
            group = self._prefix_group()
            token = group + r"#(random|rand|\?|[0-9]+)(?!\w)"
            username = group + r"#([a-zA-Z][a-zA-Z0-9_]{2,14})(?!\w)"
            log.debug("token match pattern: %s", token)
            log.debug("username match pattern: %s", username)
            self._token_regex = re.compile(token, re.IGNORECASE)
            self._username_regex = re.compile(username, re.IGNORECASE)
            self._compiled_version = self.registry.version
        return self._token_regex, self._username_regex

    def _resolve_collection(self, prefix: str) -> Optional[CollectionConfig]:
        if prefix:
            return self.registry.get_collection_by_prefix(prefix) or self.registry.get_default_collection()
        return self.registry.get_default_collection()

    def parse_message_matches(self, content: str) -> List[TokenMatch]:
        token_regex, _ = self._patterns()
        matches: List[TokenMatch] = []

        for found in token_regex.finditer(content or ""):
            prefix, id_part = found.group(1) or "", found.group(2).lower()
            collection = self._resolve_collection(prefix)
            if collection is None:
                log.debug('no collection for prefix "%s", skipping', prefix)
                continue

            is_random = id_part in RANDOM_KEYWORDS
            token_id = self.registry.random_token_id(collection) if is_random else int(id_part)

            # ids past the last known supply may be new mints; the caller re-checks them
            pending_dynamic = (
                not is_random and collection.dynamic_supply and token_id > collection.max_token_id
            )
            if self.registry.is_valid_token_id(collection, token_id) or pending_dynamic:
                matches.append(TokenMatch(collection=collection, token_id=token_id))
                log.debug(
                    "matched %s #%s%s",
                    collection.name,
                    token_id,
                    " (pending supply check)" if pending_dynamic else "",
                )
            else:
                log.debug(
                    "token #%s out of range for %s (%s)",
                    token_id,
                    collection.name,
                    collection.range_display,
                )

        if matches:
            log.info(
                "found %s match%s: %s",
                len(matches),
                "" if len(matches) == 1 else "es",
                ", ".join(f"{m.collection.name} #{m.token_id}" for m in matches),
            )
        return matches

    def parse_username_matches(self, content: str) -> List[UsernameMatch]:
        _, username_regex = self._patterns()
        matches: List[UsernameMatch] = []

        for found in username_regex.finditer(content or ""):
            prefix, username = found.group(1) or "", found.group(2)
            if not is_username(username):
                continue
            if prefix:
                collection = self.registry.get_collection_by_prefix(prefix)
            else:
                collection = self.registry.get_default_collection()
            matches.append(UsernameMatch(username=username, collection=collection))

        if matches:
            log.info(
                "found %s username match%s: %s",
                len(matches),
                "" if len(matches) == 1 else "es",
                ", ".join(f"{m.collection.name if m.collection else 'any'}#{m.username}" for m in matches),
            )
        return matches
