import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_CHAIN = "ethereum"
DEFAULT_EMBED_COLOR = "#121212"
OPENSEA_API_BASE = "https://api.opensea.io/api/v2"

MAX_EMBEDS_PER_MESSAGE = 6
USERNAME_CACHE_CAPACITY = 100
COLLECTION_SLUG_CACHE_CAPACITY = 10

STATE_FILE_NAME = "embed-bot-state.json"
DEFAULT_STATE_DIR = ".state"

SEPARATOR = "═" * 80

_FALSY = {"0", "false", "no", "off"}
_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class LegacyCollectionSettings:
    token_address: str = ""
    token_name: str = ""
    chain: str = ""
    min_token_id: str = ""
    max_token_id: str = ""
    custom_description: str = ""
    embed_color: str = ""


@dataclass
class Settings:
    discord_token: str = ""
    opensea_api_token: str = ""
    collections: str = ""
    legacy: LegacyCollectionSettings = field(default_factory=LegacyCollectionSettings)
    random_intervals: str = ""
    state_dir: str = DEFAULT_STATE_DIR
    state_persistence: bool = True
    log_level: str = "info"
    guild_id: Optional[int] = None

    @property
    def state_file(self) -> Path:
        return Path(self.state_dir) / STATE_FILE_NAME

    @property
    def logging_level(self) -> int:
        return _LOG_LEVELS.get(self.log_level.lower(), logging.INFO)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the process environment (or an explicit mapping)."""

    source = os.environ if env is None else env

    def get(name: str, default: str = "") -> str:
        return (source.get(name) or default).strip()

    guild_raw = get("DISCORD_GUILD_ID")
    return Settings(
        discord_token=get("DISCORD_TOKEN"),
        opensea_api_token=get("OPENSEA_API_TOKEN"),
        collections=get("COLLECTIONS"),
        legacy=LegacyCollectionSettings(
            token_address=get("TOKEN_ADDRESS"),
            token_name=get("TOKEN_NAME"),
            chain=get("CHAIN"),
            min_token_id=get("MIN_TOKEN_ID"),
            max_token_id=get("MAX_TOKEN_ID"),
            custom_description=source.get("CUSTOM_DESCRIPTION") or "",
            embed_color=get("EMBED_COLOR"),
        ),
        random_intervals=get("RANDOM_INTERVALS"),
        state_dir=get("STATE_DIR", DEFAULT_STATE_DIR),
        state_persistence=get("STATE_PERSISTENCE", "1").lower() not in _FALSY,
        log_level=get("LOG_LEVEL", "info"),
        guild_id=int(guild_raw) if guild_raw.isdigit() else None,
    )
