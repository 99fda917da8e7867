"""Bot state persisted across restarts as a single JSON snapshot."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

STATE_VERSION = 1
RECENT_TOKENS_LIMIT = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def default_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "updatedAt": _now_iso(),
        "recentTokens": {},
        "lastRandomPost": {},
        "custom": {},
    }


class StateManager:
    """Per-channel recency lists, last random post times and free-form values.

    Loaded at most once; saved only when something changed. I/O failures are
    logged and the in-memory state keeps working.
    """

    def __init__(self, path: Path, *, enable_persistence: bool = True) -> None:
        self.path = Path(path)
        self.enable_persistence = enable_persistence
        self._state: Dict[str, Any] = default_state()
        self._loaded = False
        self._dirty = False

    def load(self) -> None:
        if self._loaded:
            log.debug("state already loaded, skipping")
            return
        self._loaded = True

        if not self.enable_persistence:
            log.debug("persistence disabled, using in-memory state")
            return
        if not self.path.exists():
            log.debug("no state file at %s, starting fresh", self.path)
            return

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as exc:
            log.error("failed to load state from %s: %s", self.path, exc)
            return
        if not isinstance(payload, dict):
            log.error("ignoring state file %s: expected an object", self.path)
            return
        self._apply(payload)
        for channel_id, tokens in self._state["recentTokens"].items():
            log.debug("channel %s: %s recent tokens", channel_id, len(tokens))

    def _apply(self, payload: Dict[str, Any]) -> None:
        if isinstance(payload.get("version"), int):
            self._state["version"] = payload["version"]
        if isinstance(payload.get("updatedAt"), str):
            self._state["updatedAt"] = payload["updatedAt"]
        recent = payload.get("recentTokens")
        if isinstance(recent, dict):
            self._state["recentTokens"] = {
                str(channel): [int(t) for t in tokens if isinstance(t, int)]
                for channel, tokens in recent.items()
                if isinstance(tokens, list)
            }
        last_posts = payload.get("lastRandomPost")
        if isinstance(last_posts, dict):
            self._state["lastRandomPost"] = {str(k): str(v) for k, v in last_posts.items()}
        custom = payload.get("custom")
        if isinstance(custom, dict):
            self._state["custom"] = custom

    def save(self) -> None:
        if not self.enable_persistence:
            log.debug("persistence disabled, skipping save")
            return
        if not self._dirty:
            log.debug("state not dirty, skipping save")
            return

        self._state["updatedAt"] = _now_iso()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._state, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except Exception as exc:
            log.error("failed to save state to %s: %s", self.path, exc)
            return
        self._dirty = False
        log.debug("saved state to %s", self.path)

    def _mark_dirty(self) -> None:
        self._dirty = True

    # ----- recent tokens -----
    def get_recent_tokens(self, channel_id: str) -> List[int]:
        return list(self._state["recentTokens"].get(str(channel_id), []))

    def add_recent_token(self, channel_id: str, token_id: int) -> None:
        key = str(channel_id)
        recent = [t for t in self._state["recentTokens"].get(key, []) if t != token_id]
        updated = [token_id, *recent][:RECENT_TOKENS_LIMIT]
        self._state["recentTokens"][key] = updated
        self._mark_dirty()
        log.debug("recorded token #%s for channel %s (%s total)", token_id, key, len(updated))

    def was_recently_sent(self, channel_id: str, token_id: int) -> bool:
        sent = token_id in self._state["recentTokens"].get(str(channel_id), [])
        if sent:
            log.debug("token #%s was recently sent to channel %s", token_id, channel_id)
        return sent

    def clear_recent_tokens(self, channel_id: str) -> None:
        key = str(channel_id)
        if key in self._state["recentTokens"]:
            count = len(self._state["recentTokens"][key])
            self._state["recentTokens"][key] = []
            self._mark_dirty()
            log.debug("cleared %s recent tokens for channel %s", count, key)

    # ----- random post timing -----
    def get_last_random_post(self, channel_id: str) -> Optional[datetime]:
        raw = self._state["lastRandomPost"].get(str(channel_id))
        return _parse_iso(raw) if raw else None

    def set_last_random_post(self, channel_id: str, timestamp: Optional[datetime] = None) -> None:
        when = timestamp or datetime.now(timezone.utc)
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self._state["lastRandomPost"][str(channel_id)] = when.isoformat().replace("+00:00", "Z")
        self._mark_dirty()

    def seconds_until_next_post(self, channel_id: str, interval_seconds: float) -> float:
        last = self.get_last_random_post(channel_id)
        if last is None:
            return 0.0
        elapsed = (datetime.now(timezone.utc) - last).total_seconds()
        return max(0.0, interval_seconds - elapsed)

    def should_post_random(self, channel_id: str, interval_seconds: float) -> bool:
        remaining = self.seconds_until_next_post(channel_id, interval_seconds)
        log.debug("channel %s: %.0fs until next random post", channel_id, remaining)
        return remaining <= 0

    # ----- custom values -----
    def get_custom(self, key: str, default: Any = None) -> Any:
        return self._state["custom"].get(key, default)

    def set_custom(self, key: str, value: Any) -> None:
        self._state["custom"][key] = value
        self._mark_dirty()

    def delete_custom(self, key: str) -> bool:
        if key in self._state["custom"]:
            del self._state["custom"][key]
            self._mark_dirty()
            return True
        return False

    # ----- introspection -----
    def get_state(self) -> Dict[str, Any]:
        return self._state

    def get_state_info(self) -> Dict[str, int]:
        recent = self._state["recentTokens"]
        return {
            "channel_count": len(recent),
            "total_tokens": sum(len(tokens) for tokens in recent.values()),
        }

    def is_loaded(self) -> bool:
        return self._loaded

    def is_dirty(self) -> bool:
        return self._dirty

    def reset(self) -> None:
        self._state = default_state()
        self._dirty = False
        self._loaded = False
