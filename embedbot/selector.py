import logging

from .registry import CollectionConfig, CollectionRegistry
from .state import StateManager

log = logging.getLogger(__name__)

MAX_RANDOM_ATTEMPTS = 10


class RandomSelector:
    """Random token picks that steer clear of a channel's recent history."""

    def __init__(
        self,
        registry: CollectionRegistry,
        state: StateManager,
        *,
        max_attempts: int = MAX_RANDOM_ATTEMPTS,
    ) -> None:
        self.registry = registry
        self.state = state
        self.max_attempts = max(1, max_attempts)

    def get_unique_random_token(self, collection: CollectionConfig, channel_id: str) -> int:
        token_id = collection.min_token_id
        for attempt in range(1, self.max_attempts + 1):
            token_id = self.registry.random_token_id(collection)
            if not self.state.was_recently_sent(channel_id, token_id):
                log.debug("unique token #%s for channel %s (attempt %s)", token_id, channel_id, attempt)
                return token_id

        log.debug(
            "no unique token after %s attempts for channel %s, reusing #%s",
            self.max_attempts,
            channel_id,
            token_id,
        )
        return token_id

    def record_sent(self, channel_id: str, token_id: int) -> None:
        self.state.add_recent_token(channel_id, token_id)
        self.state.save()
