import asyncio
import logging
import signal

from dotenv import load_dotenv

from embedbot.config import SEPARATOR, load_settings
from embedbot.embeds import EmbedBuilder
from embedbot.matcher import MessageMatcher
from embedbot.opensea import OpenSeaClient
from embedbot.registry import CollectionConfigError, CollectionRegistry
from embedbot.schedule import parse_random_intervals
from embedbot.selector import RandomSelector
from embedbot.state import StateManager
from transports.discord_bot import run_discord_bot

log = logging.getLogger(__name__)


def print_config(registry, intervals, settings) -> None:
    log.info(SEPARATOR)
    log.info("Collections:")
    for name, summary in registry.describe():
        log.info("  %s: %s", name, summary)
    if intervals:
        log.info("Random intervals:")
        for interval in intervals:
            log.info("  channel %s: every %s min (%s)", interval.channel_id, interval.minutes, interval.label)
    log.info("State: %s (persistence %s)", settings.state_file, "on" if settings.state_persistence else "off")
    log.info(SEPARATOR)


async def shutdown(discord_task, state, client) -> None:
    """Stop the bot task; state is saved and the client closed even if the bot crashed."""

    discord_task.cancel()
    try:
        await discord_task
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        log.exception("discord bot stopped with an error: %s", exc)
    finally:
        state.save()
        await client.close()


async def main():
    load_dotenv()
    settings = load_settings()
    logging.basicConfig(level=settings.logging_level, format="%(asctime)s %(levelname)s :: %(message)s")

    if not settings.discord_token:
        raise SystemExit("Missing required environment variables.")

    client = OpenSeaClient(settings.opensea_api_token)
    registry = CollectionRegistry(client)
    try:
        registry.init_collections(settings.collections, settings.legacy)
        await registry.init_collection_slugs()
    except CollectionConfigError as exc:
        await client.close()
        raise SystemExit(str(exc))

    state = StateManager(settings.state_file, enable_persistence=settings.state_persistence)
    state.load()

    intervals = parse_random_intervals(settings.random_intervals, registry)
    print_config(registry, intervals, settings)

    builder = EmbedBuilder(registry, client, MessageMatcher(registry))
    selector = RandomSelector(registry, state)

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    discord_task = asyncio.create_task(
        run_discord_bot(builder, selector, state, settings.discord_token, intervals, settings.guild_id)
    )
    stop_task = asyncio.create_task(stop_event.wait())

    await asyncio.wait({discord_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    stop_task.cancel()
    await shutdown(discord_task, state, client)


if __name__ == "__main__":
    asyncio.run(main())
