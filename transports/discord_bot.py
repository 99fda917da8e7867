import asyncio
import logging
from typing import Dict, List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from embedbot.config import SEPARATOR
from embedbot.embeds import EmbedBuilder
from embedbot.schedule import CollectionRotation, RandomInterval
from embedbot.selector import RandomSelector
from embedbot.state import StateManager

log = logging.getLogger(__name__)


def flush_user_log(user_log: List[str]) -> None:
    if not user_log:
        return
    for line in user_log:
        log.info(line)
    log.info(SEPARATOR)


class EmbedBotTransport(commands.Bot):
    def __init__(
        self,
        builder: EmbedBuilder,
        selector: RandomSelector,
        state: StateManager,
        intervals: Optional[List[RandomInterval]] = None,
        *,
        guild_id: Optional[int] = None,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.builder = builder
        self.selector = selector
        self.state = state
        self.intervals = intervals or []
        self.guild_id = guild_id
        self.rotation = CollectionRotation()
        self._interval_tasks: Dict[str, asyncio.Task] = {}

    async def setup_hook(self) -> None:
        self.tree.add_command(self._collections_command())
        if self.guild_id:
            guild = discord.Object(id=self.guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()

    def _collections_command(self) -> app_commands.Command:
        @app_commands.command(name="collections", description="List the configured collections")
        async def collections(interaction: discord.Interaction):
            await interaction.response.send_message(
                self.builder.registry.get_help_text(), ephemeral=True
            )

        return collections

    async def on_ready(self):
        log.info("Discord bot ready as %s", self.user)
        self.start_random_intervals()

    def start_random_intervals(self) -> None:
        for interval in self.intervals:
            task = self._interval_tasks.get(interval.channel_id)
            if task is not None and not task.done():
                continue
            log.info(
                "random posts every %s minute(s) in channel %s from %s",
                interval.minutes,
                interval.channel_id,
                interval.label,
            )
            self._interval_tasks[interval.channel_id] = asyncio.create_task(
                self._random_post_loop(interval)
            )

    async def on_message(self, message: discord.Message):
        if not message or not message.content:
            return
        if message.author.bot:
            return
        await self.process_message(message)

    async def process_message(self, message: discord.Message) -> bool:
        """Reply with cards for the triggers in ``message``; True when a reply went out."""

        user_log: List[str] = []
        try:
            result = await self.builder.build_reply(message.content, user_log)
            if not result.embeds:
                return False
            await message.reply(embeds=result.embeds)
            user_log.append(result.embed_log)
            return True
        except Exception as exc:
            user_log.append(f"Error: {exc}")
            log.exception("failed to handle message %s: %s", message.id, exc)
            return False
        finally:
            flush_user_log(user_log)

    async def _resolve_channel(self, channel_id: str):
        channel = self.get_channel(int(channel_id))
        if channel is None:
            channel = await self.fetch_channel(int(channel_id))
        return channel

    async def post_random(self, interval: RandomInterval) -> bool:
        collection = self.rotation.next(interval.channel_id, interval.collections)
        if collection is None:
            return False

        user_log: List[str] = [f"Random post for channel {interval.channel_id} from {collection.name}"]
        try:
            channel = await self._resolve_channel(interval.channel_id)
            token_id = self.selector.get_unique_random_token(collection, interval.channel_id)
            embed = await self.builder.build_embed(collection, token_id, user_log)
            if embed is None:
                return False
            await channel.send(embed=embed)
            self.state.set_last_random_post(interval.channel_id)
            self.selector.record_sent(interval.channel_id, token_id)
            user_log.append(f"Sent {collection.trigger}{token_id}")
            return True
        except Exception as exc:
            user_log.append(f"Error: {exc}")
            log.exception("random post failed for channel %s: %s", interval.channel_id, exc)
            return False
        finally:
            flush_user_log(user_log)

    def initial_delay(self, interval: RandomInterval) -> float:
        # first post after a full interval unless an earlier run left a timestamp
        if self.state.get_last_random_post(interval.channel_id) is None:
            return interval.seconds
        return self.state.seconds_until_next_post(interval.channel_id, interval.seconds)

    async def _random_post_loop(self, interval: RandomInterval) -> None:
        await self.wait_until_ready()
        delay = self.initial_delay(interval)
        if delay > 0:
            log.info("channel %s: next random post in %.0fs", interval.channel_id, delay)
            await asyncio.sleep(delay)
        while True:
            await self.post_random(interval)
            await asyncio.sleep(interval.seconds)

    async def close(self) -> None:
        for task in self._interval_tasks.values():
            task.cancel()
        self._interval_tasks.clear()
        await self.builder.client.close()
        await super().close()


async def run_discord_bot(
    builder: EmbedBuilder,
    selector: RandomSelector,
    state: StateManager,
    token: str,
    intervals: Optional[List[RandomInterval]] = None,
    guild_id: Optional[int] = None,
):
    bot = EmbedBotTransport(builder, selector, state, intervals, guild_id=guild_id)
    try:
        await bot.start(token)
    finally:
        await bot.close()
