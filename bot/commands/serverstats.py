# commands/serverstats.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from typing import Optional, Union

import discord
from discord import app_commands
from discord.ext import commands
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import config
from shared.errors import ConfigUnavailable, ServerStatsError, StatsUnavailable
from shared.redis_client import get_redis
from shared.stats_config import ConfigResolver
from shared.stats_maintenance import StatsUpdateLoop
from shared.stats_recorder import (
    apply_guild_snapshot,
    apply_presences,
    record_member_join,
    record_member_leave,
    record_message,
    record_presence,
)
from shared.stats_retriever import FullStats, retrieve_full_stats

logger = logging.getLogger("serverstats.cog")


def _presences(guild: discord.Guild):
    return [(m.id, str(m.status)) for m in guild.members]


def build_stats_embed(guild_id: int, stats: FullStats) -> discord.Embed:
    embed = discord.Embed(
        title="Statistiky serveru",
        description=f"[Otevřít v prohlížeči](https://{config.STATS_HOST}/public/{guild_id}/stats)",
        color=0x3498DB,
    )
    embed.add_field(name="Připojení za 24h", value=str(stats.joined_day), inline=True)
    embed.add_field(name="Odchody za 24h", value=str(stats.left_day), inline=True)
    embed.add_field(name="Zprávy za 24h", value=str(stats.total_messages), inline=True)
    embed.add_field(name="Členové online", value=str(stats.online), inline=True)
    embed.add_field(name="Členů celkem", value=str(stats.total_members), inline=True)

    top = stats.channels_hour[: config.STATS_TOP_CHANNELS]
    if top:
        lines = [f"<#{c.channel_id}>: **{c.count}**" for c in top]
        embed.add_field(name="Nejaktivnější kanály", value="\n".join(lines), inline=False)
    return embed


class ServerStats(commands.Cog):
    """Records guild activity into Redis and shows the 24h summary."""

    def __init__(self, bot: commands.Bot, r: Optional[redis.Redis] = None, resolver: Optional[ConfigResolver] = None):
        self.bot = bot
        self.r = r
        self.resolver = resolver
        self.update_loop = StatsUpdateLoop(self._get_redis, interval=config.STATS_LOOP_INTERVAL_SEC)

    async def _get_redis(self) -> redis.Redis:
        if self.r is None:
            self.r = await get_redis()
        return self.r

    async def cog_load(self):
        r = await self._get_redis()
        if self.resolver is None:
            self.resolver = ConfigResolver(r)
        self.update_loop.start()

    async def cog_unload(self):
        # waits for the running maintenance pass to finish
        await self.update_loop.stop()

    # --- EVENTS ---

    @commands.Cog.listener()
    async def on_ready(self):
        r = await self._get_redis()
        for guild in self.bot.guilds:
            if guild.unavailable:
                continue
            try:
                await apply_presences(r, guild.id, _presences(guild))
            except (ServerStatsError, RedisError) as e:
                logger.error(f"Failed applying presences for guild {guild.id}: {e}")

    @commands.Cog.listener()
    async def on_guild_available(self, guild: discord.Guild):
        await apply_guild_snapshot(await self._get_redis(), guild.id, guild.member_count, _presences(guild))

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild):
        await apply_guild_snapshot(await self._get_redis(), guild.id, guild.member_count, _presences(guild))

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member):
        await record_member_join(await self._get_redis(), member.guild.id, member.id)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member):
        await record_member_leave(await self._get_redis(), member.guild.id, member.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        guild = message.guild
        await record_message(
            await self._get_redis(),
            self.resolver,
            guild.id if guild else None,
            message.channel.id,
            message.id,
            message.author.id,
            private=guild is None,
        )

    @commands.Cog.listener()
    async def on_presence_update(self, before: discord.Member, after: discord.Member):
        if before.status == after.status:
            return  # activity/avatar change, not a status update
        await record_presence(await self._get_redis(), after.guild.id, after.id, str(after.status))

    # --- COMMANDS ---

    async def stats_reply(self, guild: discord.Guild) -> Union[str, discord.Embed]:
        """Text or embed answering the stats command for `guild`."""
        try:
            conf = await self.resolver.get_config(guild.id)
        except ConfigUnavailable as e:
            logger.error(f"Stats command: {e}")
            return "❌ Nepodařilo se načíst nastavení serveru."

        if not conf.public:
            return (
                "🔒 Statistiky jsou na tomto serveru soukromé, "
                f"zveřejnit je lze v nastavení na <https://{config.STATS_HOST}>"
            )

        names = {c.id: c.name for c in guild.text_channels}
        try:
            stats = await retrieve_full_stats(await self._get_redis(), guild.id, channel_names=names)
        except StatsUnavailable as e:
            logger.error(f"Stats command: {e}")
            return "❌ Statistiky nejsou momentálně dostupné."

        return build_stats_embed(guild.id, stats)

    @commands.hybrid_command(name="stats", description="Zobrazí statistiky serveru (pokud jsou veřejné).")
    @commands.guild_only()
    @commands.cooldown(1, 5, commands.BucketType.user)
    async def stats(self, ctx: commands.Context):
        reply = await self.stats_reply(ctx.guild)
        if isinstance(reply, discord.Embed):
            await ctx.send(embed=reply)
        else:
            await ctx.send(reply)

    @commands.hybrid_command(name="statsconfig", description="Nastavení statistik serveru (admin).")
    @app_commands.describe(
        public="Zveřejnit statistiky",
        ignore_channels="ID kanálů oddělená čárkou, které se nepočítají",
    )
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def statsconfig(self, ctx: commands.Context, public: Optional[bool] = None, ignore_channels: Optional[str] = None):
        try:
            conf = await self.resolver.save_config(ctx.guild.id, public=public, ignore_channels=ignore_channels)
        except ConfigUnavailable as e:
            logger.error(f"Statsconfig command: {e}")
            await ctx.send("❌ Nastavení se nepodařilo uložit.")
            return

        ignored = ", ".join(f"<#{cid}>" for cid in sorted(conf.parsed_channels)) or "žádné"
        state = "veřejné" if conf.public else "soukromé"
        await ctx.send(f"✅ Statistiky jsou **{state}**, ignorované kanály: {ignored}")


async def setup(bot: commands.Bot):
    await bot.add_cog(ServerStats(bot))
