# bot/main.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys

import discord
from discord.ext import commands

from config import config
from shared.redis_client import close_redis

logger = logging.getLogger("serverstats.bot")

EXTENSIONS = ["bot.commands.serverstats"]


def build_bot() -> commands.Bot:
    intents = discord.Intents.default()
    intents.members = True      # member join/leave + member_count
    intents.presences = True    # online set
    intents.message_content = True  # prefix commands

    bot = commands.Bot(command_prefix=config.BOT_PREFIX, intents=intents)

    @bot.check
    async def globally_block_commands(ctx: commands.Context):
        # Pokud to není rozpoznaný command (jen text), povol dál
        if ctx.command is None:
            return True
        command_config = config.COMMANDS_CONFIG.get(ctx.command.name, {})
        if not command_config.get("enabled", False):
            logger.info(f"Command {ctx.command.name} is disabled in config")
            return False
        if command_config.get("admin_only", False) and not getattr(ctx.author.guild_permissions, "administrator", False):
            logger.warning(f"{ctx.author} ({ctx.author.id}) tried admin-only command {ctx.command.name}")
            return False
        return True

    @bot.event
    async def on_ready():
        logger.info(f"Bot connected: {bot.user} ({bot.user.id}), {len(bot.guilds)} guilds")

    return bot


async def load_commands(bot: commands.Bot):
    for module_name in EXTENSIONS:
        try:
            await bot.load_extension(module_name)
            logger.info(f"{module_name} loaded")
        except Exception as e:
            logger.error(f"Failed loading {module_name}: {e}", exc_info=True)
            raise


async def main():
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    logger.info(f"Platform: {platform.platform()} | Python: {sys.version.split()[0]} | discord.py: {discord.__version__}")

    token = os.getenv("BOT_TOKEN")
    if not token or len(token) < 30:
        logger.critical("Missing valid bot token (BOT_TOKEN)")
        return

    bot = build_bot()
    try:
        async with bot:
            await load_commands(bot)
            await bot.start(token)
    finally:
        # bot.close() unloads the cog, which stops the stats loop first
        await close_redis()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
