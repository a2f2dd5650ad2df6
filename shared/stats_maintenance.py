# shared/stats_maintenance.py
# Periodic trim of the 24h sorted sets for guilds marked active.
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import redis.asyncio as redis
from discord.ext import tasks
from redis.exceptions import RedisError, WatchError

from config.config import STATS_LOOP_INTERVAL_SEC, STATS_RETENTION_SEC
from shared.errors import ServerStatsError
from shared.keys import ACTIVE_GUILDS, K_JOINED, K_LEFT, K_MESSAGES
from shared.redis_client import get_redis_replies

logger = logging.getLogger("serverstats.maintenance")

CLEAR_MARKER_ATTEMPTS = 3


@dataclass
class MaintenanceReport:
    processed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    # trimmed, but marked again while the pass ran; picked up next cycle
    requeued: List[int] = field(default_factory=list)


async def trim_guild(r: redis.Redis, guild_id: int, now: float, retention: int = STATS_RETENTION_SEC) -> None:
    """Drop joined/left/message entries older than now - retention. Safe to repeat."""
    cutoff = int(now - retention)
    pipe = r.pipeline(transaction=False)
    for key in (K_JOINED(guild_id), K_LEFT(guild_id), K_MESSAGES(guild_id)):
        # exclusive bound: entries scored exactly at the cutoff stay
        pipe.zremrangebyscore(key, "-inf", f"({cutoff}")
    await get_redis_replies(pipe, 3)


async def clear_active_marker(r: redis.Redis, member: str, seen_score: float) -> bool:
    """
    Remove `member` from the active set if its mark counter still equals
    `seen_score`, the value read when the pass started.

    Compare and remove run under WATCH/MULTI. Returns False if the guild was
    marked again in the meantime; it then stays in the set.
    """
    async with r.pipeline(transaction=True) as pipe:
        for _ in range(CLEAR_MARKER_ATTEMPTS):
            try:
                await pipe.watch(ACTIVE_GUILDS)
                score = await pipe.zscore(ACTIVE_GUILDS, member)
                if score is None:
                    return True
                if score != seen_score:
                    return False
                pipe.multi()
                pipe.zrem(ACTIVE_GUILDS, member)
                await pipe.execute()
                return True
            except WatchError:
                # some guild was marked between WATCH and EXEC, compare again
                continue
    return False


async def run_maintenance_cycle(
    r: redis.Redis,
    now: Optional[float] = None,
    retention: int = STATS_RETENTION_SEC,
) -> MaintenanceReport:
    report = MaintenanceReport()
    now = time.time() if now is None else now

    try:
        guilds = await r.zrange(ACTIVE_GUILDS, 0, -1, withscores=True)
    except RedisError as e:
        logger.error(f"Failed reading active guilds: {e}")
        return report

    for raw, seen_score in guilds:
        try:
            guild_id = int(raw)
        except ValueError:
            logger.warning(f"Dropping invalid active guild entry {raw!r}")
            try:
                await r.zrem(ACTIVE_GUILDS, raw)
            except RedisError as e:
                logger.error(f"Failed dropping invalid active guild entry {raw!r}: {e}")
            continue

        try:
            await trim_guild(r, guild_id, now, retention)
        except ServerStatsError as e:
            # stays active, retried next cycle
            logger.error(f"Failed trimming stats of guild {guild_id}: {e}")
            report.failed.append(guild_id)
            continue

        try:
            cleared = await clear_active_marker(r, raw, seen_score)
        except RedisError as e:
            logger.error(f"Failed clearing active marker of guild {guild_id}: {e}")
            report.failed.append(guild_id)
            continue

        if cleared:
            report.processed.append(guild_id)
        else:
            logger.debug(f"Guild {guild_id} got new events during maintenance, kept active")
            report.requeued.append(guild_id)

    if report.processed or report.failed:
        logger.info(f"Stats maintenance: {len(report.processed)} guilds trimmed, {len(report.failed)} failed")
    return report


class StatsUpdateLoop:
    """
    Runs run_maintenance_cycle every `interval` seconds on a discord.ext.tasks loop.

    stop() is a request/acknowledge handshake: an in-flight cycle is allowed
    to finish, an idle wait between cycles is cut short, and stop() returns
    once the task has exited and `stopped` is set.
    """

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[redis.Redis]],
        interval: float = STATS_LOOP_INTERVAL_SEC,
        retention: int = STATS_RETENTION_SEC,
    ):
        self._redis_factory = redis_factory
        self.interval = interval
        self.retention = retention
        self.stopped = asyncio.Event()
        self.cycles = 0
        self._in_cycle = False
        self.update_stats.change_interval(seconds=interval)

    @property
    def running(self) -> bool:
        return self.update_stats.is_running()

    def start(self) -> None:
        if self.running:
            return
        self.stopped.clear()
        self.update_stats.start()
        logger.info(f"Stats update loop started (interval {self.interval}s)")

    async def stop(self) -> None:
        task = self.update_stats.get_task()
        if task is None or task.done():
            return
        if self._in_cycle:
            self.update_stats.stop()
        else:
            # idle between cycles; stop() alone would sleep out the interval and run once more
            self.update_stats.cancel()
        await asyncio.gather(task, return_exceptions=True)
        # a task cancelled before its first step never reaches after_loop
        self.stopped.set()
        logger.info("Stats update loop stopped")

    @tasks.loop(seconds=STATS_LOOP_INTERVAL_SEC)
    async def update_stats(self):
        self._in_cycle = True
        try:
            r = await self._redis_factory()
            await run_maintenance_cycle(r, retention=self.retention)
        except Exception as e:
            logger.error(f"Error in stats update loop: {e}", exc_info=True)
        finally:
            self._in_cycle = False
            self.cycles += 1

    @update_stats.after_loop
    async def after_update_stats(self):
        self.stopped.set()
