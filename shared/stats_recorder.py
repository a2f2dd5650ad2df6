# shared/stats_recorder.py
# Translates guild activity events into Redis mutations.
#
# Every function here is fire-and-forget for the caller: store failures are
# logged with guild/channel/user context and never raised back to the event
# handler. Steps inside one event are independent, a failed ZADD does not stop
# the counter update and vice versa.
from __future__ import annotations

import logging
import time
from typing import Iterable, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import ConfigUnavailable, ServerStatsError
from shared.keys import (
    ACTIVE_GUILDS,
    K_JOINED,
    K_LEFT,
    K_MEMBERS,
    K_MESSAGES,
    K_ONLINE,
    encode_message_entry,
)
from shared.redis_client import get_redis_replies
from shared.stats_config import ConfigResolver

logger = logging.getLogger("serverstats.recorder")

OFFLINE = "offline"


async def mark_guild_active(r: redis.Redis, guild_id: int) -> None:
    """
    Flag the guild for the next maintenance pass. Only the loop removes it.

    The score is bumped on every mark, so a pass that started before this
    event sees a different score and leaves the guild flagged.
    """
    try:
        await r.zincrby(ACTIVE_GUILDS, 1, str(guild_id))
    except RedisError as e:
        logger.error(f"Failed marking guild {guild_id} as active: {e}")


async def record_member_join(r: redis.Redis, guild_id: int, user_id: int, now: Optional[float] = None) -> None:
    now = time.time() if now is None else now
    try:
        await r.zadd(K_JOINED(guild_id), {str(user_id): int(now)})
    except RedisError as e:
        logger.error(f"Failed adding member {user_id} to joined stats of guild {guild_id}: {e}")

    try:
        await r.incr(K_MEMBERS(guild_id))
    except RedisError as e:
        logger.error(f"Failed increasing members of guild {guild_id}: {e}")

    await mark_guild_active(r, guild_id)


async def record_member_leave(r: redis.Redis, guild_id: int, user_id: int, now: Optional[float] = None) -> None:
    now = time.time() if now is None else now
    try:
        await r.zadd(K_LEFT(guild_id), {str(user_id): int(now)})
    except RedisError as e:
        logger.error(f"Failed adding member {user_id} to left stats of guild {guild_id}: {e}")

    try:
        await r.decr(K_MEMBERS(guild_id))
    except RedisError as e:
        logger.error(f"Failed decreasing members of guild {guild_id}: {e}")

    await mark_guild_active(r, guild_id)


async def record_message(
    r: redis.Redis,
    resolver: ConfigResolver,
    guild_id: Optional[int],
    channel_id: int,
    message_id: int,
    author_id: int,
    *,
    private: bool = False,
    now: Optional[float] = None,
) -> bool:
    """Record one message. Returns True if an entry was written."""
    if private or guild_id is None:
        return False

    try:
        conf = await resolver.get_config(guild_id)
    except ConfigUnavailable as e:
        # fail closed: the channel might be excluded
        logger.error(f"Failed retrieving config, message {message_id} in channel {channel_id} not recorded: {e}")
        return False

    if conf.is_ignored(channel_id):
        return False

    now = time.time() if now is None else now
    entry = encode_message_entry(channel_id, message_id, author_id)
    try:
        await r.zadd(K_MESSAGES(guild_id), {entry: int(now)})
    except RedisError as e:
        logger.error(f"Failed adding message {message_id} (channel {channel_id}, guild {guild_id}) to stats: {e}")
        return False

    await mark_guild_active(r, guild_id)
    return True


async def record_presence(r: redis.Redis, guild_id: int, user_id: int, status: Optional[str]) -> None:
    """Last write wins; no ordering check on presence updates."""
    if not status:  # not a status update
        return

    try:
        if status == OFFLINE:
            await r.srem(K_ONLINE(guild_id), str(user_id))
        else:
            await r.sadd(K_ONLINE(guild_id), str(user_id))
    except RedisError as e:
        logger.error(f"Failed updating presence of user {user_id} in guild {guild_id}: {e}")


async def set_member_count(r: redis.Redis, guild_id: int, count: int) -> None:
    try:
        await r.set(K_MEMBERS(guild_id), int(count))
    except RedisError as e:
        logger.error(f"Failed setting member count of guild {guild_id}: {e}")


async def apply_presences(r: redis.Redis, guild_id: int, presences: Iterable[Tuple[int, str]]) -> int:
    """
    Replace the online set with every (user_id, status) pair that is not offline.

    Runs as one pipeline (DEL + N x SADD) and checks that 1 + N replies came
    back. Not atomic: a failure half way leaves a stale online set until the
    next snapshot. Raises PartialBatchFailure / TransientStoreError.
    Returns the number of users marked online.
    """
    key = K_ONLINE(guild_id)
    pipe = r.pipeline(transaction=False)
    pipe.delete(key)
    count = 1
    for user_id, status in presences:
        if status == OFFLINE:
            continue
        count += 1
        pipe.sadd(key, str(user_id))

    await get_redis_replies(pipe, count)
    return count - 1


async def apply_guild_snapshot(
    r: redis.Redis,
    guild_id: int,
    member_count: Optional[int],
    presences: Iterable[Tuple[int, str]],
) -> None:
    """Guild became available: authoritative member count + presence listing."""
    if member_count is not None:
        await set_member_count(r, guild_id, member_count)

    try:
        online = await apply_presences(r, guild_id, presences)
        logger.debug(f"Guild {guild_id}: snapshot applied, {member_count} members, {online} online")
    except (ServerStatsError, RedisError) as e:
        logger.error(f"Failed applying presences for guild {guild_id}: {e}")
