# shared/stats_retriever.py
# Read path: 24h summary of a guild (joins, leaves, online, members, messages per channel)
from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from config.config import STATS_RETENTION_SEC
from shared.errors import StatsUnavailable
from shared.keys import K_JOINED, K_LEFT, K_MEMBERS, K_MESSAGES, K_ONLINE, decode_message_entry

logger = logging.getLogger("serverstats.retriever")


@dataclass
class ChannelStats:
    channel_id: int
    count: int
    name: str = ""


@dataclass
class FullStats:
    joined_day: int = 0
    left_day: int = 0
    online: int = 0
    total_members: int = 0
    channels_hour: List[ChannelStats] = field(default_factory=list)

    @property
    def total_messages(self) -> int:
        return sum(c.count for c in self.channels_hour)

    def to_dict(self) -> Dict:
        data = asdict(self)
        # JS can't hold snowflakes as numbers
        for c in data["channels_hour"]:
            c["channel_id"] = str(c["channel_id"])
        data["total_messages"] = self.total_messages
        return data


def count_channels(entries: List[str], channel_names: Optional[Mapping[int, str]] = None) -> List[ChannelStats]:
    """Group message entries by their channel, most active channel first."""
    counts: Counter = Counter()
    for entry in entries:
        try:
            channel_id, _, _ = decode_message_entry(entry)
        except ValueError:
            logger.warning(f"Skipping malformed message entry {entry!r}")
            continue
        counts[channel_id] += 1

    names = channel_names or {}
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [ChannelStats(cid, n, names.get(cid) or f"#{cid}") for cid, n in ordered]


async def retrieve_full_stats(
    r: redis.Redis,
    guild_id: int,
    now: Optional[float] = None,
    window: int = STATS_RETENTION_SEC,
    channel_names: Optional[Mapping[int, str]] = None,
) -> FullStats:
    """
    Windowed counts are read straight from the sorted sets, so results stay
    correct even if the maintenance loop has not trimmed yet.
    Raises StatsUnavailable on any Redis failure.
    """
    now = time.time() if now is None else now
    cutoff = int(now - window)

    try:
        async with r.pipeline(transaction=False) as pipe:
            pipe.zcount(K_JOINED(guild_id), cutoff, "+inf")
            pipe.zcount(K_LEFT(guild_id), cutoff, "+inf")
            pipe.scard(K_ONLINE(guild_id))
            pipe.get(K_MEMBERS(guild_id))
            pipe.zrangebyscore(K_MESSAGES(guild_id), cutoff, "+inf")
            joined, left, online, members, messages = await pipe.execute()
    except RedisError as e:
        logger.error(f"Failed retrieving stats of guild {guild_id}: {e}")
        raise StatsUnavailable(guild_id, f"failed retrieving stats of guild {guild_id}: {e}") from e

    try:
        total_members = int(members) if members is not None else 0
    except ValueError as e:
        raise StatsUnavailable(guild_id, f"member counter of guild {guild_id} is corrupt: {members!r}") from e

    return FullStats(
        joined_day=int(joined),
        left_day=int(left),
        online=int(online),
        total_members=total_members,
        channels_hour=count_channels(messages, channel_names),
    )
