# shared/stats_config.py
# Per-guild server stats settings (public flag, ignored channels)
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from config.config import CONFIG_CACHE_TTL_SEC
from shared.errors import ConfigUnavailable
from shared.keys import K_CONFIG

logger = logging.getLogger("serverstats.config")


def parse_channel_ids(raw: str) -> frozenset:
    """'123, 456,abc' -> {123, 456}; junk fragments are dropped."""
    out = set()
    for part in (raw or "").replace(" ", ",").split(","):
        part = part.strip().lstrip("#<").rstrip(">")
        # str.isdigit() also accepts superscripts like '²' that int() rejects
        if part.isascii() and part.isdigit():
            out.add(int(part))
    return frozenset(out)


@dataclass(frozen=True)
class ServerStatsConfig:
    public: bool = False
    ignore_channels: str = ""

    @cached_property
    def parsed_channels(self) -> frozenset:
        return parse_channel_ids(self.ignore_channels)

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> "ServerStatsConfig":
        return cls(
            public=data.get("public", "0") in ("1", "true", "True"),
            ignore_channels=data.get("ignore_channels", ""),
        )

    def to_hash(self) -> Dict[str, str]:
        return {"public": "1" if self.public else "0", "ignore_channels": self.ignore_channels}

    def is_ignored(self, channel_id: int) -> bool:
        return channel_id in self.parsed_channels


class ConfigResolver:
    """Cached reader/writer for ServerStatsConfig stored in a Redis hash."""

    def __init__(self, r: redis.Redis, ttl: float = CONFIG_CACHE_TTL_SEC, clock=time.monotonic):
        self.r = r
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[int, Tuple[float, ServerStatsConfig]] = {}

    async def get_config(self, guild_id: int) -> ServerStatsConfig:
        """Return the guild config. Raises ConfigUnavailable if Redis can't be read."""
        now = self._clock()
        hit = self._cache.get(guild_id)
        if hit and hit[0] > now:
            return hit[1]

        try:
            data = await self.r.hgetall(K_CONFIG(guild_id))
        except RedisError as e:
            raise ConfigUnavailable(guild_id, f"failed loading config for guild {guild_id}: {e}") from e

        conf = ServerStatsConfig.from_hash(data or {})
        self._cache[guild_id] = (now + self.ttl, conf)
        return conf

    async def save_config(
        self,
        guild_id: int,
        public: Optional[bool] = None,
        ignore_channels: Optional[str] = None,
    ) -> ServerStatsConfig:
        """Update the stored config; unspecified fields keep their value."""
        self.invalidate(guild_id)
        current = await self.get_config(guild_id)
        conf = ServerStatsConfig(
            public=current.public if public is None else public,
            ignore_channels=current.ignore_channels if ignore_channels is None else ignore_channels,
        )
        try:
            await self.r.hset(K_CONFIG(guild_id), mapping=conf.to_hash())
        except RedisError as e:
            raise ConfigUnavailable(guild_id, f"failed saving config for guild {guild_id}: {e}") from e
        finally:
            self.invalidate(guild_id)

        logger.info(f"Stats config updated for guild {guild_id}: public={conf.public} ignored={sorted(conf.parsed_channels)}")
        return conf

    def invalidate(self, guild_id: Optional[int] = None) -> None:
        if guild_id is None:
            self._cache.clear()
        else:
            self._cache.pop(guild_id, None)
