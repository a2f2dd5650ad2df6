# shared/errors.py
# Error taxonomy for the server stats store
from __future__ import annotations


class ServerStatsError(Exception):
    """Base class for all server stats failures."""


class TransientStoreError(ServerStatsError):
    """A single Redis operation failed (connection, timeout, ...)."""


class ConfigUnavailable(ServerStatsError):
    """Guild config could not be read. Messages are not recorded, stats are not shown."""

    def __init__(self, guild_id: int, message: str = ""):
        self.guild_id = guild_id
        super().__init__(message or f"config unavailable for guild {guild_id}")


class PartialBatchFailure(ServerStatsError):
    """A pipeline returned fewer successful replies than operations submitted."""

    def __init__(self, submitted: int, succeeded: int, errors: list | None = None):
        self.submitted = submitted
        self.succeeded = succeeded
        self.errors = errors or []
        super().__init__(f"pipeline: {succeeded}/{submitted} replies succeeded")


class StatsUnavailable(ServerStatsError):
    """Stats could not be assembled; callers must not present zeros instead."""

    def __init__(self, guild_id: int, message: str = ""):
        self.guild_id = guild_id
        super().__init__(message or f"stats unavailable for guild {guild_id}")
