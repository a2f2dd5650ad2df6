"""
Tests for the event recorder.

Verifies:
- member counter arithmetic (B + N - M in any order)
- presence last-write-wins
- snapshot replace idempotence and partial failure
- message filtering (private, ignored channels, config failure)
"""

import itertools
from unittest.mock import AsyncMock, MagicMock
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from shared.errors import ConfigUnavailable, PartialBatchFailure
from shared.keys import ACTIVE_GUILDS, K_CONFIG, K_JOINED, K_LEFT, K_MEMBERS, K_MESSAGES, K_ONLINE
from shared.stats_config import ServerStatsConfig
from shared.stats_recorder import (
    apply_guild_snapshot,
    apply_presences,
    mark_guild_active,
    record_member_join,
    record_member_leave,
    record_message,
    record_presence,
    set_member_count,
)

from conftest import GUILD_ID, T0


async def _members(r):
    return int(await r.get(K_MEMBERS(GUILD_ID)))


class TestMemberCounter:

    async def test_join_and_leave_scenario(self, r):
        await set_member_count(r, GUILD_ID, 10)

        await record_member_join(r, GUILD_ID, 1, now=T0)
        await record_member_join(r, GUILD_ID, 2, now=T0 + 5)
        await record_member_leave(r, GUILD_ID, 1, now=T0 + 10)

        assert await _members(r) == 11
        assert await r.zcard(K_JOINED(GUILD_ID)) == 2
        assert await r.zcard(K_LEFT(GUILD_ID)) == 1
        assert await r.zscore(K_JOINED(GUILD_ID), "2") == T0 + 5
        # every recordable event bumps the mark counter
        assert await r.zscore(ACTIVE_GUILDS, str(GUILD_ID)) == 3

    @pytest.mark.parametrize("order", sorted(set(itertools.permutations("JJJLL"))))
    async def test_counter_independent_of_order(self, r, order):
        await set_member_count(r, GUILD_ID, 7)
        for i, kind in enumerate(order):
            if kind == "J":
                await record_member_join(r, GUILD_ID, 100 + i, now=T0 + i)
            else:
                await record_member_leave(r, GUILD_ID, 200 + i, now=T0 + i)

        assert await _members(r) == 7 + 3 - 2

    async def test_counter_without_baseline_starts_at_zero(self, r):
        await record_member_leave(r, GUILD_ID, 1, now=T0)
        assert await _members(r) == -1

    async def test_failed_zadd_does_not_block_counter(self, r, monkeypatch):
        monkeypatch.setattr(r, "zadd", AsyncMock(side_effect=RedisConnectionError("down")))
        await set_member_count(r, GUILD_ID, 3)

        await record_member_join(r, GUILD_ID, 1, now=T0)

        assert await _members(r) == 4

    async def test_store_down_does_not_raise(self, server, r):
        server.connected = False
        await record_member_join(r, GUILD_ID, 1, now=T0)
        await record_member_leave(r, GUILD_ID, 1, now=T0)
        await set_member_count(r, GUILD_ID, 5)
        await mark_guild_active(r, GUILD_ID)


class TestPresence:

    async def test_final_status_wins(self, r):
        for status in ["online", "idle", "offline", "dnd", "online"]:
            await record_presence(r, GUILD_ID, 1, status)
        for status in ["online", "offline", "idle", "offline"]:
            await record_presence(r, GUILD_ID, 2, status)

        assert await r.smembers(K_ONLINE(GUILD_ID)) == {"1"}

    async def test_empty_status_is_ignored(self, r):
        await record_presence(r, GUILD_ID, 1, "online")
        await record_presence(r, GUILD_ID, 1, "")
        await record_presence(r, GUILD_ID, 1, None)
        assert await r.smembers(K_ONLINE(GUILD_ID)) == {"1"}

    async def test_offline_for_unknown_user_is_noop(self, r):
        await record_presence(r, GUILD_ID, 9, "offline")
        assert await r.scard(K_ONLINE(GUILD_ID)) == 0

    async def test_store_down_does_not_raise(self, server, r):
        server.connected = False
        await record_presence(r, GUILD_ID, 1, "online")


class TestSnapshot:

    PRESENCES = [(1, "online"), (2, "offline"), (3, "idle"), (4, "dnd")]

    async def test_replaces_online_set(self, r):
        await r.sadd(K_ONLINE(GUILD_ID), "99", "2")

        online = await apply_presences(r, GUILD_ID, self.PRESENCES)

        assert online == 3
        assert await r.smembers(K_ONLINE(GUILD_ID)) == {"1", "3", "4"}

    async def test_idempotent(self, r):
        await apply_presences(r, GUILD_ID, self.PRESENCES)
        first = await r.smembers(K_ONLINE(GUILD_ID))
        await apply_presences(r, GUILD_ID, self.PRESENCES)
        assert await r.smembers(K_ONLINE(GUILD_ID)) == first

    async def test_all_offline_clears_set(self, r):
        await r.sadd(K_ONLINE(GUILD_ID), "1")
        assert await apply_presences(r, GUILD_ID, [(1, "offline")]) == 0
        assert await r.exists(K_ONLINE(GUILD_ID)) == 0

    async def test_error_reply_raises_partial_failure(self, r, monkeypatch):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1, ResponseError("WRONGTYPE"), 1])
        monkeypatch.setattr(r, "pipeline", lambda transaction=False: pipe)

        with pytest.raises(PartialBatchFailure) as exc:
            await apply_presences(r, GUILD_ID, [(1, "online"), (2, "online"), (3, "offline")])

        assert exc.value.submitted == 3
        assert exc.value.succeeded == 2
        pipe.delete.assert_called_once_with(K_ONLINE(GUILD_ID))
        assert pipe.sadd.call_count == 2

    async def test_guild_snapshot_sets_count_and_presences(self, r):
        await apply_guild_snapshot(r, GUILD_ID, 42, self.PRESENCES)
        assert await _members(r) == 42
        assert await r.scard(K_ONLINE(GUILD_ID)) == 3

    async def test_guild_snapshot_logs_failure(self, server, r, caplog):
        server.connected = False
        await apply_guild_snapshot(r, GUILD_ID, 42, self.PRESENCES)
        assert "Failed applying presences" in caplog.text


class TestMessages:

    async def test_records_message_and_marks_active(self, r, resolver):
        ok = await record_message(r, resolver, GUILD_ID, 10, 500, 7, now=T0)

        assert ok is True
        assert await r.zrange(K_MESSAGES(GUILD_ID), 0, -1, withscores=True) == [("10:500:7", T0)]
        assert await r.zscore(ACTIVE_GUILDS, str(GUILD_ID)) is not None

    async def test_private_channel_is_skipped(self, r, resolver):
        assert await record_message(r, resolver, None, 10, 500, 7, private=True) is False
        assert await r.zcard(ACTIVE_GUILDS) == 0

    async def test_ignored_channel_is_skipped(self, r, resolver):
        await resolver.save_config(GUILD_ID, ignore_channels="10")

        assert await record_message(r, resolver, GUILD_ID, 10, 500, 7, now=T0) is False
        assert await record_message(r, resolver, GUILD_ID, 11, 501, 7, now=T0) is True
        assert await r.zrange(K_MESSAGES(GUILD_ID), 0, -1) == ["11:501:7"]

    async def test_superscript_ignore_entry_does_not_raise(self, r, resolver):
        await r.hset(K_CONFIG(GUILD_ID), mapping={"ignore_channels": "²"})

        assert await record_message(r, resolver, GUILD_ID, 10, 500, 7, now=T0) is True
        assert await r.zcard(K_MESSAGES(GUILD_ID)) == 1

    async def test_config_failure_skips_without_raising(self, r):
        resolver = SimpleNamespace(get_config=AsyncMock(side_effect=ConfigUnavailable(GUILD_ID)))

        assert await record_message(r, resolver, GUILD_ID, 10, 500, 7, now=T0) is False
        assert await r.exists(K_MESSAGES(GUILD_ID)) == 0
        assert await r.zcard(ACTIVE_GUILDS) == 0

    async def test_store_failure_does_not_raise(self, r, monkeypatch):
        resolver = SimpleNamespace(get_config=AsyncMock(return_value=ServerStatsConfig(public=True)))
        monkeypatch.setattr(r, "zadd", AsyncMock(side_effect=RedisConnectionError("down")))

        assert await record_message(r, resolver, GUILD_ID, 10, 500, 7, now=T0) is False
        assert await r.zcard(ACTIVE_GUILDS) == 0
