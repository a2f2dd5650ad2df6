"""
Pytest configuration and fixtures for server stats tests.
"""

from types import SimpleNamespace

import fakeredis
import pytest

from shared.stats_config import ConfigResolver


GUILD_ID = 615171377783242769
T0 = 1_700_000_000


@pytest.fixture
def server():
    """Isolated in-memory Redis server per test."""
    return fakeredis.FakeServer()


@pytest.fixture
async def r(server):
    client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def resolver(r):
    return ConfigResolver(r, ttl=0)


def make_member(uid, gid=GUILD_ID, status="online"):
    return SimpleNamespace(id=uid, guild=SimpleNamespace(id=gid), status=status)


def make_guild(gid=GUILD_ID, member_count=0, members=(), channels=(), unavailable=False):
    return SimpleNamespace(
        id=gid,
        member_count=member_count,
        members=list(members),
        text_channels=[SimpleNamespace(id=cid, name=name) for cid, name in channels],
        unavailable=unavailable,
    )


def make_message(mid, channel_id, author_id, gid=GUILD_ID):
    guild = SimpleNamespace(id=gid) if gid is not None else None
    return SimpleNamespace(
        id=mid,
        guild=guild,
        channel=SimpleNamespace(id=channel_id),
        author=SimpleNamespace(id=author_id),
    )
