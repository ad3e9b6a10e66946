"""
StoatBot - Test Fixtures
========================

Shared fixtures for all tests.
"""

from typing import Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from stoatbot.core.database import PersistenceManager


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def db(tmp_path, clock):
    """A PersistenceManager over a fresh SQLite file, without the sweep loop."""
    manager = PersistenceManager(
        str(tmp_path / "test.db"),
        batch_debounce=0.01,
        batch_max_wait=0.05,
        clock=clock,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )
    await manager.initialize(start_sweeper=False)
    yield manager
    await manager.shutdown()


# =============================================================================
# Discord Objects
# =============================================================================

def make_guild(guild_id: int = 111, owner_id: int = 999) -> MagicMock:
    guild = MagicMock()
    guild.id = guild_id
    guild.owner_id = owner_id
    guild.name = "Test Server"
    return guild


def make_role(role_id: int) -> MagicMock:
    role = MagicMock()
    role.id = role_id
    return role


def make_member(
    user_id: int = 1001,
    bot: bool = False,
    roles: Iterable[int] = (),
    manage_guild: bool = False,
) -> MagicMock:
    """Server member; passes isinstance(..., discord.Member)."""
    member = MagicMock(spec=discord.Member)
    member.id = user_id
    member.bot = bot
    member.mention = f"<@{user_id}>"
    member.roles = [make_role(role_id) for role_id in roles]
    member.guild_permissions = MagicMock()
    member.guild_permissions.manage_guild = manage_guild
    member.timeout = AsyncMock()
    return member


def make_channel(channel_id: int = 222) -> MagicMock:
    channel = MagicMock()
    channel.id = channel_id
    channel.send = AsyncMock()
    return channel


_next_message_id = [5000]


def make_message(
    content: str,
    author: Optional[MagicMock] = None,
    guild: Optional[MagicMock] = None,
    channel: Optional[MagicMock] = None,
    dm: bool = False,
) -> MagicMock:
    """Message with awaitable reply/delete. ``dm`` leaves guild as None."""
    _next_message_id[0] += 1
    message = MagicMock()
    message.id = _next_message_id[0]
    message.content = content
    message.author = author or make_member()
    message.guild = None if dm else (guild or make_guild())
    message.channel = channel or make_channel()
    message.reply = AsyncMock(return_value=MagicMock(edit=AsyncMock()))
    message.delete = AsyncMock()
    return message


@pytest.fixture
def guild():
    return make_guild()


@pytest.fixture
def member():
    return make_member()


@pytest.fixture
def channel():
    return make_channel(333)


@pytest.fixture
def new_member():
    """Factory: new_member(user_id, bot=, roles=, manage_guild=)."""
    return make_member


@pytest.fixture
def new_message():
    """Factory: new_message(content, author=, guild=, channel=, dm=)."""
    return make_message


@pytest.fixture
def new_guild():
    """Factory: new_guild(guild_id, owner_id=)."""
    return make_guild
