"""
StoatBot - Event Routing Tests
==============================

Tests for how StoatBot routes gateway events to its services.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from stoatbot.bot import StoatBot
from stoatbot.core.config import Config


@pytest.fixture
def bot(tmp_path):
    bot = StoatBot(Config(discord_token="x", database_path=str(tmp_path / "bot.db")))
    bot.automod = MagicMock(process_message=AsyncMock(return_value=[]))
    bot.dispatcher = MagicMock(execute=AsyncMock())
    bot.db = MagicMock(get_prefix=AsyncMock(return_value="?"))
    return bot


class TestOnMessage:
    async def test_routes_to_dispatcher_with_prefix(self, bot, new_message, guild):
        message = new_message("?ping", guild=guild)

        await bot.on_message(message)

        bot.automod.process_message.assert_awaited_once_with(message)
        bot.db.get_prefix.assert_awaited_once_with(guild.id)
        bot.dispatcher.execute.assert_awaited_once_with(message, "?")

    async def test_direct_message_prefix_lookup(self, bot, new_message):
        await bot.on_message(new_message("!ping", dm=True))
        bot.db.get_prefix.assert_awaited_once_with(None)

    async def test_bots_are_ignored(self, bot, new_message, new_member):
        await bot.on_message(new_message("!ping", author=new_member(5, bot=True)))

        bot.automod.process_message.assert_not_awaited()
        bot.dispatcher.execute.assert_not_awaited()

    async def test_duplicate_delivery_handled_once(self, bot, new_message):
        message = new_message("!ping")

        await bot.on_message(message)
        await bot.on_message(message)

        assert bot.dispatcher.execute.await_count == 1

    async def test_violation_stops_dispatch(self, bot, new_message):
        bot.automod.process_message.return_value = [MagicMock(type="links")]

        await bot.on_message(new_message("!ping https://evil.example"))

        bot.dispatcher.execute.assert_not_awaited()


class TestGuildEvents:
    async def test_deleted_channel_leaves_whitelist(self, bot, db, guild):
        bot.db = db
        await db.add_whitelist_entry(guild.id, "channels", 444)
        channel = MagicMock(id=444, guild=guild)
        channel.name = "general"

        await bot.on_guild_channel_delete(channel)

        config = await db.get_server_config(guild.id)
        assert config.automod.whitelist.channels == []

    async def test_guild_remove_releases_config(self, bot, guild):
        bot.db = MagicMock(release_server=AsyncMock())

        await bot.on_guild_remove(guild)

        bot.db.release_server.assert_awaited_once_with(guild.id)
