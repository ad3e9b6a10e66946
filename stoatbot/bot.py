"""
StoatBot - Main Bot Class
=========================

Discord client that wires the services together and routes events.

DESIGN:
    Central orchestrator that:
    - Builds every service explicitly and passes them by reference
    - Routes gateway events to automod, the dispatcher and persistence
    - Owns the bot lifecycle (startup, shutdown)

SERVICE INITIALIZATION ORDER:
    1. __init__:
       - chat_api and store circuit breakers
       - PersistenceManager, AutomodService, CommandDispatcher
    2. setup_hook (before on_ready):
       - Store connect and schema (FatalInitError aborts startup)
       - Command loading (FatalInitError aborts startup)
       - Background loops: cache sweep, automod prune, rate-limit cleanup
    3. on_ready (once):
       - Pre-warm server configs
"""

import sys
import time
from typing import Optional

import discord

from stoatbot.core import constants
from stoatbot.core.config import Config
from stoatbot.core.database import PersistenceManager
from stoatbot.core.logger import logger
from stoatbot.services.automod import AutomodService
from stoatbot.services.dispatcher import CommandDispatcher
from stoatbot.utils.async_utils import gather_with_logging
from stoatbot.utils.cache import TTLCache
from stoatbot.utils.circuit_breaker import CircuitBreaker


# =============================================================================
# StoatBot Class
# =============================================================================

class StoatBot(discord.Client):
    """Prefix-command bot with automod, economy and per-server config."""

    # =========================================================================
    # Initialization
    # =========================================================================

    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(intents=intents)

        self.config = config
        self.start_time = time.time()

        self.chat_breaker = CircuitBreaker(
            "chat_api",
            failure_threshold=config.breaker_failure_threshold,
            cooldown=config.breaker_cooldown,
            success_threshold=config.breaker_success_threshold,
        )
        self.store_breaker = CircuitBreaker(
            "store",
            failure_threshold=config.breaker_failure_threshold,
            cooldown=config.breaker_cooldown,
            success_threshold=config.breaker_success_threshold,
        )

        self.db = PersistenceManager.from_config(config, breaker=self.store_breaker)
        self.automod = AutomodService(self.db, self.chat_breaker, window=config.spam_window)
        self.dispatcher = CommandDispatcher(
            self.db,
            self.chat_breaker,
            client=self,
            owner_ids=config.owner_ids,
        )

        self._handled_messages: TTLCache[int, bool] = TTLCache(
            constants.HANDLED_MESSAGE_TTL,
            max_size=constants.HANDLED_MESSAGE_MAX,
        )
        self._ready_initialized = False
        self._shutting_down = False

        logger.info("Bot Instance Created")

    # =========================================================================
    # Setup Hook
    # =========================================================================

    async def setup_hook(self) -> None:
        """Open the store and load commands before connecting."""
        if self.config.error_webhook_url:
            logger.set_webhook(self.config.error_webhook_url)

        await self.db.initialize()
        await self.dispatcher.load()

        self.dispatcher.start()
        self.automod.start()

    # =========================================================================
    # Connection Events
    # =========================================================================

    async def on_ready(self) -> None:
        if self._ready_initialized:
            logger.info("Bot Reconnected (skipping re-initialization)")
            return
        self._ready_initialized = True

        if not self.user:
            return

        await gather_with_logging(
            *[(f"prewarm {guild.id}", self.db.prewarm_server(guild.id)) for guild in self.guilds],
            context="Config Pre-warm",
        )

        logger.tree("STOATBOT READY", [
            ("Name", self.user.name),
            ("ID", str(self.user.id)),
            ("Guilds", str(len(self.guilds))),
            ("Commands", str(len(self.dispatcher.registry))),
            ("Startup", f"{time.time() - self.start_time:.1f}s"),
        ], emoji="🚀")

    async def on_resumed(self) -> None:
        logger.info("Gateway Session Resumed")

    # =========================================================================
    # Messages
    # =========================================================================

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or (self.user and message.author.id == self.user.id):
            return

        # Gateway replays can deliver the same message twice
        if message.id in self._handled_messages:
            logger.debug(f"Skipping duplicate message {message.id}")
            return
        self._handled_messages.set(message.id, True)

        violations = await self.automod.process_message(message)
        if violations:
            return

        server_id = message.guild.id if message.guild else None
        prefix = await self.db.get_prefix(server_id)
        await self.dispatcher.execute(message, prefix)

    # =========================================================================
    # Guild Events
    # =========================================================================

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.db.prewarm_server(guild.id)
        logger.tree("Joined Guild", [
            ("Name", guild.name),
            ("ID", str(guild.id)),
            ("Members", str(guild.member_count or 0)),
        ], emoji="📥")

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        await self.db.release_server(guild.id)
        logger.tree("Left Guild", [
            ("Name", guild.name),
            ("ID", str(guild.id)),
        ], emoji="📤")

    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        logger.debug(f"Channel created: #{channel.name} ({channel.id}) in {channel.guild.id}")

    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        config = await self.db.get_server_config(channel.guild.id)
        if channel.id not in config.automod.whitelist.channels:
            return

        await self.db.remove_whitelist_entry(channel.guild.id, "channels", channel.id)
        logger.tree("Whitelisted Channel Deleted", [
            ("Channel", f"#{channel.name}"),
            ("Guild", str(channel.guild.id)),
        ], emoji="🧹")

    # =========================================================================
    # Errors
    # =========================================================================

    async def on_error(self, event_method: str, *args, **kwargs) -> None:
        error: Optional[BaseException] = sys.exc_info()[1]
        logger.error("Event Handler Error", [
            ("Event", event_method),
            ("Error Type", type(error).__name__ if error else "Unknown"),
            ("Error", str(error)[:200] if error else ""),
        ])

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """Graceful shutdown: stop loops, flush persistence, disconnect."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Initiating Graceful Shutdown")

        await self.automod.stop()
        await self.dispatcher.stop()
        await self.db.shutdown()
        await super().close()

        logger.tree("SHUTDOWN COMPLETE", [
            ("Uptime", f"{time.time() - self.start_time:.0f}s"),
            ("Commands Run", str(self.dispatcher.commands_run)),
            ("Automod Violations", str(self.automod.violations_found)),
        ], emoji="🛑")

    async def close(self) -> None:
        """Override close to ensure proper shutdown."""
        await self.shutdown()


__all__ = ["StoatBot"]
