#!/usr/bin/env python3
"""
StoatBot Entry Point
====================

Loads configuration, builds the bot and runs it until interrupted.

Exit codes:
    0  clean shutdown (including Ctrl+C)
    1  invalid or missing configuration
    2  fatal startup failure (store unreachable, command category unreadable)
"""

import asyncio
import sys

from dotenv import load_dotenv

from stoatbot.bot import StoatBot
from stoatbot.core.config import ConfigValidationError, load_config, log_config
from stoatbot.core.errors import FatalInitError
from stoatbot.core.logger import logger


EXIT_CONFIG_ERROR = 1
EXIT_FATAL_INIT = 2


async def main() -> int:
    """
    Run the bot lifecycle.

    1. Loads .env and validates configuration
    2. Builds the bot and its services
    3. Connects to Discord (store and commands load in setup_hook)
    4. Shuts down gracefully on exit
    """
    load_dotenv()

    try:
        config = load_config()
    except ConfigValidationError as e:
        logger.error("Configuration Invalid", [("Error", str(e))])
        return EXIT_CONFIG_ERROR

    log_config(config)
    logger.tree("STOATBOT STARTING", [
        ("Prefix", config.default_prefix),
        ("Database", config.database_path),
    ], emoji="🦦")

    bot = StoatBot(config)
    try:
        async with bot:
            await bot.start(config.discord_token)
    except FatalInitError as e:
        logger.critical("Fatal Startup Error", [
            ("Error Type", type(e).__name__),
            ("Error", str(e)[:200]),
        ])
        return EXIT_FATAL_INIT
    finally:
        await bot.shutdown()

    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("🛑 Bot stopped by user (Ctrl+C)")
