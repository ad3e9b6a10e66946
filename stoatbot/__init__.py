"""
StoatBot
========

Prefix-command chat bot with automoderation, an economy and per-server
configuration, built on discord.py and aiosqlite.

Layout:
    core: config, logging, errors, persistence
    services: automod, command dispatcher
    commands: command bodies by category
    utils: retry, circuit breaker, caches, async helpers
"""

__version__ = "1.0.0"
