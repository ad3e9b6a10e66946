"""
StoatBot - System Commands
==========================

Bot status, help and server configuration.
"""

COMMANDS = (
    "stoatbot.commands.system.ping",
    "stoatbot.commands.system.help",
    "stoatbot.commands.system.prefix",
    "stoatbot.commands.system.config",
    "stoatbot.commands.system.reload",
)


__all__ = ["COMMANDS"]
