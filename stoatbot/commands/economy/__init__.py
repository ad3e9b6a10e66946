"""
StoatBot - Economy Commands
===========================

Wallet and bank commands backed by the persistence economy operations.

Economy is an opt-in experiment per server (features.experiments.economy).
Direct messages are always allowed.
"""

from stoatbot.commands.base import CommandContext
from stoatbot.core.errors import ValidationError


COMMANDS = (
    "stoatbot.commands.economy.balance",
    "stoatbot.commands.economy.daily",
    "stoatbot.commands.economy.work",
    "stoatbot.commands.economy.deposit",
    "stoatbot.commands.economy.withdraw",
    "stoatbot.commands.economy.give",
    "stoatbot.commands.economy.leaderboard",
)


def require_economy(ctx: CommandContext) -> None:
    """Raise ValidationError unless economy is enabled where the command ran."""
    if ctx.guild is not None and not ctx.server_config.features.experiments.economy:
        raise ValidationError("Economy commands are disabled on this server.")


__all__ = ["COMMANDS", "require_economy"]
