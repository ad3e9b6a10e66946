"""
StoatBot - Commands Package
===========================

Prefix command implementations, grouped by category.

DESIGN:
    Each category is a package listing its command modules in COMMANDS.
    Each command module exposes setup() -> CommandDescriptor.
    The dispatcher loads every category in CATEGORIES at startup.

    To add a command:
    1. Create new_command.py in a category package
    2. Return a CommandDescriptor from setup()
    3. Add the module path to that package's COMMANDS

Available Commands:
    economy: balance, daily, work, deposit, withdraw, give, leaderboard
    system: ping, help, prefix, config, reload (owner)
"""

# =============================================================================
# Category Manifest
# =============================================================================

CATEGORIES = (
    "stoatbot.commands.economy",
    "stoatbot.commands.system",
)


__all__ = ["CATEGORIES"]
