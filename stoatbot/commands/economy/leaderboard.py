"""
StoatBot - Leaderboard Command
==============================

Richest users by net worth.
"""

from stoatbot.commands.base import ArgSpec, CommandContext, CommandDescriptor, RateLimitPolicy
from stoatbot.commands.economy import require_economy
from stoatbot.core.config import EmbedColors
from stoatbot.core.errors import ValidationError


MAX_ENTRIES = 25
DEFAULT_ENTRIES = 10


def _validate(args) -> bool:
    return not args or args[0].isdigit()


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    limit = int(ctx.args[0]) if ctx.args else DEFAULT_ENTRIES
    if not 1 <= limit <= MAX_ENTRIES:
        raise ValidationError(f"Please pick between 1 and {MAX_ENTRIES} entries.")

    accounts = await ctx.db.get_leaderboard(limit)
    if not accounts:
        await ctx.reply_embed("🏆 Richest Users", "Nobody has any coins yet.", color=EmbedColors.WARNING)
        return

    lines = [
        f"{position}. <@{account.user_id}> Total: 💰 {account.total:,} "
        f"(Wallet: {account.balance:,} | Bank: {account.bank:,})"
        for position, account in enumerate(accounts, start=1)
    ]
    await ctx.reply_embed("🏆 Richest Users", "\n".join(lines), color=EmbedColors.GOLD)


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="leaderboard",
        category="economy",
        execute=execute,
        description="Show the richest users",
        usage="leaderboard [count]",
        aliases=("lb", "rich"),
        args=ArgSpec(maximum=1),
        validate=_validate,
        rate_limit=RateLimitPolicy(),
    )
