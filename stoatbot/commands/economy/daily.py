"""
StoatBot - Daily Command
========================

Claim the daily reward. The cooldown is read from the stored last_daily,
so it survives restarts.
"""

from stoatbot.commands.base import CommandContext, CommandDescriptor, ArgSpec, RateLimitPolicy
from stoatbot.commands.economy import require_economy
from stoatbot.core import constants


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    account = await ctx.db.claim_daily(ctx.author.id)
    await ctx.reply_embed(
        "Daily Reward Claimed",
        "\n".join([
            f"You received 💰 {constants.DAILY_AMOUNT:,}",
            f"New Balance: 💰 {account.balance:,}",
        ]),
    )


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="daily",
        category="economy",
        execute=execute,
        description="Claim your daily reward",
        usage="daily",
        args=ArgSpec(maximum=0),
        rate_limit=RateLimitPolicy(usages=2, duration=10.0),
    )
