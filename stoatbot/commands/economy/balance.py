"""
StoatBot - Balance Command
==========================

Show a wallet, bank and net worth.
"""

from stoatbot.commands.base import CommandContext, CommandDescriptor, ArgSpec, RateLimitPolicy, parse_user_id
from stoatbot.commands.economy import require_economy


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    user_id = parse_user_id(ctx.args[0]) if ctx.args else ctx.author.id
    account = await ctx.db.get_account(user_id)
    own = user_id == ctx.author.id

    await ctx.reply_embed(
        "Your Balance" if own else "User's Balance",
        "\n".join([
            f"💰 Wallet: {account.balance:,}",
            f"🏦 Bank: {account.bank:,}",
            f"📊 Net Worth: {account.total:,}",
        ]),
    )


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="balance",
        category="economy",
        execute=execute,
        description="Check your or another user's balance",
        usage="balance [user]",
        aliases=("bal", "money"),
        args=ArgSpec(maximum=1),
        rate_limit=RateLimitPolicy(),
    )
