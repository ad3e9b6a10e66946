"""
StoatBot - Withdraw Command
===========================

Move coins from the bank to the wallet.
"""

from stoatbot.commands.base import CommandContext, CommandDescriptor, ArgSpec, RateLimitPolicy, parse_amount
from stoatbot.commands.economy import require_economy


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    current = await ctx.db.get_account(ctx.author.id)
    amount = parse_amount(ctx.args[0], available=current.bank)
    account = await ctx.db.withdraw(ctx.author.id, amount)

    await ctx.reply_embed(
        "Withdrawal Successful",
        "\n".join([
            f"Withdrew: 💰 {amount:,}",
            f"New Balance: 💰 {account.balance:,}",
            f"Bank Balance: 🏦 {account.bank:,}",
        ]),
    )


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="withdraw",
        category="economy",
        execute=execute,
        description="Withdraw money from your bank",
        usage="withdraw <amount|all>",
        aliases=("with",),
        args=ArgSpec(required=True, minimum=1, maximum=1),
        rate_limit=RateLimitPolicy(),
    )
