"""
StoatBot - Deposit Command
==========================

Move coins from the wallet to the bank.
"""

from stoatbot.commands.base import CommandContext, CommandDescriptor, ArgSpec, RateLimitPolicy, parse_amount
from stoatbot.commands.economy import require_economy


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    current = await ctx.db.get_account(ctx.author.id)
    amount = parse_amount(ctx.args[0], available=current.balance)
    account = await ctx.db.deposit(ctx.author.id, amount)

    await ctx.reply_embed(
        "Deposit Successful",
        "\n".join([
            f"Deposited: 💰 {amount:,}",
            f"New Balance: 💰 {account.balance:,}",
            f"Bank Balance: 🏦 {account.bank:,}",
        ]),
    )


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="deposit",
        category="economy",
        execute=execute,
        description="Deposit money into your bank",
        usage="deposit <amount|all>",
        aliases=("dep",),
        args=ArgSpec(required=True, minimum=1, maximum=1),
        rate_limit=RateLimitPolicy(),
    )
