"""
StoatBot - Give Command
=======================

Send coins from your wallet to another user, atomically.
"""

from stoatbot.commands.base import (
    ArgSpec,
    CommandContext,
    CommandDescriptor,
    RateLimitPolicy,
    parse_amount,
    parse_user_id,
)
from stoatbot.commands.economy import require_economy


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    target_id = parse_user_id(ctx.args[0])
    amount = parse_amount(ctx.args[1])
    accounts = await ctx.db.transfer(ctx.author.id, target_id, amount)

    await ctx.reply_embed(
        "Transfer Successful",
        "\n".join([
            f"Sent 💰 {amount:,} to <@{target_id}>",
            f"Your Balance: 💰 {accounts[ctx.author.id].balance:,}",
        ]),
    )


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="give",
        category="economy",
        execute=execute,
        description="Give money to another user",
        usage="give <user> <amount>",
        aliases=("pay", "transfer"),
        args=ArgSpec(required=True, minimum=2, maximum=2),
        rate_limit=RateLimitPolicy(),
    )
