"""
StoatBot - Work Command
=======================

Work a shift for a random reward plus a streak bonus.
"""

import random

from stoatbot.commands.base import CommandContext, CommandDescriptor, ArgSpec, RateLimitPolicy
from stoatbot.commands.economy import require_economy


JOBS = (
    "Programmer",
    "Teacher",
    "Chef",
    "Doctor",
    "Artist",
    "Writer",
    "Engineer",
    "Designer",
    "Musician",
    "Scientist",
)


async def execute(ctx: CommandContext) -> None:
    require_economy(ctx)

    result = await ctx.db.work(ctx.author.id)
    lines = [
        f"You worked as a {random.choice(JOBS)} and earned 💰 {result.reward:,}",
    ]
    if result.streak_bonus:
        lines.append(f"Streak bonus ({result.streak} shifts): 💰 {result.streak_bonus:,}")
    lines.append(f"New Balance: 💰 {result.account.balance:,}")

    await ctx.reply_embed("Work Complete", "\n".join(lines))


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="work",
        category="economy",
        execute=execute,
        description="Work to earn money",
        usage="work",
        aliases=("job",),
        args=ArgSpec(maximum=0),
        rate_limit=RateLimitPolicy(usages=2, duration=10.0),
    )
