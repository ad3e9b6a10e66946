"""
StoatBot - Ping Command
=======================

Report gateway and round-trip latency.
"""

import time

from stoatbot.commands.base import ArgSpec, CommandContext, CommandDescriptor, RateLimitPolicy
from stoatbot.core.logger import logger


async def execute(ctx: CommandContext) -> None:
    start = time.perf_counter()
    sent = await ctx.reply("🏓 Pinging...")
    round_trip = (time.perf_counter() - start) * 1000

    gateway = ctx.client.latency * 1000 if ctx.client is not None else None
    lines = [f"**Round Trip**: `{round_trip:.0f}ms`"]
    if gateway is not None:
        lines.insert(0, f"**Gateway**: `{gateway:.0f}ms`")

    logger.debug(f"Ping: round trip {round_trip:.0f}ms")
    if sent is not None:
        await sent.edit(content="🏓 Pong!\n" + "\n".join(lines))


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="ping",
        category="system",
        execute=execute,
        description="Check the bot's latency",
        usage="ping",
        aliases=("latency", "p"),
        args=ArgSpec(maximum=0),
        rate_limit=RateLimitPolicy(usages=3, duration=10.0),
    )
