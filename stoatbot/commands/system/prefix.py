"""
StoatBot - Prefix Command
=========================

Show or change this server's command prefix.
"""

from stoatbot.commands.base import ArgSpec, CommandContext, CommandDescriptor, RateLimitPolicy
from stoatbot.commands.system.config import require_manager


async def execute(ctx: CommandContext) -> None:
    if not ctx.args:
        await ctx.reply_embed("Prefix", f"The prefix here is `{ctx.server_config.prefix}`")
        return

    require_manager(ctx)
    config = await ctx.db.set_prefix(ctx.server_id, ctx.args[0])
    await ctx.reply_embed("Prefix Updated", f"The prefix is now `{config.prefix}`")


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="prefix",
        category="system",
        execute=execute,
        description="Show or change the command prefix",
        usage="prefix [new prefix]",
        args=ArgSpec(maximum=1),
        rate_limit=RateLimitPolicy(),
    )
