"""
StoatBot - Reload Command
=========================

Hot-reload a command module without restarting. Owner only.
"""

from stoatbot.commands.base import ArgSpec, CommandContext, CommandDescriptor, CommandFlags
from stoatbot.core.config import EmbedColors
from stoatbot.core.errors import ValidationError


async def execute(ctx: CommandContext) -> None:
    name = ctx.args[0].lower()
    if ctx.dispatcher.registry.get(name) is None:
        raise ValidationError(f"No command named `{name[:32]}`.")

    if await ctx.dispatcher.reload(name):
        await ctx.reply_embed("Command Reloaded", f"`{name}` was reloaded.")
    else:
        await ctx.reply_embed(
            "Reload Failed",
            f"`{name}` could not be reloaded; the previous version is still active.",
            color=EmbedColors.ERROR,
        )


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="reload",
        category="system",
        execute=execute,
        description="Reload a command module",
        usage="reload <command>",
        args=ArgSpec(required=True, minimum=1, maximum=1),
        flags=CommandFlags(owner_only=True, dangerous=True),
    )
