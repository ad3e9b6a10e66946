"""
StoatBot - Help Command
=======================

List commands by category, or show one command's details.
"""

from stoatbot.commands.base import ArgSpec, CommandContext, CommandDescriptor, RateLimitPolicy
from stoatbot.core.config import EmbedColors
from stoatbot.core.errors import ValidationError


async def execute(ctx: CommandContext) -> None:
    registry = ctx.dispatcher.registry

    if ctx.args:
        descriptor = registry.get(ctx.args[0])
        if descriptor is None or (descriptor.flags.hidden and not ctx.is_owner):
            raise ValidationError(f"No command named `{ctx.args[0][:32]}`.")

        lines = [
            descriptor.description or "No description.",
            "",
            f"**Usage:** `{ctx.prefix}{descriptor.usage or descriptor.name}`",
            f"**Category:** {descriptor.category}",
        ]
        if descriptor.aliases:
            lines.append(f"**Aliases:** {', '.join(descriptor.aliases)}")
        if descriptor.rate_limit is not None:
            policy = descriptor.rate_limit
            lines.append(f"**Rate Limit:** {policy.usages} per {policy.duration:g}s")
        if descriptor.flags.owner_only:
            lines.append("**Owner only**")
        await ctx.reply_embed(f"Help: {descriptor.name}", "\n".join(lines), color=EmbedColors.INFO)
        return

    sections = []
    for category, descriptors in sorted(registry.by_category().items()):
        names = sorted(
            d.name for d in descriptors
            if not d.flags.hidden and (ctx.is_owner or not d.flags.owner_only)
        )
        if names:
            sections.append(f"**{category.title()}**\n" + ", ".join(f"`{n}`" for n in names))

    sections.append(f"Use `{ctx.prefix}help <command>` for details.")
    await ctx.reply_embed("Commands", "\n\n".join(sections), color=EmbedColors.INFO)


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="help",
        category="system",
        execute=execute,
        description="List commands or show details for one",
        usage="help [command]",
        aliases=("h", "commands"),
        args=ArgSpec(maximum=1),
        rate_limit=RateLimitPolicy(),
    )
