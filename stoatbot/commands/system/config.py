"""
StoatBot - Config Command
=========================

View and change this server's settings.

Subcommands:
    config view
    config reset
    config set <economy|moderation|automod|welcome|logging> <on|off>
    config set prefix <prefix>
    config set cooldown <seconds>
    config filter <spam|invites|links|mentions|caps> <on|off>
    config threshold <max_mentions|max_caps|message_burst> <number>
    config action <delete|warn> <on|off>
    config action timeout <minutes, 0 disables>
    config whitelist <add|remove> <users|roles|channels|links> <value>
    config owners <add|remove> <user>
    config block <user> / config unblock <user>
    config command <enable|disable> <name>

Everything except view needs a global owner, a server owner, a
configured bot owner or Manage Server.
"""

import re
from typing import List

from stoatbot.commands.base import ArgSpec, CommandContext, CommandDescriptor, RateLimitPolicy, parse_user_id
from stoatbot.core.config import EmbedColors
from stoatbot.core.database.models import ServerConfiguration
from stoatbot.core.errors import ValidationError


TRUE_WORDS = {"on", "true", "yes", "enable", "enabled", "1"}
FALSE_WORDS = {"off", "false", "no", "disable", "disabled", "0"}

ID_DECORATION = re.compile(r"[<@!&#>]")

PROTECTED_COMMANDS = {"config", "help"}


# =============================================================================
# Helpers
# =============================================================================

def require_manager(ctx: CommandContext) -> None:
    """
    Raise ValidationError unless the author may change server settings.
    """
    if ctx.guild is None:
        raise ValidationError("This command can only be used in a server.")
    if ctx.is_owner:
        return

    author_id = ctx.author.id
    if author_id == ctx.guild.owner_id or author_id in ctx.server_config.bot.owners:
        return
    permissions = getattr(ctx.author, "guild_permissions", None)
    if permissions is not None and permissions.manage_guild:
        return
    raise ValidationError("You need the Manage Server permission to change settings.")


def parse_bool(value: str) -> bool:
    value = value.lower()
    if value in TRUE_WORDS:
        return True
    if value in FALSE_WORDS:
        return False
    raise ValidationError(f"`{value[:32]}` is not on/off.")


def parse_int(value: str, name: str) -> int:
    if not value.isdigit():
        raise ValidationError(f"`{name}` needs a whole number.")
    return int(value)


def _mark(flag: bool) -> str:
    return "✅" if flag else "❌"


def render(config: ServerConfiguration) -> str:
    automod = config.automod
    features = config.features
    timeout = f"{automod.actions.timeout}m" if automod.actions.timeout else "off"
    lines = [
        "**Features:**",
        f"• Economy: {_mark(features.experiments.economy)}",
        f"• Moderation: {_mark(features.experiments.moderation)}",
        f"• AutoMod: {_mark(automod.enabled)}",
        f"• Welcome: {_mark(features.welcome)}",
        f"• Logging: {_mark(features.logging)}",
        "",
        "**AutoMod Filters:**",
        " ".join(
            f"{name} {_mark(getattr(automod.filters, name))}"
            for name in ("spam", "invites", "links", "mentions", "caps")
        ),
        f"• Thresholds: mentions {automod.thresholds.max_mentions}, caps {automod.thresholds.max_caps}%, "
        f"burst {automod.thresholds.message_burst}",
        f"• Actions: delete {_mark(automod.actions.delete)}, warn {_mark(automod.actions.warn)}, timeout {timeout}",
        f"• Whitelist: {len(automod.whitelist.users)} users, {len(automod.whitelist.roles)} roles, "
        f"{len(automod.whitelist.channels)} channels, {len(automod.whitelist.links)} links",
        "",
        "**Bot Settings:**",
        f"• Prefix: `{config.prefix}`",
        f"• Cooldown: {config.bot.default_cooldown:g}s",
        f"• Owners: {', '.join(f'<@{uid}>' for uid in config.bot.owners) or 'None'}",
        f"• Blocked Users: {len(config.security.blocked_users)}",
        f"• Disabled Commands: {', '.join(config.commands.disabled) or 'None'}",
    ]
    return "\n".join(lines)


# =============================================================================
# Subcommands
# =============================================================================

async def _set(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: `config set <setting> <value>`")
    key, value = args[0].lower(), args[1]
    server_id = ctx.server_id

    if key in ("economy", "moderation"):
        await ctx.db.set_experiment(server_id, key, parse_bool(value))
    elif key == "automod":
        await ctx.db.set_automod_enabled(server_id, parse_bool(value))
    elif key in ("welcome", "logging"):
        await ctx.db.set_feature(server_id, key, parse_bool(value))
    elif key == "prefix":
        await ctx.db.set_prefix(server_id, value)
    elif key == "cooldown":
        try:
            seconds = float(value)
        except ValueError:
            raise ValidationError("Cooldown must be a number of seconds.")
        if not 0 <= seconds <= 3600:
            raise ValidationError("Cooldown must be between 0 and 3600 seconds.")

        def apply(config: ServerConfiguration) -> None:
            config.bot.default_cooldown = seconds

        await ctx.db.update_server_config(server_id, apply)
    else:
        raise ValidationError(
            "Unknown setting. Available: economy, moderation, automod, welcome, logging, prefix, cooldown"
        )
    return f"`{key}` set to `{value}`"


async def _filter(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: `config filter <name> <on|off>`")
    enabled = parse_bool(args[1])
    await ctx.db.set_automod_filter(ctx.server_id, args[0], enabled)
    return f"Filter `{args[0].lower()}` {'enabled' if enabled else 'disabled'}"


async def _threshold(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: `config threshold <name> <number>`")
    value = parse_int(args[1], args[0])
    await ctx.db.set_automod_threshold(ctx.server_id, args[0], value)
    return f"Threshold `{args[0].lower()}` set to {value}"


async def _action(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: `config action <delete|warn|timeout> <value>`")
    name = args[0].lower()
    value = parse_int(args[1], name) if name == "timeout" else parse_bool(args[1])
    await ctx.db.set_automod_action(ctx.server_id, name, value)
    return f"Action `{name}` set to `{args[1]}`"


async def _whitelist(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 3 or args[0].lower() not in ("add", "remove"):
        raise ValidationError("Usage: `config whitelist <add|remove> <users|roles|channels|links> <value>`")
    op, kind, value = args[0].lower(), args[1].lower(), args[2]
    if kind != "links":
        value = ID_DECORATION.sub("", value)

    if op == "add":
        await ctx.db.add_whitelist_entry(ctx.server_id, kind, value)
        return f"Added `{value}` to the {kind} whitelist"
    await ctx.db.remove_whitelist_entry(ctx.server_id, kind, value)
    return f"Removed `{value}` from the {kind} whitelist"


async def _owners(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 2 or args[0].lower() not in ("add", "remove"):
        raise ValidationError("Usage: `config owners <add|remove> <user>`")
    user_id = parse_user_id(args[1])
    if args[0].lower() == "add":
        await ctx.db.add_owner(ctx.server_id, user_id)
        return f"<@{user_id}> is now a bot owner here"
    await ctx.db.remove_owner(ctx.server_id, user_id)
    return f"<@{user_id}> is no longer a bot owner here"


async def _block(ctx: CommandContext, args: List[str], blocked: bool) -> str:
    if not args:
        raise ValidationError("Usage: `config block <user>`")
    user_id = parse_user_id(args[0])
    if blocked:
        if user_id == ctx.author.id:
            raise ValidationError("You cannot block yourself.")
        await ctx.db.block_user(ctx.server_id, user_id)
        return f"<@{user_id}> can no longer use commands here"
    await ctx.db.unblock_user(ctx.server_id, user_id)
    return f"<@{user_id}> can use commands again"


async def _command(ctx: CommandContext, args: List[str]) -> str:
    if len(args) < 2 or args[0].lower() not in ("enable", "disable"):
        raise ValidationError("Usage: `config command <enable|disable> <name>`")
    descriptor = ctx.dispatcher.registry.get(args[1])
    if descriptor is None:
        raise ValidationError(f"No command named `{args[1][:32]}`.")

    if args[0].lower() == "disable":
        if descriptor.name in PROTECTED_COMMANDS:
            raise ValidationError(f"`{descriptor.name}` cannot be disabled.")
        await ctx.db.disable_command(ctx.server_id, descriptor.name)
        return f"`{descriptor.name}` disabled on this server"
    await ctx.db.enable_command(ctx.server_id, descriptor.name)
    return f"`{descriptor.name}` enabled on this server"


# =============================================================================
# Entry Point
# =============================================================================

async def execute(ctx: CommandContext) -> None:
    if ctx.guild is None:
        raise ValidationError("This command can only be used in a server.")

    subcommand = ctx.args[0].lower() if ctx.args else "view"
    rest = ctx.args[1:]

    if subcommand == "view":
        await ctx.reply_embed("Server Configuration", render(ctx.server_config), color=EmbedColors.INFO)
        return

    require_manager(ctx)

    if subcommand == "reset":
        await ctx.db.reset_server_config(ctx.server_id)
        result = "All settings restored to defaults"
    elif subcommand == "set":
        result = await _set(ctx, rest)
    elif subcommand == "filter":
        result = await _filter(ctx, rest)
    elif subcommand == "threshold":
        result = await _threshold(ctx, rest)
    elif subcommand == "action":
        result = await _action(ctx, rest)
    elif subcommand == "whitelist":
        result = await _whitelist(ctx, rest)
    elif subcommand == "owners":
        result = await _owners(ctx, rest)
    elif subcommand == "block":
        result = await _block(ctx, rest, blocked=True)
    elif subcommand == "unblock":
        result = await _block(ctx, rest, blocked=False)
    elif subcommand == "command":
        result = await _command(ctx, rest)
    else:
        raise ValidationError(
            "Unknown subcommand. Available: view, reset, set, filter, threshold, action, "
            "whitelist, owners, block, unblock, command"
        )

    await ctx.reply_embed("Configuration Updated", result)


def setup() -> CommandDescriptor:
    return CommandDescriptor(
        name="config",
        category="system",
        execute=execute,
        description="Configure bot settings for this server",
        usage="config <view|reset|set|filter|threshold|action|whitelist|owners|block|unblock|command> ...",
        aliases=("settings", "cfg"),
        args=ArgSpec(maximum=4),
        rate_limit=RateLimitPolicy(usages=5, duration=10.0),
    )
