"""
StoatBot - Command Building Blocks
==================================

Descriptor types shared by the dispatcher and every command module.

DESIGN:
    A command module exposes setup() -> CommandDescriptor. Descriptors are
    frozen: reloading a command replaces the descriptor, never edits it.

    The body receives a CommandContext holding the message, the parsed
    arguments and the services it may need (persistence, dispatcher,
    chat_api breaker). Bodies raise ValidationError for bad input; the
    dispatcher turns it into a reply.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Tuple

import discord

from stoatbot.core import constants
from stoatbot.core.config import EmbedColors
from stoatbot.core.database.models import ServerConfiguration
from stoatbot.core.errors import ValidationError
from stoatbot.utils.retry import safe_reply

if TYPE_CHECKING:
    from stoatbot.core.database import PersistenceManager
    from stoatbot.services.dispatcher import CommandDispatcher
    from stoatbot.utils.circuit_breaker import CircuitBreaker


# =============================================================================
# Descriptor Parts
# =============================================================================

@dataclass(frozen=True)
class RateLimitPolicy:
    """At most ``usages`` calls per user within ``duration`` seconds."""
    usages: int = constants.DEFAULT_RATE_LIMIT_USAGES
    duration: float = constants.DEFAULT_RATE_LIMIT_DURATION

    def __post_init__(self) -> None:
        if self.usages < 1:
            raise ValueError("RateLimitPolicy.usages must be at least 1")
        if self.duration <= 0:
            raise ValueError("RateLimitPolicy.duration must be positive")


@dataclass(frozen=True)
class CommandFlags:
    wip: bool = False
    disabled: bool = False
    owner_only: bool = False
    dangerous: bool = False
    hidden: bool = False


@dataclass(frozen=True)
class ArgSpec:
    """Argument count rules. ``maximum`` of None means unbounded."""
    required: bool = False
    minimum: int = 0
    maximum: Optional[int] = None

    def __post_init__(self) -> None:
        if self.minimum < 0:
            raise ValueError("ArgSpec.minimum cannot be negative")
        if self.maximum is not None and self.maximum < self.minimum:
            raise ValueError("ArgSpec.maximum is below minimum")

    def check(self, args: List[str]) -> Optional[str]:
        """Return a problem description, or None when the count is acceptable."""
        needed = max(self.minimum, 1 if self.required else 0)
        if len(args) < needed:
            return f"expected at least {needed} argument(s), got {len(args)}"
        if self.maximum is not None and len(args) > self.maximum:
            return f"expected at most {self.maximum} argument(s), got {len(args)}"
        return None


CommandExecute = Callable[["CommandContext"], Awaitable[Any]]


@dataclass(frozen=True)
class CommandDescriptor:
    """Immutable description of one command."""
    name: str
    category: str
    execute: CommandExecute
    description: str = ""
    usage: str = ""
    aliases: Tuple[str, ...] = ()
    rate_limit: Optional[RateLimitPolicy] = None
    flags: CommandFlags = field(default_factory=CommandFlags)
    args: ArgSpec = field(default_factory=ArgSpec)
    validate: Optional[Callable[[List[str]], bool]] = None
    init: Optional[Callable[[Any], Any]] = None
    module: Optional[str] = None

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name.lower(),) + tuple(alias.lower() for alias in self.aliases)


# =============================================================================
# Invocation Context
# =============================================================================

@dataclass
class CommandContext:
    """Everything a command body gets for one invocation."""
    message: discord.Message
    args: List[str]
    prefix: str
    invoked_with: str
    descriptor: CommandDescriptor
    server_config: ServerConfiguration
    db: "PersistenceManager"
    dispatcher: "CommandDispatcher"
    breaker: Optional["CircuitBreaker"] = None
    client: Optional[discord.Client] = None
    is_owner: bool = False

    @property
    def author(self) -> discord.abc.User:
        return self.message.author

    @property
    def channel(self) -> discord.abc.Messageable:
        return self.message.channel

    @property
    def guild(self) -> Optional[discord.Guild]:
        return self.message.guild

    @property
    def server_id(self) -> Optional[int]:
        return self.message.guild.id if self.message.guild else None

    async def reply(self, content: Optional[str] = None, **kwargs) -> Optional[discord.Message]:
        return await safe_reply(self.message, content, breaker=self.breaker, **kwargs)

    async def reply_embed(
        self,
        title: str,
        description: str,
        color: int = EmbedColors.SUCCESS,
    ) -> Optional[discord.Message]:
        embed = discord.Embed(title=title, description=description, color=color)
        return await self.reply(embed=embed)


# =============================================================================
# Argument Helpers
# =============================================================================

MENTION_PATTERN = re.compile(r"^<@!?(\d+)>$")


def parse_user_id(arg: str) -> int:
    """
    Read a user from a mention (<@123>, <@!123>) or a raw ID.

    Raises:
        ValidationError: Not a mention or an ID.
    """
    arg = arg.strip()
    match = MENTION_PATTERN.match(arg)
    if match:
        return int(match.group(1))
    if arg.isdigit():
        return int(arg)
    raise ValidationError(f"`{arg[:32]}` is not a user mention or ID.")


def parse_amount(arg: str, available: Optional[int] = None) -> int:
    """
    Read a positive coin amount. ``all`` means everything available.

    Raises:
        ValidationError: Not a positive whole number, or ``all`` with nothing available.
    """
    arg = arg.strip().lower().replace(",", "")
    if arg == "all" and available is not None:
        if available <= 0:
            raise ValidationError("You have nothing to move.")
        return available
    if not arg.isdigit() or int(arg) <= 0:
        raise ValidationError("Please provide a valid amount.")
    return int(arg)


__all__ = [
    "ArgSpec",
    "CommandContext",
    "CommandDescriptor",
    "CommandExecute",
    "CommandFlags",
    "RateLimitPolicy",
    "parse_amount",
    "parse_user_id",
]
