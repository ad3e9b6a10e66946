"""
StoatBot - Command Dispatcher
=============================

Prefix command routing: load, resolve, check, invoke.

DESIGN:
    execute() runs these gates in order, stopping at the first that fails:

    1. Prefix match and a non-empty command token
    2. Name or alias resolves (through the registry's TTL cache)
    3. Author not blocked on this server, commands enabled here
    4. Command not disabled globally (flags) or on this server
    5. Owner-only and WIP commands need a global owner
    6. Argument count (ArgSpec) and the optional validate() hook
    7. Per-user fixed-window rate limit

    ValidationError from the gates or the body becomes a reply and is
    never retried. Any other error from the body is logged and re-raised.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Sequence

import discord

from stoatbot.commands import CATEGORIES
from stoatbot.commands.base import CommandContext, CommandDescriptor
from stoatbot.core import constants
from stoatbot.core.config import EmbedColors
from stoatbot.core.errors import FatalInitError, ValidationError
from stoatbot.core.logger import logger
from stoatbot.services.dispatcher.loader import CategoryLoadStats, load_category, load_command
from stoatbot.services.dispatcher.rate_limit import RateLimiter
from stoatbot.services.dispatcher.registry import CommandRegistry
from stoatbot.utils.async_utils import gather_with_logging
from stoatbot.utils.retry import backoff_delay, safe_reply, with_timeout

if TYPE_CHECKING:
    from stoatbot.core.database import PersistenceManager
    from stoatbot.core.database.models import ServerConfiguration
    from stoatbot.utils.circuit_breaker import CircuitBreaker


class CommandDispatcher:
    """
    Routes prefixed messages to registered commands.

    Example:
        dispatcher = CommandDispatcher(db, breaker, owner_ids={123})
        await dispatcher.load()
        await dispatcher.execute(message, "!")
    """

    def __init__(
        self,
        db: "PersistenceManager",
        breaker: Optional["CircuitBreaker"] = None,
        client: Optional[discord.Client] = None,
        owner_ids: Iterable[int] = (),
        categories: Optional[Sequence[str]] = None,
        cache_ttl: float = constants.COMMAND_CACHE_TTL,
        cache_size: int = constants.COMMAND_CACHE_MAX_SIZE,
        rate_limit_cleanup: float = constants.RATE_LIMIT_CLEANUP_INTERVAL,
        load_concurrency: int = constants.COMMAND_LOAD_CONCURRENCY,
        load_timeout: float = constants.COMMAND_LOAD_TIMEOUT,
        load_retries: int = constants.COMMAND_LOAD_RETRIES,
        load_retry_delay: float = constants.COMMAND_LOAD_RETRY_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.breaker = breaker
        self.client = client
        self.owner_ids = set(owner_ids)
        self.categories = tuple(categories) if categories is not None else CATEGORIES
        self.registry = CommandRegistry(cache_ttl=cache_ttl, cache_size=cache_size, clock=clock)
        self.rate_limiter = RateLimiter(cleanup_interval=rate_limit_cleanup, clock=clock)
        self.load_stats: List[CategoryLoadStats] = []
        self.load_concurrency = max(1, load_concurrency)
        self.load_timeout = load_timeout
        self.load_retries = max(0, load_retries)
        self.load_retry_delay = load_retry_delay

        self.commands_run = 0
        self.commands_failed = 0

    def is_owner(self, user_id: int) -> bool:
        return user_id in self.owner_ids

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self) -> List[CategoryLoadStats]:
        """
        Load every category in the manifest concurrently.

        At most load_concurrency categories load at once. A category that
        does not finish within load_timeout is unregistered and tried
        again, up to load_retries more times.

        Raises:
            FatalInitError: A category package could not be read, or kept
                timing out.
        """
        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self.load_concurrency)
        results = await gather_with_logging(
            *[(path, self._load_category_guarded(path, semaphore)) for path in self.categories],
            context="Command Load",
        )

        stats: List[CategoryLoadStats] = []
        for path, result in zip(self.categories, results):
            if isinstance(result, FatalInitError):
                raise result
            if isinstance(result, Exception):
                raise FatalInitError(f"Loading category {path} failed: {result}") from result
            stats.append(result)
        self.load_stats = stats

        for entry in stats:
            logger.tree(f"Category Loaded: {entry.category}", [
                ("Commands", str(entry.loaded)),
                ("Failed", str(entry.failed)),
                ("Time", f"{entry.elapsed * 1000:.0f}ms"),
            ], emoji="📦")

        logger.tree("Commands Loaded", [
            ("Categories", str(len(stats))),
            ("Commands", str(len(self.registry))),
            ("Aliases", str(self.registry.alias_count)),
            ("Failed", str(sum(entry.failed for entry in stats))),
            ("Time", f"{(time.perf_counter() - start) * 1000:.0f}ms"),
        ], emoji="✅")
        return stats

    async def _load_category_guarded(self, path: str, semaphore: asyncio.Semaphore) -> CategoryLoadStats:
        attempts = self.load_retries + 1
        async with semaphore:
            for attempt in range(attempts):
                registered: List[str] = []
                result = await with_timeout(
                    load_category(path, self.registry, self.client, registered=registered),
                    timeout=self.load_timeout,
                )
                if result is not None:
                    return result

                # Take out whatever the abandoned attempt registered
                for name in registered:
                    self.registry.unregister(name)

                logger.warning("Category Load Timed Out", [
                    ("Category", path),
                    ("Attempt", f"{attempt + 1}/{attempts}"),
                    ("Timeout", f"{self.load_timeout}s"),
                ])
                if attempt < attempts - 1:
                    await asyncio.sleep(backoff_delay(attempt, self.load_retry_delay, constants.RETRY_MAX_DELAY))

        raise FatalInitError(f"Loading category {path} timed out after {attempts} attempts")

    def start(self) -> None:
        self.rate_limiter.start()

    async def stop(self) -> None:
        await self.rate_limiter.stop()

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(self, name: str) -> Optional[CommandDescriptor]:
        return self.registry.resolve(name)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, message: discord.Message, prefix: str) -> bool:
        """
        Run the command in a message, if there is one.

        Returns:
            True if the message addressed a known command (whether or not a
            gate rejected it), False otherwise.

        Raises:
            Exception: Whatever the command body raised, except ValidationError.
        """
        content = message.content or ""
        if not prefix or not content.startswith(prefix):
            return False

        tokens = content[len(prefix):].split()
        if not tokens:
            return False

        invoked_with = tokens[0].lower()
        args = tokens[1:]
        descriptor = self.resolve(invoked_with)
        if descriptor is None:
            return False

        author_id = message.author.id
        owner = self.is_owner(author_id)
        server_id = message.guild.id if message.guild else None
        server_config = await self.db.get_server_config(server_id)

        if author_id in server_config.security.blocked_users:
            logger.debug(f"Ignoring command from blocked user {author_id}")
            return True
        if not server_config.commands.enabled and not owner:
            return True

        ctx = CommandContext(
            message=message,
            args=args,
            prefix=prefix,
            invoked_with=invoked_with,
            descriptor=descriptor,
            server_config=server_config,
            db=self.db,
            dispatcher=self,
            breaker=self.breaker,
            client=self.client,
            is_owner=owner,
        )

        try:
            self._check_gates(ctx, server_config)
        except ValidationError as e:
            await self._reply_error(message, str(e))
            return True

        if descriptor.rate_limit is not None:
            result = self.rate_limiter.check(author_id, descriptor.name, descriptor.rate_limit)
            if not result.allowed:
                await self._reply_error(
                    message,
                    f"Rate limit exceeded. Please wait {result.retry_after:.1f} more second(s) "
                    f"before using the `{descriptor.name}` command.",
                )
                return True

        await self._invoke(ctx)
        return True

    def _check_gates(self, ctx: CommandContext, server_config: "ServerConfiguration") -> None:
        descriptor = ctx.descriptor
        flags = descriptor.flags

        if flags.disabled:
            raise ValidationError(f"The `{descriptor.name}` command is currently disabled.")
        if descriptor.name.lower() in server_config.commands.disabled:
            raise ValidationError(f"The `{descriptor.name}` command is disabled on this server.")
        if (flags.owner_only or flags.wip) and not ctx.is_owner:
            raise ValidationError(f"The `{descriptor.name}` command is restricted to bot owners.")

        problem = descriptor.args.check(ctx.args)
        if problem is None and descriptor.validate is not None and not descriptor.validate(ctx.args):
            problem = "invalid arguments"
        if problem is not None:
            usage = descriptor.usage or descriptor.name
            raise ValidationError(f"Invalid command usage ({problem}). Usage: `{ctx.prefix}{usage}`")

    async def _invoke(self, ctx: CommandContext) -> None:
        descriptor = ctx.descriptor
        start = time.perf_counter()
        try:
            await descriptor.execute(ctx)
        except ValidationError as e:
            await self._reply_error(ctx.message, str(e))
            return
        except Exception as e:
            self.commands_failed += 1
            logger.error("Command Failed", [
                ("Command", descriptor.name),
                ("User", f"{ctx.author} ({ctx.author.id})"),
                ("Server", str(ctx.server_id or "DM")),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:100]),
            ])
            raise

        self.commands_run += 1
        logger.debug(
            f"Command {descriptor.name} by {ctx.author.id} "
            f"took {(time.perf_counter() - start) * 1000:.0f}ms"
        )

    async def _reply_error(self, message: discord.Message, text: str) -> None:
        embed = discord.Embed(description=text, color=EmbedColors.ERROR)
        await safe_reply(message, embed=embed, breaker=self.breaker)

    # =========================================================================
    # Reload
    # =========================================================================

    async def reload(self, name: str) -> bool:
        """
        Re-import a command's module and swap in the new descriptor.

        Returns:
            False for unknown names or when the reload fails; the old
            descriptor is restored in that case.
        """
        old = self.registry.get(name)
        if old is None or old.module is None:
            return False

        self.registry.unregister(old.name)
        try:
            new = await load_command(old.module, old.category, self.client, reload=True)
            self.registry.register(new)
        except Exception as e:
            self.registry.register(old)
            logger.error("Command Reload Failed", [
                ("Command", old.name),
                ("Module", old.module),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:100]),
            ])
            return False

        self.rate_limiter.forget_command(old.name)
        logger.tree("Command Reloaded", [
            ("Command", new.name),
            ("Aliases", ", ".join(new.aliases) or "none"),
        ], emoji="🔄")
        return True

    # =========================================================================
    # Stats
    # =========================================================================

    def stats(self) -> Dict[str, Any]:
        return {
            "commands": len(self.registry),
            "aliases": self.registry.alias_count,
            "cache_size": self.registry.cache_size,
            "rate_limit_windows": len(self.rate_limiter),
            "commands_run": self.commands_run,
            "commands_failed": self.commands_failed,
        }


__all__ = ["CommandDispatcher"]
