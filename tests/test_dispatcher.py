"""
StoatBot - Dispatcher Tests
===========================

Tests for the rate limiter, command registry, category loader, the
execute() gates and hot reload.
"""

import asyncio
import sys
import textwrap
import uuid

import pytest

from stoatbot.commands.base import (
    ArgSpec,
    CommandDescriptor,
    CommandFlags,
    RateLimitPolicy,
)
from stoatbot.core.errors import FatalInitError, ValidationError
from stoatbot.services.dispatcher import service as service_module
from stoatbot.services.dispatcher import (
    CommandDispatcher,
    CommandRegistry,
    RateLimiter,
    RegistrationError,
    load_category,
    validate_descriptor,
)
from stoatbot.services.dispatcher.loader import CategoryLoadStats


OWNER_ID = 42


async def _noop(ctx):
    return None


def _descriptor(name="echo", **kwargs) -> CommandDescriptor:
    kwargs.setdefault("category", "test")
    kwargs.setdefault("execute", _noop)
    return CommandDescriptor(name=name, **kwargs)


def reply_text(message) -> str:
    """Description of the last embed replied, or the plain reply text."""
    call = message.reply.await_args
    embed = call.kwargs.get("embed")
    if embed is not None:
        return embed.description
    return call.args[0]


COMMAND_SOURCE = '''
from stoatbot.commands.base import CommandDescriptor

VERSION = {version}


async def execute(ctx):
    await ctx.reply(f"v{{VERSION}}")


def setup():
    return CommandDescriptor(
        name="echo",
        category="",
        execute=execute,
        aliases={aliases},
    )
'''


@pytest.fixture
def command_package(tmp_path, monkeypatch):
    """
    Writes a throwaway command category on disk and returns its package name.

    The category lists one good module (echo) and one without setup().
    """
    monkeypatch.setattr(sys, "dont_write_bytecode", True)
    name = f"fakecmds_{uuid.uuid4().hex[:8]}"
    package = tmp_path / name
    package.mkdir()
    (package / "__init__.py").write_text(
        f'COMMANDS = ("{name}.echo", "{name}.broken")\n'
    )
    (package / "echo.py").write_text(COMMAND_SOURCE.format(version=1, aliases='("e",)'))
    (package / "broken.py").write_text("VALUE = 1\n")
    monkeypatch.syspath_prepend(str(tmp_path))
    yield name
    for module in [m for m in sys.modules if m == name or m.startswith(name + ".")]:
        del sys.modules[module]


SLOW_SOURCE = '''
import asyncio

from stoatbot.commands.base import CommandDescriptor

HANGS = {hangs}
CALLS = []


async def execute(ctx):
    await ctx.reply("slow")


async def init(client):
    CALLS.append(client)
    if len(CALLS) <= HANGS:
        await asyncio.sleep(60)


def setup():
    return CommandDescriptor(name="slow", category="", execute=execute, init=init)
'''


@pytest.fixture
def slow_package(tmp_path, monkeypatch):
    """
    Returns a factory writing a category whose second command's init hook
    hangs for the first ``hangs`` loads.
    """
    monkeypatch.setattr(sys, "dont_write_bytecode", True)
    monkeypatch.syspath_prepend(str(tmp_path))
    names = []

    def make(hangs: int) -> str:
        name = f"slowcmds_{uuid.uuid4().hex[:8]}"
        package = tmp_path / name
        package.mkdir()
        (package / "__init__.py").write_text(
            f'COMMANDS = ("{name}.echo", "{name}.slow")\n'
        )
        (package / "echo.py").write_text(COMMAND_SOURCE.format(version=1, aliases="()"))
        (package / "slow.py").write_text(SLOW_SOURCE.format(hangs=hangs))
        names.append(name)
        return name

    yield make
    for name in names:
        for module in [m for m in sys.modules if m == name or m.startswith(name + ".")]:
            del sys.modules[module]


# =============================================================================
# Rate Limiter
# =============================================================================

class TestRateLimiter:
    """Tests for per-user fixed windows."""

    def test_window_allows_then_rejects(self, clock):
        limiter = RateLimiter(clock=clock)
        policy = RateLimitPolicy(usages=3, duration=10.0)

        results = [limiter.check(1, "ping", policy) for _ in range(3)]
        assert all(r.allowed for r in results)
        assert [r.usages for r in results] == [1, 2, 3]

        clock.advance(4.0)
        rejected = limiter.check(1, "ping", policy)
        assert not rejected.allowed
        assert rejected.retry_after == pytest.approx(6.0)

    def test_window_resets_after_duration(self, clock):
        limiter = RateLimiter(clock=clock)
        policy = RateLimitPolicy(usages=1, duration=10.0)

        assert limiter.check(1, "ping", policy).allowed
        assert not limiter.check(1, "ping", policy).allowed

        clock.advance(10.0)
        result = limiter.check(1, "ping", policy)
        assert result.allowed
        assert result.usages == 1

    def test_windows_are_per_user_and_command(self, clock):
        limiter = RateLimiter(clock=clock)
        policy = RateLimitPolicy(usages=1, duration=10.0)

        assert limiter.check(1, "ping", policy).allowed
        assert limiter.check(2, "ping", policy).allowed
        assert limiter.check(1, "help", policy).allowed
        assert len(limiter) == 3

    def test_reset_forget_and_cleanup(self, clock):
        limiter = RateLimiter(clock=clock)
        policy = RateLimitPolicy(usages=1, duration=10.0)
        limiter.check(1, "ping", policy)
        limiter.check(1, "help", policy)
        limiter.check(2, "ping", policy)

        assert limiter.remaining_time(1, "ping") == pytest.approx(10.0)
        assert limiter.reset(1, "help") == 1
        limiter.forget_command("ping")
        assert len(limiter) == 0

        limiter.check(3, "ping", policy)
        clock.advance(11.0)
        assert limiter.cleanup() == 1
        assert limiter.remaining_time(3, "ping") == 0.0

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            RateLimitPolicy(usages=0)
        with pytest.raises(ValueError):
            RateLimitPolicy(duration=0)

    async def test_cleanup_loop_lifecycle(self, clock):
        limiter = RateLimiter(cleanup_interval=0.01, clock=clock)
        limiter.start()
        await limiter.stop()


# =============================================================================
# Registry
# =============================================================================

class TestArgSpec:
    def test_counts(self):
        assert ArgSpec().check([]) is None
        assert ArgSpec(required=True).check([]) is not None
        assert ArgSpec(minimum=2, maximum=2).check(["a"]) is not None
        assert ArgSpec(maximum=0).check(["a"]) is not None
        assert ArgSpec(minimum=1, maximum=3).check(["a", "b"]) is None

    def test_bounds_validated(self):
        with pytest.raises(ValueError):
            ArgSpec(minimum=-1)
        with pytest.raises(ValueError):
            ArgSpec(minimum=2, maximum=1)


class TestRegistry:
    """Tests for names, aliases and the resolve cache."""

    def test_resolve_is_case_insensitive(self, clock):
        registry = CommandRegistry(clock=clock)
        registry.register(_descriptor("Echo", aliases=("E", "say")))

        assert registry.resolve("echo").name == "Echo"
        assert registry.resolve("SAY").name == "Echo"
        assert registry.get("e").name == "Echo"
        assert "say" in registry
        assert registry.alias_count == 2

    def test_duplicate_names_rejected(self, clock):
        registry = CommandRegistry(clock=clock)
        registry.register(_descriptor("echo", aliases=("e",)))

        with pytest.raises(RegistrationError):
            registry.register(_descriptor("e"))
        with pytest.raises(RegistrationError):
            registry.register(_descriptor("other", aliases=("ECHO",)))
        assert len(registry) == 1

    def test_unregister_clears_cache(self, clock):
        registry = CommandRegistry(clock=clock)
        registry.register(_descriptor("echo", aliases=("e",)))
        registry.resolve("e")
        assert registry.cache_size == 1

        removed = registry.unregister("e")
        assert removed.name == "echo"
        assert registry.resolve("e") is None
        assert registry.resolve("echo") is None
        assert registry.unregister("echo") is None

    def test_resolve_cache_expires(self, clock):
        registry = CommandRegistry(cache_ttl=5.0, clock=clock)
        registry.register(_descriptor("echo"))
        registry.resolve("echo")

        clock.advance(6.0)
        assert registry.cleanup_cache() == 1

    def test_by_category(self, clock):
        registry = CommandRegistry(clock=clock)
        registry.register(_descriptor("a", category="one"))
        registry.register(_descriptor("b", category="one"))
        registry.register(_descriptor("c", category="two"))

        grouped = registry.by_category()
        assert sorted(d.name for d in grouped["one"]) == ["a", "b"]
        assert [d.name for d in grouped["two"]] == ["c"]

    @pytest.mark.parametrize("descriptor", [
        _descriptor("two words"),
        _descriptor(""),
        _descriptor("echo", execute="not callable"),
        _descriptor("echo", aliases=["e"]),
        _descriptor("echo", aliases=("echo",)),
        _descriptor("echo", validate=5),
    ])
    def test_malformed_descriptors(self, descriptor):
        with pytest.raises(RegistrationError):
            validate_descriptor(descriptor)

    def test_non_descriptor_rejected(self):
        with pytest.raises(RegistrationError):
            validate_descriptor({"name": "echo"})


# =============================================================================
# Loader
# =============================================================================

class TestLoader:
    """Tests for importing command categories."""

    async def test_bad_module_is_skipped(self, command_package, clock):
        registry = CommandRegistry(clock=clock)

        stats = await load_category(command_package, registry)

        assert (stats.loaded, stats.failed) == (1, 1)
        echo = registry.get("e")
        assert echo.category == command_package
        assert echo.module == f"{command_package}.echo"

    async def test_missing_category_is_fatal(self, clock):
        with pytest.raises(FatalInitError):
            await load_category("stoatbot_missing_category", CommandRegistry(clock=clock))

    async def test_category_without_manifest_is_fatal(self, clock):
        with pytest.raises(FatalInitError):
            await load_category("stoatbot.commands.base", CommandRegistry(clock=clock))

    async def test_dispatcher_load_propagates_fatal(self, db):
        dispatcher = CommandDispatcher(db, categories=["stoatbot_missing_category"])
        with pytest.raises(FatalInitError):
            await dispatcher.load()

    async def test_hung_category_is_retried(self, db, slow_package):
        name = slow_package(hangs=1)
        dispatcher = CommandDispatcher(
            db, categories=[name], load_timeout=0.05, load_retry_delay=0,
        )

        stats = await dispatcher.load()

        # echo from the abandoned attempt was unregistered, so it loads again
        assert (stats[0].loaded, stats[0].failed) == (2, 0)
        assert "echo" in dispatcher.registry
        assert "slow" in dispatcher.registry
        assert len(sys.modules[f"{name}.slow"].CALLS) == 2

    async def test_category_that_keeps_hanging_is_fatal(self, db, slow_package):
        name = slow_package(hangs=10)
        dispatcher = CommandDispatcher(
            db, categories=[name], load_timeout=0.05, load_retries=2, load_retry_delay=0,
        )

        with pytest.raises(FatalInitError):
            await dispatcher.load()

        assert len(sys.modules[f"{name}.slow"].CALLS) == 3
        assert "echo" not in dispatcher.registry

    async def test_load_concurrency_is_bounded(self, db, monkeypatch):
        running = 0
        peak = 0

        async def fake_load(path, registry, client=None, registered=None):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return CategoryLoadStats(category=path)

        monkeypatch.setattr(service_module, "load_category", fake_load)
        dispatcher = CommandDispatcher(
            db, categories=[f"cat{i}" for i in range(6)], load_concurrency=2,
        )

        stats = await dispatcher.load()

        assert len(stats) == 6
        assert peak == 2

    async def test_builtin_categories_load_cleanly(self, db):
        dispatcher = CommandDispatcher(db)

        stats = await dispatcher.load()

        assert {s.category for s in stats} == {"economy", "system"}
        assert all(s.failed == 0 for s in stats)
        for name in ("balance", "daily", "work", "give", "ping", "help", "config", "reload"):
            assert name in dispatcher.registry


# =============================================================================
# Execute
# =============================================================================

@pytest.fixture
async def dispatcher(db, clock):
    dispatcher = CommandDispatcher(db, owner_ids={OWNER_ID}, clock=clock)
    await dispatcher.load()
    return dispatcher


class TestExecute:
    """Tests for the execute() gates."""

    async def test_non_commands_are_ignored(self, dispatcher, new_message):
        assert await dispatcher.execute(new_message("hello"), "!") is False
        assert await dispatcher.execute(new_message("!"), "!") is False
        assert await dispatcher.execute(new_message("!nosuchcommand"), "!") is False
        assert await dispatcher.execute(new_message("?ping"), "!") is False

    async def test_alias_and_case(self, dispatcher, new_message):
        message = new_message("!P")

        assert await dispatcher.execute(message, "!") is True
        message.reply.assert_awaited()
        assert message.reply.await_args.args[0] == "🏓 Pinging..."
        message.reply.return_value.edit.assert_awaited_once()
        assert dispatcher.commands_run == 1

    async def test_custom_prefix(self, dispatcher, new_message):
        message = new_message("?>ping")
        assert await dispatcher.execute(message, "?>") is True

    async def test_argument_count_checked(self, dispatcher, new_message):
        message = new_message("!ping extra")

        assert await dispatcher.execute(message, "!") is True
        text = reply_text(message)
        assert "Invalid command usage" in text
        assert "Usage: `!ping`" in text
        assert dispatcher.commands_run == 0

    async def test_validate_hook(self, dispatcher, new_message):
        message = new_message("!lb abc", dm=True)

        await dispatcher.execute(message, "!")
        assert "Invalid command usage (invalid arguments)" in reply_text(message)

    async def test_rate_limit(self, dispatcher, new_message, member, clock):
        """Test that the fourth ping inside ten seconds is refused."""
        for _ in range(3):
            await dispatcher.execute(new_message("!ping", author=member), "!")

        message = new_message("!ping", author=member)
        await dispatcher.execute(message, "!")
        text = reply_text(message)
        assert text.startswith("Rate limit exceeded. Please wait 10.0 more second(s)")
        assert "`ping`" in text

        clock.advance(10.0)
        message = new_message("!ping", author=member)
        await dispatcher.execute(message, "!")
        assert message.reply.await_args.args[0] == "🏓 Pinging..."

    async def test_argument_errors_do_not_use_rate_limit(self, dispatcher, new_message, member):
        for _ in range(5):
            await dispatcher.execute(new_message("!ping extra", author=member), "!")
        assert dispatcher.rate_limiter.get_state(member.id, "ping") is None

    async def test_owner_only(self, dispatcher, new_message, new_member):
        message = new_message("!reload ping", author=new_member(7))
        await dispatcher.execute(message, "!")
        assert "restricted to bot owners" in reply_text(message)

        message = new_message("!reload ping", author=new_member(OWNER_ID))
        await dispatcher.execute(message, "!")
        assert message.reply.await_args.kwargs["embed"].title == "Command Reloaded"

    async def test_disabled_on_server(self, db, dispatcher, new_message, guild):
        await db.disable_command(guild.id, "ping")
        message = new_message("!ping", guild=guild)

        await dispatcher.execute(message, "!")
        assert "disabled on this server" in reply_text(message)

    async def test_globally_disabled_flag(self, dispatcher, new_message):
        dispatcher.registry.register(_descriptor("old", flags=CommandFlags(disabled=True)))
        message = new_message("!old")

        await dispatcher.execute(message, "!")
        assert "currently disabled" in reply_text(message)

    async def test_wip_needs_owner(self, dispatcher, new_message, new_member):
        dispatcher.registry.register(_descriptor("beta", flags=CommandFlags(wip=True)))

        message = new_message("!beta", author=new_member(7))
        await dispatcher.execute(message, "!")
        assert "restricted" in reply_text(message)

        message = new_message("!beta", author=new_member(OWNER_ID))
        await dispatcher.execute(message, "!")
        message.reply.assert_not_awaited()

    async def test_blocked_user_is_silent(self, db, dispatcher, new_message, member, guild):
        await db.block_user(guild.id, member.id)
        message = new_message("!ping", author=member, guild=guild)

        assert await dispatcher.execute(message, "!") is True
        message.reply.assert_not_awaited()

    async def test_commands_disabled_except_owners(self, db, dispatcher, new_message, new_member, guild):
        def apply(config):
            config.commands.enabled = False
        await db.update_server_config(guild.id, apply)

        message = new_message("!ping", author=new_member(7), guild=guild)
        await dispatcher.execute(message, "!")
        message.reply.assert_not_awaited()

        message = new_message("!ping", author=new_member(OWNER_ID), guild=guild)
        await dispatcher.execute(message, "!")
        message.reply.assert_awaited()

    async def test_validation_error_from_body_is_replied(self, dispatcher, new_message):
        async def refuse(ctx):
            raise ValidationError("Not today.")
        dispatcher.registry.register(_descriptor("refuse", execute=refuse))
        message = new_message("!refuse")

        assert await dispatcher.execute(message, "!") is True
        assert reply_text(message) == "Not today."
        assert dispatcher.commands_failed == 0

    async def test_unexpected_error_is_raised(self, dispatcher, new_message):
        async def crash(ctx):
            raise RuntimeError("boom")
        dispatcher.registry.register(_descriptor("crash", execute=crash))

        with pytest.raises(RuntimeError):
            await dispatcher.execute(new_message("!crash"), "!")
        assert dispatcher.commands_failed == 1

    async def test_stats(self, dispatcher, new_message):
        await dispatcher.execute(new_message("!ping"), "!")
        stats = dispatcher.stats()
        assert stats["commands"] == len(dispatcher.registry)
        assert stats["commands_run"] == 1
        assert stats["rate_limit_windows"] == 1


# =============================================================================
# Reload
# =============================================================================

class TestReload:
    """Tests for swapping a command module at runtime."""

    @pytest.fixture
    async def loaded(self, db, command_package, clock):
        dispatcher = CommandDispatcher(db, categories=[command_package], clock=clock)
        await dispatcher.load()
        return dispatcher, command_package

    async def test_reload_picks_up_changes(self, loaded, tmp_path, new_message):
        dispatcher, package = loaded
        (tmp_path / package / "echo.py").write_text(
            COMMAND_SOURCE.format(version=2, aliases='("e", "ee")')
        )

        assert await dispatcher.reload("e") is True
        assert dispatcher.registry.get("ee").name == "echo"

        message = new_message("!echo")
        await dispatcher.execute(message, "!")
        assert message.reply.await_args.args[0] == "v2"

    async def test_failed_reload_keeps_old_version(self, loaded, tmp_path, new_message):
        dispatcher, package = loaded
        (tmp_path / package / "echo.py").write_text(textwrap.dedent("""
            def setup(:
        """))

        assert await dispatcher.reload("echo") is False

        message = new_message("!e")
        await dispatcher.execute(message, "!")
        assert message.reply.await_args.args[0] == "v1"

    async def test_reload_unknown(self, loaded):
        dispatcher, _ = loaded
        assert await dispatcher.reload("nothing") is False

    async def test_reload_clears_rate_windows(self, loaded, member):
        dispatcher, _ = loaded
        dispatcher.rate_limiter.check(member.id, "echo", RateLimitPolicy(usages=1))

        assert await dispatcher.reload("echo") is True
        assert dispatcher.rate_limiter.get_state(member.id, "echo") is None
