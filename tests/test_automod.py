"""
StoatBot - Automod Tests
========================

Tests for spam windows, content filters, scoring and escalation.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from stoatbot.core import constants
from stoatbot.core.database.models import AutomodThresholds
from stoatbot.services.automod import AutomodService, MessageHistory
from stoatbot.services.automod.filters import (
    check_caps,
    check_invites,
    check_links,
    check_mentions,
    find_links,
)


@pytest.fixture
async def automod(db, clock, guild):
    await db.set_automod_enabled(guild.id, True)
    return AutomodService(db, clock=clock, wall_clock=lambda: 5000.0)


def _forbidden() -> discord.Forbidden:
    response = MagicMock()
    response.status = 403
    response.reason = "Forbidden"
    return discord.Forbidden(response, "Missing Permissions")


# =============================================================================
# Message History
# =============================================================================

class TestMessageHistory:
    """Tests for the per-user sliding window."""

    def test_first_message_opens_window(self, clock):
        history = MessageHistory(window=10.0, clock=clock)
        check = history.observe(1, message_burst=5)

        assert check.count == 1
        assert not check.is_spam
        assert 1 in history

    def test_rapid_repeat_at_three(self, clock):
        """Test that the third message inside the window counts as a repeat."""
        history = MessageHistory(window=10.0, clock=clock)
        history.observe(1, 5)
        assert not history.observe(1, 5).is_spam

        check = history.observe(1, 5)
        assert check.rapid_repeat
        assert not check.burst

    def test_messages_without_text_never_repeat(self, clock):
        """Test that attachment-only messages count toward a burst but not a repeat."""
        history = MessageHistory(window=10.0, clock=clock)
        for _ in range(3):
            check = history.observe(1, 5, has_content=False)
        assert not check.rapid_repeat
        assert not check.is_spam

        for _ in range(3):
            check = history.observe(1, 5, has_content=False)
        assert check.burst

    def test_burst_over_threshold(self, clock):
        history = MessageHistory(window=10.0, clock=clock)
        for _ in range(5):
            history.observe(1, 5)

        check = history.observe(1, 5)
        assert check.burst
        assert check.count == 6

    def test_old_messages_leave_window(self, clock):
        history = MessageHistory(window=10.0, clock=clock)
        history.observe(1, 5)
        history.observe(1, 5)
        clock.advance(10.0)

        check = history.observe(1, 5)
        assert check.count == 1

    def test_score_decays_when_quiet(self, clock):
        """Test that quiet messages lower the score by 0.5, never below 0."""
        history = MessageHistory(window=10.0, clock=clock)
        history.observe(1, 5)
        history.add_score(1)

        clock.advance(11.0)
        history.observe(1, 5)
        assert history.get_score(1) == 0.5

        clock.advance(11.0)
        history.observe(1, 5)
        assert history.get_score(1) == 0.0

        clock.advance(11.0)
        history.observe(1, 5)
        assert history.get_score(1) == 0.0

    def test_no_decay_while_busy(self, clock):
        """Test that the score holds while the rate stays above half the burst."""
        history = MessageHistory(window=10.0, clock=clock)
        history.observe(1, 2)
        history.add_score(1)

        check = history.observe(1, 2)
        assert not check.is_spam
        assert history.get_score(1) == 1.0

    def test_reset_forget_and_prune(self, clock):
        history = MessageHistory(window=10.0, clock=clock)
        history.observe(1, 5)
        history.observe(2, 5)
        history.add_score(1, 2.0)

        history.reset_score(1)
        assert history.get_score(1) == 0.0
        assert history.forget(2) is True
        assert history.forget(2) is False

        clock.advance(3600.0)
        assert history.prune(idle_expiry=1800.0) == 1
        assert len(history) == 0


# =============================================================================
# Content Filters
# =============================================================================

class TestFilters:
    """Tests for the stateless content checks."""

    def test_mentions(self):
        thresholds = AutomodThresholds(max_mentions=3)
        assert check_mentions("@a @b @c", thresholds) is None
        assert "4" in check_mentions("@a @b @c @d", thresholds)

    def test_caps_needs_length(self):
        thresholds = AutomodThresholds(max_caps=70)
        assert check_caps("HELLO", thresholds) is None
        assert check_caps("THIS IS VERY LOUD", thresholds) is not None
        assert check_caps("This is a normal sentence", thresholds) is None

    def test_links_respect_whitelist(self):
        assert check_links("see https://evil.example/x", []) is not None
        assert check_links("see https://Example.com/page", ["example.com"]) is None
        assert check_links("no links here", []) is None

    def test_invites(self):
        assert check_invites("join discord.gg/abc") is not None
        assert check_invites("join https://discord.com/invite/abc") is not None
        assert check_invites("join stoat.gg/invite/xyz") is not None
        assert check_invites("a normal message") is None

    def test_find_links(self):
        assert find_links("a http://x.io b https://y.io") == ["http://x.io", "https://y.io"]


# =============================================================================
# Automod Service
# =============================================================================

class TestAutomodService:
    """Tests for the full message pipeline."""

    async def test_clean_message(self, automod, new_message, guild):
        message = new_message("hello there", guild=guild)

        assert await automod.process_message(message) == []
        message.delete.assert_not_awaited()
        assert automod.messages_checked == 1

    async def test_skips_dm_bot_and_disabled(self, db, automod, new_message, new_member, guild, new_guild):
        """Test the early returns before any filter runs."""
        dm = new_message("https://evil.example", dm=True)
        bot = new_message("https://evil.example", author=new_member(2, bot=True), guild=guild)
        other = new_message("https://evil.example", guild=new_guild(222))

        assert await automod.process_message(dm) == []
        assert await automod.process_message(bot) == []
        assert await automod.process_message(other) == []
        assert automod.messages_checked == 0

    async def test_exemptions(self, db, automod, new_message, new_member, channel, guild):
        """Test whitelisted users, channels and roles."""
        await db.add_whitelist_entry(guild.id, "users", 10)
        await db.add_whitelist_entry(guild.id, "channels", channel.id)
        await db.add_whitelist_entry(guild.id, "roles", 77)

        messages = [
            new_message("https://evil.example", author=new_member(10), guild=guild),
            new_message("https://evil.example", author=new_member(11), guild=guild, channel=channel),
            new_message("https://evil.example", author=new_member(12, roles=[77]), guild=guild),
        ]
        for message in messages:
            assert await automod.process_message(message) == []
            message.delete.assert_not_awaited()

    async def test_violation_deletes_records_and_warns(self, db, automod, new_message, member, guild):
        message = new_message("visit https://evil.example", author=member, guild=guild)

        records = await automod.process_message(message)

        assert [r.type for r in records] == ["links"]
        message.delete.assert_awaited_once()
        message.channel.send.assert_awaited_once()
        text = message.channel.send.await_args.args[0]
        assert member.mention in text
        assert "links" in text
        assert automod.get_user_score(member.id) == 1.0

        await db.flush()
        stored = await db.get_user_violations(member.id)
        assert stored[0].type == "links"
        assert stored[0].message_id == message.id

    async def test_message_deleted_once_for_many_hits(self, automod, new_message, guild):
        message = new_message("https://evil.example discord.gg/abc", guild=guild)

        records = await automod.process_message(message)

        assert {r.type for r in records} == {"links", "invites"}
        message.delete.assert_awaited_once()
        assert message.channel.send.await_count == 2

    async def test_actions_can_be_switched_off(self, db, automod, new_message, guild):
        await db.set_automod_action(guild.id, "delete", False)
        await db.set_automod_action(guild.id, "warn", False)
        message = new_message("https://evil.example", guild=guild)

        records = await automod.process_message(message)

        assert len(records) == 1
        message.delete.assert_not_awaited()
        message.channel.send.assert_not_awaited()

    async def test_disabled_filter_is_skipped(self, db, automod, new_message, guild):
        await db.set_automod_filter(guild.id, "links", False)
        message = new_message("https://evil.example", guild=guild)

        assert await automod.process_message(message) == []

    async def test_burst_is_one_violation_per_message(self, automod, new_message, member, guild):
        """Test that a burst message yields a single spam record."""
        for _ in range(5):
            await automod.process_message(new_message("hi", author=member, guild=guild))

        records = await automod.process_message(new_message("hi", author=member, guild=guild))

        assert len(records) == 1
        assert records[0].type == "spam"
        assert "burst" in records[0].details

    async def test_empty_messages_are_not_rapid_repeats(self, automod, new_message, member, guild):
        for _ in range(3):
            records = await automod.process_message(new_message("", author=member, guild=guild))

        assert records == []

    async def test_spam_warning_mentions_timeout(self, automod, new_message, member, guild):
        for _ in range(2):
            await automod.process_message(new_message("hi", author=member, guild=guild))
        message = new_message("hi", author=member, guild=guild)

        records = await automod.process_message(message)

        assert records[0].type == "spam"
        assert "timeout" in message.channel.send.await_args.args[0]

    async def test_escalation_times_out_and_resets(self, automod, new_message, member, guild):
        """Test that reaching the escalation score applies a timeout."""
        message = new_message("@@@@@@ https://discord.gg/abc", author=member, guild=guild)

        records = await automod.process_message(message)

        assert len(records) == 3
        member.timeout.assert_awaited_once()
        assert member.timeout.await_args.args[0] == timedelta(minutes=constants.DEFAULT_TIMEOUT_MINUTES)
        assert automod.get_user_score(member.id) == 0.0
        assert automod.timeouts_applied == 1

    async def test_escalation_without_timeout(self, db, automod, new_message, member, guild):
        """Test that a disabled timeout still resets the score."""
        await db.set_automod_action(guild.id, "timeout", 0)
        message = new_message("@@@@@@ https://discord.gg/abc", author=member, guild=guild)

        await automod.process_message(message)

        member.timeout.assert_not_awaited()
        assert automod.get_user_score(member.id) == 0.0
        assert automod.timeouts_applied == 0

    async def test_score_returns_to_zero_after_quiet(self, automod, new_message, member, guild, clock):
        await automod.process_message(new_message("https://evil.example", author=member, guild=guild))
        assert automod.get_user_score(member.id) == 1.0

        for _ in range(2):
            clock.advance(constants.SPAM_WINDOW + 1)
            await automod.process_message(new_message("hello", author=member, guild=guild))

        assert automod.get_user_score(member.id) == 0.0

    async def test_failed_delete_does_not_stop_pipeline(self, db, automod, new_message, guild):
        message = new_message("https://evil.example", guild=guild)
        message.delete.side_effect = _forbidden()

        records = await automod.process_message(message)

        assert len(records) == 1
        message.channel.send.assert_awaited_once()
        await db.flush()
        assert len(await db.get_user_violations(message.author.id)) == 1

    async def test_failed_record_still_warns(self, db, automod, new_message, guild, monkeypatch):
        monkeypatch.setattr(db, "record_violation", AsyncMock(side_effect=RuntimeError("disk full")))
        message = new_message("https://evil.example", guild=guild)

        records = await automod.process_message(message)

        assert len(records) == 1
        message.channel.send.assert_awaited_once()

    async def test_reset_user_and_stats(self, automod, new_message, member, guild):
        await automod.process_message(new_message("https://evil.example", author=member, guild=guild))

        stats = automod.stats()
        assert stats["violations_found"] == 1
        assert stats["tracked_users"] == 1

        assert automod.reset_user(member.id) is True
        assert automod.get_user_score(member.id) == 0.0

    async def test_prune_loop_lifecycle(self, automod):
        automod.start()
        await automod.stop()
        assert len(automod.history) == 0
