"""
StoatBot - Automod Service
==========================

Automatic moderation of server messages.

DESIGN:
    Every non-bot server message runs through process_message():

    1. Server config is read through the persistence cache
    2. Whitelisted users, channels and roles short-circuit
    3. Spam is judged on the sender's message rate, then the content
       filters (mentions, caps, links, invites) run on the text
    4. Each violation adds 1 to the sender's score and goes through the
       action pipeline: delete, record, warn
    5. A score of ESCALATION_SCORE or more times the sender out for
       actions.timeout minutes (skipped when unset) and resets the score

    Every chat call goes through the safe_* helpers and the shared
    chat_api circuit breaker. A failed action is logged and the next one
    still runs.

Filters:
    - spam: burst over message_burst, or rapid repeats in the window
    - mentions: more "@" than max_mentions
    - caps: uppercase ratio over max_caps percent
    - links: URLs outside the link whitelist
    - invites: discord.gg, discord.com/invite, revolt.chat, stoat.gg
"""

import asyncio
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import discord

from stoatbot.core import constants
from stoatbot.core.database.models import AutomodSettings, ViolationRecord
from stoatbot.core.logger import logger
from stoatbot.services.automod.filters import (
    check_caps,
    check_invites,
    check_links,
    check_mentions,
)
from stoatbot.services.automod.history import MessageHistory
from stoatbot.utils.async_utils import create_safe_task
from stoatbot.utils.retry import safe_delete, safe_send, safe_timeout

if TYPE_CHECKING:
    from stoatbot.core.database import PersistenceManager
    from stoatbot.utils.circuit_breaker import CircuitBreaker


# =============================================================================
# Automod Service
# =============================================================================

class AutomodService:
    """
    Message filtering with a per-user violation score.

    Example:
        automod = AutomodService(db, breaker)
        automod.start()
        violations = await automod.process_message(message)
    """

    def __init__(
        self,
        db: "PersistenceManager",
        breaker: Optional["CircuitBreaker"] = None,
        window: float = constants.SPAM_WINDOW,
        prune_interval: float = constants.HISTORY_PRUNE_INTERVAL,
        idle_expiry: float = constants.HISTORY_IDLE_EXPIRY,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.breaker = breaker
        self.history = MessageHistory(window=window, clock=clock)
        self._prune_interval = prune_interval
        self._idle_expiry = idle_expiry
        self._wall_clock = wall_clock
        self._prune_task: Optional[asyncio.Task] = None

        self.messages_checked = 0
        self.violations_found = 0
        self.timeouts_applied = 0

        logger.tree("Automod Service Loaded", [
            ("Spam Window", f"{window:.0f}s"),
            ("Escalation Score", str(constants.ESCALATION_SCORE)),
            ("Prune Interval", f"{prune_interval / 60:.0f}m"),
            ("Idle Expiry", f"{idle_expiry / 60:.0f}m"),
        ], emoji="🛡️")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self._prune_task is None or self._prune_task.done():
            self._prune_task = create_safe_task(self._prune_loop(), "Automod History Prune")

    async def stop(self) -> None:
        if self._prune_task is not None:
            self._prune_task.cancel()
            await asyncio.gather(self._prune_task, return_exceptions=True)
            self._prune_task = None
        self.history.clear()

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self._prune_interval)
            try:
                removed = self.prune()
                if removed:
                    logger.debug(f"Automod history pruned {removed} idle users")
            except Exception as e:
                logger.error("Automod Prune Error", [
                    ("Error Type", type(e).__name__),
                    ("Error", str(e)[:100]),
                ])

    def prune(self) -> int:
        return self.history.prune(self._idle_expiry)

    # =========================================================================
    # Exemptions
    # =========================================================================

    def _is_exempt(self, message: discord.Message, settings: AutomodSettings) -> bool:
        whitelist = settings.whitelist
        if message.author.id in whitelist.users:
            return True
        if message.channel.id in whitelist.channels:
            return True

        roles = getattr(message.author, "roles", None) or []
        return any(role.id in whitelist.roles for role in roles)

    # =========================================================================
    # Detection
    # =========================================================================

    def _detect(self, message: discord.Message, settings: AutomodSettings) -> List[Tuple[str, str]]:
        """Run every enabled filter. Returns (type, details) per hit."""
        hits: List[Tuple[str, str]] = []
        filters = settings.filters
        thresholds = settings.thresholds
        content = message.content or ""

        if filters.spam:
            check = self.history.observe(message.author.id, thresholds.message_burst, has_content=bool(content))
            if check.is_spam:
                kinds = []
                if check.burst:
                    kinds.append("burst")
                if check.rapid_repeat:
                    kinds.append("rapid repeat")
                hits.append((
                    "spam",
                    f"Message rate exceeded threshold ({', '.join(kinds)}, "
                    f"{check.count} in {self.history.window:.0f}s)",
                ))

        if not content:
            return hits

        if filters.mentions:
            details = check_mentions(content, thresholds)
            if details:
                hits.append(("mentions", details))

        if filters.caps:
            details = check_caps(content, thresholds)
            if details:
                hits.append(("caps", details))

        if filters.links:
            details = check_links(content, settings.whitelist.links)
            if details:
                hits.append(("links", details))

        if filters.invites:
            details = check_invites(content)
            if details:
                hits.append(("invites", details))

        return hits

    # =========================================================================
    # Message Processing
    # =========================================================================

    async def process_message(self, message: discord.Message) -> List[ViolationRecord]:
        """
        Check a server message and act on any violations.

        Returns:
            The violations recorded for this message (empty when clean,
            exempt, outside a server, or automod is disabled).
        """
        if message.guild is None or message.author.bot:
            return []

        config = await self.db.get_server_config(message.guild.id)
        settings = config.automod
        if not settings.enabled:
            return []
        if self._is_exempt(message, settings):
            return []

        self.messages_checked += 1
        hits = self._detect(message, settings)
        if not hits:
            return []

        user_id = message.author.id
        records = [
            ViolationRecord(
                type=kind,
                user_id=user_id,
                channel_id=message.channel.id,
                message_id=message.id,
                timestamp=self._wall_clock(),
                details=details,
            )
            for kind, details in hits
        ]

        deleted = False
        for record in records:
            score = self.history.add_score(user_id)
            self.violations_found += 1
            logger.tree("Automod Violation", [
                ("Type", record.type),
                ("User", f"{message.author} ({user_id})"),
                ("Channel", str(message.channel.id)),
                ("Score", f"{score:g}"),
                ("Details", (record.details or "")[:100]),
            ], emoji="🛡️")
            deleted = await self._handle_violation(message, record, settings, deleted)

        if self.history.get_score(user_id) >= constants.ESCALATION_SCORE:
            await self._escalate(message, settings)

        return records

    async def _handle_violation(
        self,
        message: discord.Message,
        record: ViolationRecord,
        settings: AutomodSettings,
        deleted: bool,
    ) -> bool:
        """
        Delete, record and warn for one violation.

        Returns:
            Whether the message is gone, so later violations skip the delete.
        """
        if settings.actions.delete and not deleted:
            deleted = await safe_delete(message, breaker=self.breaker)

        try:
            await self.db.record_violation(record)
        except Exception as e:
            logger.error("Violation Record Failed", [
                ("Type", record.type),
                ("User", str(record.user_id)),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:100]),
            ])

        if settings.actions.warn:
            await self._send_warning(message, record)

        return deleted

    async def _send_warning(self, message: discord.Message, record: ViolationRecord) -> None:
        parts = [
            f"{message.author.mention}, please follow the server rules.",
            f"Violation: {record.type}",
        ]
        if record.type == "spam":
            parts.append("Continuing to spam may result in a timeout.")

        await safe_send(
            message.channel,
            " ".join(parts),
            breaker=self.breaker,
            allowed_mentions=discord.AllowedMentions(users=True, roles=False, everyone=False),
        )

    async def _escalate(self, message: discord.Message, settings: AutomodSettings) -> None:
        user_id = message.author.id
        minutes = settings.actions.timeout
        score = self.history.get_score(user_id)

        applied = False
        if minutes is not None and isinstance(message.author, discord.Member):
            applied = await safe_timeout(
                message.author,
                minutes,
                reason=f"Automod: violation score {score:g}",
                breaker=self.breaker,
            )
        self.history.reset_score(user_id)

        if applied:
            self.timeouts_applied += 1
        logger.tree("Automod Escalation", [
            ("User", f"{message.author} ({user_id})"),
            ("Score", f"{score:g}"),
            ("Timeout", f"{minutes}m" if applied else ("disabled" if minutes is None else "failed")),
        ], emoji="⏳")

    # =========================================================================
    # Helpers
    # =========================================================================

    def get_user_score(self, user_id: int) -> float:
        return self.history.get_score(user_id)

    def reset_user(self, user_id: int) -> bool:
        return self.history.forget(user_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "tracked_users": len(self.history),
            "messages_checked": self.messages_checked,
            "violations_found": self.violations_found,
            "timeouts_applied": self.timeouts_applied,
        }


__all__ = ["AutomodService"]
