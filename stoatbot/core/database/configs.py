"""
StoatBot - Server Config Operations
===================================

Read-through / write-back access to per-server configuration.

DESIGN:
    Reads: cache hit within TTL -> return; miss -> query the store; no row
    -> synthesise defaults and persist them through the batch writer.
    Rows are always passed through ServerConfiguration.from_dict so older
    or damaged documents come back complete.

    Writes: every setter copies the current value, mutates the copy, puts
    it in the cache as dirty and enqueues an idempotent upsert keyed
    "config:<server_id>". Callers see their change immediately.
"""

import json
import time
from typing import TYPE_CHECKING, Callable, Optional

from stoatbot.core.database.base import _safe_json_loads
from stoatbot.core.database.batch import BatchOperation
from stoatbot.core.database.cache import CacheEntry
from stoatbot.core.database.models import (
    AUTOMOD_ACTIONS,
    AUTOMOD_FILTERS,
    AUTOMOD_THRESHOLDS,
    ServerConfiguration,
)
from stoatbot.core.errors import ValidationError
from stoatbot.core.logger import logger

if TYPE_CHECKING:
    from stoatbot.core.database.manager import PersistenceManager


WHITELIST_KINDS = ("users", "roles", "channels", "links")
FEATURE_FLAGS = ("welcome", "logging", "automod")
EXPERIMENTS = ("economy", "moderation")

UPSERT_CONFIG = """
    INSERT INTO server_configs (server_id, config, updated_at)
    VALUES (?, ?, ?)
    ON CONFLICT(server_id) DO UPDATE SET
        config = excluded.config,
        updated_at = excluded.updated_at
"""


def config_key(server_id: int) -> str:
    return f"config:{server_id}"


def _whitelist_value(kind: str, value):
    if kind == "links":
        return str(value).strip().lower()
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"`{value}` is not a valid ID.")


class ConfigsMixin:
    """Mixin for server configuration operations."""

    # =========================================================================
    # Read
    # =========================================================================

    def default_config(self: "PersistenceManager") -> ServerConfiguration:
        return ServerConfiguration.default(self.default_prefix)

    async def get_server_config(self: "PersistenceManager", server_id: Optional[int]) -> ServerConfiguration:
        """
        Get the configuration for a server.

        Direct messages (server_id None) get defaults without touching the
        store. The returned object is shared with the cache: treat it as
        read-only and change settings through the setters.
        """
        if server_id is None:
            return self.default_config()

        key = config_key(server_id)
        entry = self._cache.get(key)
        if entry is not None:
            return entry.value

        row = await self.fetchone(
            "SELECT config FROM server_configs WHERE server_id = ?",
            (server_id,),
        )

        # A setter may have run while we were waiting on the store.
        entry = self._cache.get(key)
        if entry is not None:
            return entry.value

        if row is None:
            config = self.default_config()
            entry = self._cache.put(key, config, dirty=True)
            await self._enqueue_config(server_id, entry)
            logger.info("Default Config Created", [("Server", str(server_id))])
            return config

        repaired = []
        config = ServerConfiguration.from_dict(
            _safe_json_loads(row["config"], {}),
            default_prefix=self.default_prefix,
            repaired=repaired,
        )
        if repaired:
            logger.warning("Server Config Repaired", [
                ("Server", str(server_id)),
                ("Fields", str(len(repaired))),
                ("First", ", ".join(repaired[:3])),
            ])
            entry = self._cache.put(key, config, dirty=True)
            await self._enqueue_config(server_id, entry)
        else:
            self._cache.put(key, config)
        return config

    async def get_prefix(self: "PersistenceManager", server_id: Optional[int]) -> str:
        config = await self.get_server_config(server_id)
        return config.bot.prefix

    # =========================================================================
    # Write
    # =========================================================================

    def _config_op(self: "PersistenceManager", server_id: int, entry: CacheEntry) -> BatchOperation:
        key = config_key(server_id)
        version = entry.version
        payload = json.dumps(entry.value.to_dict())
        return BatchOperation(
            key=key,
            query=UPSERT_CONFIG,
            params=(server_id, payload, time.time()),
            on_commit=lambda: self._cache.mark_clean(key, version),
            on_drop=lambda: self._cache.mark_dropped(key, version),
        )

    async def _enqueue_config(self: "PersistenceManager", server_id: int, entry: CacheEntry) -> None:
        await self._writer.enqueue(self._config_op(server_id, entry))

    async def update_server_config(
        self: "PersistenceManager",
        server_id: Optional[int],
        mutator: Callable[[ServerConfiguration], None],
    ) -> ServerConfiguration:
        """
        Apply ``mutator`` to a copy of the config and write it back.

        Raises:
            ValidationError: Outside a server, or if the mutator rejects the change.
        """
        if server_id is None:
            raise ValidationError("Server settings can only be changed inside a server.")

        current = await self.get_server_config(server_id)
        updated = current.copy()
        mutator(updated)

        entry = self._cache.put(config_key(server_id), updated, dirty=True)
        await self._enqueue_config(server_id, entry)
        return updated

    async def reset_server_config(self: "PersistenceManager", server_id: Optional[int]) -> ServerConfiguration:
        if server_id is None:
            raise ValidationError("Server settings can only be changed inside a server.")

        config = self.default_config()
        entry = self._cache.put(config_key(server_id), config, dirty=True)
        await self._enqueue_config(server_id, entry)
        logger.info("Server Config Reset", [("Server", str(server_id))])
        return config

    # -------------------------------------------------------------------------
    # Setters
    # -------------------------------------------------------------------------

    async def set_prefix(self: "PersistenceManager", server_id: Optional[int], prefix: str) -> ServerConfiguration:
        prefix = prefix.strip()
        if not prefix or len(prefix) > 5 or any(c.isspace() for c in prefix):
            raise ValidationError("Prefix must be 1-5 characters with no spaces.")

        def apply(config: ServerConfiguration) -> None:
            config.bot.prefix = prefix

        return await self.update_server_config(server_id, apply)

    async def set_feature(self: "PersistenceManager", server_id: Optional[int], feature: str, enabled: bool) -> ServerConfiguration:
        feature = feature.lower()
        if feature not in FEATURE_FLAGS:
            raise ValidationError(f"Unknown feature `{feature}`. Available: {', '.join(FEATURE_FLAGS)}")

        def apply(config: ServerConfiguration) -> None:
            setattr(config.features, feature, enabled)

        return await self.update_server_config(server_id, apply)

    async def set_experiment(self: "PersistenceManager", server_id: Optional[int], name: str, enabled: bool) -> ServerConfiguration:
        name = name.lower()
        if name not in EXPERIMENTS:
            raise ValidationError(f"Unknown experiment `{name}`. Available: {', '.join(EXPERIMENTS)}")

        def apply(config: ServerConfiguration) -> None:
            setattr(config.features.experiments, name, enabled)

        return await self.update_server_config(server_id, apply)

    async def set_automod_enabled(self: "PersistenceManager", server_id: Optional[int], enabled: bool) -> ServerConfiguration:
        def apply(config: ServerConfiguration) -> None:
            config.automod.enabled = enabled
            config.features.automod = enabled

        return await self.update_server_config(server_id, apply)

    async def set_automod_filter(self: "PersistenceManager", server_id: Optional[int], name: str, enabled: bool) -> ServerConfiguration:
        name = name.lower()
        if name not in AUTOMOD_FILTERS:
            raise ValidationError(f"Unknown filter `{name}`. Available: {', '.join(AUTOMOD_FILTERS)}")

        def apply(config: ServerConfiguration) -> None:
            setattr(config.automod.filters, name, enabled)

        return await self.update_server_config(server_id, apply)

    async def set_automod_threshold(self: "PersistenceManager", server_id: Optional[int], name: str, value: int) -> ServerConfiguration:
        name = name.lower()
        if name not in AUTOMOD_THRESHOLDS:
            raise ValidationError(f"Unknown threshold `{name}`. Available: {', '.join(AUTOMOD_THRESHOLDS)}")
        if value < 1 or (name == "max_caps" and value > 100):
            raise ValidationError(f"Invalid value for `{name}`: {value}")

        def apply(config: ServerConfiguration) -> None:
            setattr(config.automod.thresholds, name, value)

        return await self.update_server_config(server_id, apply)

    async def set_automod_action(self: "PersistenceManager", server_id: Optional[int], name: str, value) -> ServerConfiguration:
        """Set delete/warn (bool) or timeout (minutes, 0 or None disables)."""
        name = name.lower()
        if name not in AUTOMOD_ACTIONS:
            raise ValidationError(f"Unknown action `{name}`. Available: {', '.join(AUTOMOD_ACTIONS)}")

        if name == "timeout":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise ValidationError("Timeout must be a number of minutes (0 disables).")
            value = value or None
        elif not isinstance(value, bool):
            raise ValidationError(f"`{name}` must be true or false.")

        def apply(config: ServerConfiguration) -> None:
            setattr(config.automod.actions, name, value)

        return await self.update_server_config(server_id, apply)

    async def add_whitelist_entry(self: "PersistenceManager", server_id: Optional[int], kind: str, value) -> ServerConfiguration:
        kind = kind.lower()
        if kind not in WHITELIST_KINDS:
            raise ValidationError(f"Unknown whitelist `{kind}`. Available: {', '.join(WHITELIST_KINDS)}")
        value = _whitelist_value(kind, value)

        def apply(config: ServerConfiguration) -> None:
            entries = getattr(config.automod.whitelist, kind)
            if value not in entries:
                entries.append(value)

        return await self.update_server_config(server_id, apply)

    async def remove_whitelist_entry(self: "PersistenceManager", server_id: Optional[int], kind: str, value) -> ServerConfiguration:
        kind = kind.lower()
        if kind not in WHITELIST_KINDS:
            raise ValidationError(f"Unknown whitelist `{kind}`. Available: {', '.join(WHITELIST_KINDS)}")
        value = _whitelist_value(kind, value)

        def apply(config: ServerConfiguration) -> None:
            entries = getattr(config.automod.whitelist, kind)
            if value in entries:
                entries.remove(value)

        return await self.update_server_config(server_id, apply)

    async def block_user(self: "PersistenceManager", server_id: Optional[int], user_id: int) -> ServerConfiguration:
        def apply(config: ServerConfiguration) -> None:
            if user_id not in config.security.blocked_users:
                config.security.blocked_users.append(user_id)

        return await self.update_server_config(server_id, apply)

    async def unblock_user(self: "PersistenceManager", server_id: Optional[int], user_id: int) -> ServerConfiguration:
        def apply(config: ServerConfiguration) -> None:
            if user_id in config.security.blocked_users:
                config.security.blocked_users.remove(user_id)

        return await self.update_server_config(server_id, apply)

    async def add_owner(self: "PersistenceManager", server_id: Optional[int], user_id: int) -> ServerConfiguration:
        def apply(config: ServerConfiguration) -> None:
            if user_id not in config.bot.owners:
                config.bot.owners.append(user_id)

        return await self.update_server_config(server_id, apply)

    async def remove_owner(self: "PersistenceManager", server_id: Optional[int], user_id: int) -> ServerConfiguration:
        def apply(config: ServerConfiguration) -> None:
            if user_id in config.bot.owners:
                config.bot.owners.remove(user_id)

        return await self.update_server_config(server_id, apply)

    async def disable_command(self: "PersistenceManager", server_id: Optional[int], name: str) -> ServerConfiguration:
        name = name.lower()

        def apply(config: ServerConfiguration) -> None:
            if name not in config.commands.disabled:
                config.commands.disabled.append(name)

        return await self.update_server_config(server_id, apply)

    async def enable_command(self: "PersistenceManager", server_id: Optional[int], name: str) -> ServerConfiguration:
        name = name.lower()

        def apply(config: ServerConfiguration) -> None:
            if name in config.commands.disabled:
                config.commands.disabled.remove(name)

        return await self.update_server_config(server_id, apply)

    # =========================================================================
    # Lifecycle Hooks
    # =========================================================================

    async def prewarm_server(self: "PersistenceManager", server_id: int) -> None:
        """Load a server's config into the cache (on join)."""
        await self.get_server_config(server_id)

    async def release_server(self: "PersistenceManager", server_id: int) -> None:
        """Flush and evict a server's config (on leave)."""
        key = config_key(server_id)
        entry = self._cache.peek(key)
        if entry is None:
            return
        if entry.dirty and not entry.dropped:
            if not self._writer.has_pending(key):
                await self._enqueue_config(server_id, entry)
            await self._writer.flush()
        entry = self._cache.peek(key)
        if entry is not None and (not entry.dirty or entry.dropped):
            self._cache.evict(key)
