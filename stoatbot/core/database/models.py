"""
StoatBot - Database Models
==========================

Dataclasses for everything the persistence layer stores.

DESIGN:
    ServerConfiguration is a tree of small dataclasses so every nested
    field always exists. from_dict() is forgiving: unknown keys are
    ignored, missing or malformed values fall back to defaults, and the
    camelCase layout written by older deployments (including the legacy
    top-level "prefix" key and millisecond cooldowns) is still readable.
    Every path that had to be back-filled is reported through the
    optional ``repaired`` list so callers can log it.
"""

import copy
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from stoatbot.core import constants
from stoatbot.core.database.base import _safe_json_loads

_MISSING = object()


# =============================================================================
# Lenient Reader
# =============================================================================

class _Reader:
    """Reads typed values out of an untrusted dict, recording repairs."""

    def __init__(self, data: Any, path: str, repaired: Optional[List[str]]):
        self.path = path
        self.repaired = repaired
        if isinstance(data, dict):
            self.data = data
        else:
            self.data = {}
            self._repair(path)

    def _repair(self, path: str) -> None:
        if self.repaired is not None:
            self.repaired.append(path)

    def _raw(self, keys: Tuple[str, ...]) -> Tuple[Optional[str], Any]:
        for key in keys:
            if key in self.data:
                return key, self.data[key]
        return None, _MISSING

    def _where(self, keys: Tuple[str, ...]) -> str:
        return f"{self.path}.{keys[0]}" if self.path else keys[0]

    def child(self, *keys: str) -> "_Reader":
        _, value = self._raw(keys)
        return _Reader(value, self._where(keys), self.repaired)

    def flag(self, default: bool, *keys: str) -> bool:
        _, value = self._raw(keys)
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        self._repair(self._where(keys))
        return default

    def number(self, default: int, *keys: str) -> int:
        _, value = self._raw(keys)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value)
        self._repair(self._where(keys))
        return default

    def real(self, default: float, *keys: str) -> float:
        _, value = self._raw(keys)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        self._repair(self._where(keys))
        return default

    def text(self, default: str, *keys: str) -> str:
        _, value = self._raw(keys)
        if isinstance(value, str) and value:
            return value
        self._repair(self._where(keys))
        return default

    def optional_id(self, *keys: str) -> Optional[int]:
        _, value = self._raw(keys)
        if value is _MISSING or value is None or value == "":
            return None
        parsed = _to_id(value)
        if parsed is None:
            self._repair(self._where(keys))
        return parsed

    def ids(self, *keys: str) -> List[int]:
        _, value = self._raw(keys)
        if not isinstance(value, list):
            self._repair(self._where(keys))
            return []
        result = []
        for item in value:
            if item == "":
                continue
            parsed = _to_id(item)
            if parsed is None:
                self._repair(self._where(keys))
            elif parsed not in result:
                result.append(parsed)
        return result

    def strs(self, *keys: str) -> List[str]:
        _, value = self._raw(keys)
        if not isinstance(value, list):
            self._repair(self._where(keys))
            return []
        return [item.lower() for item in value if isinstance(item, str) and item]

    def is_null(self, *keys: str) -> bool:
        key, value = self._raw(keys)
        return key is not None and value is None

    def key_used(self, *keys: str) -> Optional[str]:
        key, _ = self._raw(keys)
        return key


def _to_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


# =============================================================================
# Server Configuration
# =============================================================================

@dataclass
class BotSettings:
    prefix: str = "!"
    name: str = "StoatBot"
    status: str = "online"
    owners: List[int] = field(default_factory=list)
    default_cooldown: float = 3.0

    @classmethod
    def from_reader(cls, r: _Reader, default_prefix: str, legacy_prefix: Optional[str]) -> "BotSettings":
        cooldown_key = r.key_used("default_cooldown", "defaultCooldown")
        cooldown = r.real(3.0, "default_cooldown", "defaultCooldown")
        if cooldown_key == "defaultCooldown":
            cooldown = cooldown / 1000.0
        prefix = r.text(legacy_prefix or default_prefix, "prefix")
        return cls(
            prefix=prefix,
            name=r.text("StoatBot", "name"),
            status=r.text("online", "status"),
            owners=r.ids("owners"),
            default_cooldown=max(0.0, cooldown),
        )


@dataclass
class CommandSettings:
    enabled: bool = True
    disabled: List[str] = field(default_factory=list)
    dangerous: List[str] = field(default_factory=list)

    @classmethod
    def from_reader(cls, r: _Reader) -> "CommandSettings":
        return cls(
            enabled=r.flag(True, "enabled"),
            disabled=r.strs("disabled"),
            dangerous=r.strs("dangerous"),
        )


@dataclass
class ExperimentSettings:
    economy: bool = False
    moderation: bool = False


@dataclass
class FeatureSettings:
    welcome: bool = False
    logging: bool = False
    automod: bool = False
    experiments: ExperimentSettings = field(default_factory=ExperimentSettings)

    @classmethod
    def from_reader(cls, r: _Reader) -> "FeatureSettings":
        exp = r.child("experiments")
        return cls(
            welcome=r.flag(False, "welcome"),
            logging=r.flag(False, "logging"),
            automod=r.flag(False, "automod"),
            experiments=ExperimentSettings(
                economy=exp.flag(False, "economy"),
                moderation=exp.flag(False, "moderation"),
            ),
        )


@dataclass
class SecuritySettings:
    anti_spam: bool = True
    max_mentions: int = 5
    max_lines: int = 10
    blocked_users: List[int] = field(default_factory=list)
    allowed_servers: List[int] = field(default_factory=list)

    @classmethod
    def from_reader(cls, r: _Reader) -> "SecuritySettings":
        return cls(
            anti_spam=r.flag(True, "anti_spam", "antiSpam"),
            max_mentions=r.number(5, "max_mentions", "maxMentions"),
            max_lines=r.number(10, "max_lines", "maxLines"),
            blocked_users=r.ids("blocked_users", "blockedUsers"),
            allowed_servers=r.ids("allowed_servers", "allowedServers"),
        )


AUTOMOD_FILTERS = ("spam", "invites", "links", "mentions", "caps")
AUTOMOD_THRESHOLDS = ("max_mentions", "max_caps", "message_burst")
AUTOMOD_ACTIONS = ("delete", "warn", "timeout")


@dataclass
class AutomodFilters:
    spam: bool = True
    invites: bool = True
    links: bool = True
    mentions: bool = True
    caps: bool = True


@dataclass
class AutomodThresholds:
    max_mentions: int = 5
    max_caps: int = 70
    message_burst: int = 5


@dataclass
class AutomodWhitelist:
    users: List[int] = field(default_factory=list)
    roles: List[int] = field(default_factory=list)
    channels: List[int] = field(default_factory=list)
    links: List[str] = field(default_factory=list)


@dataclass
class AutomodActions:
    delete: bool = True
    warn: bool = True
    timeout: Optional[int] = constants.DEFAULT_TIMEOUT_MINUTES


@dataclass
class AutomodSettings:
    enabled: bool = False
    filters: AutomodFilters = field(default_factory=AutomodFilters)
    thresholds: AutomodThresholds = field(default_factory=AutomodThresholds)
    whitelist: AutomodWhitelist = field(default_factory=AutomodWhitelist)
    actions: AutomodActions = field(default_factory=AutomodActions)

    @classmethod
    def from_reader(cls, r: _Reader) -> "AutomodSettings":
        filters = r.child("filters")
        thresholds = r.child("thresholds")
        whitelist = r.child("whitelist")
        actions = r.child("actions")

        if actions.is_null("timeout"):
            timeout = None
        else:
            timeout = actions.number(constants.DEFAULT_TIMEOUT_MINUTES, "timeout")
            if timeout <= 0:
                timeout = None

        return cls(
            enabled=r.flag(False, "enabled"),
            filters=AutomodFilters(**{
                name: filters.flag(True, name) for name in AUTOMOD_FILTERS
            }),
            thresholds=AutomodThresholds(
                max_mentions=max(1, thresholds.number(5, "max_mentions", "maxMentions")),
                max_caps=min(100, max(1, thresholds.number(70, "max_caps", "maxCaps"))),
                message_burst=max(1, thresholds.number(5, "message_burst", "messageBurst")),
            ),
            whitelist=AutomodWhitelist(
                users=whitelist.ids("users"),
                roles=whitelist.ids("roles"),
                channels=whitelist.ids("channels"),
                links=whitelist.strs("links"),
            ),
            actions=AutomodActions(
                delete=actions.flag(True, "delete"),
                warn=actions.flag(True, "warn"),
                timeout=timeout,
            ),
        )


@dataclass
class ServerConfiguration:
    """Per-server settings. Every nested field is always present."""

    bot: BotSettings = field(default_factory=BotSettings)
    commands: CommandSettings = field(default_factory=CommandSettings)
    features: FeatureSettings = field(default_factory=FeatureSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    automod: AutomodSettings = field(default_factory=AutomodSettings)
    welcome_channel: Optional[int] = None
    log_channel: Optional[int] = None

    @property
    def prefix(self) -> str:
        return self.bot.prefix

    @classmethod
    def default(cls, prefix: str = "!") -> "ServerConfiguration":
        config = cls()
        config.bot.prefix = prefix
        return config

    @classmethod
    def from_dict(
        cls,
        data: Any,
        default_prefix: str = "!",
        repaired: Optional[List[str]] = None,
    ) -> "ServerConfiguration":
        """
        Build a configuration from a stored dict, back-filling defaults.

        Args:
            data: Decoded JSON from the store (anything; non-dicts give defaults).
            default_prefix: Prefix used when neither bot.prefix nor the legacy
                top-level prefix is set.
            repaired: Optional list that receives the path of every field that
                was missing or malformed.
        """
        r = _Reader(data, "", repaired)

        legacy_prefix = r.data.get("prefix")
        if not isinstance(legacy_prefix, str) or not legacy_prefix:
            legacy_prefix = None

        return cls(
            bot=BotSettings.from_reader(r.child("bot"), default_prefix, legacy_prefix),
            commands=CommandSettings.from_reader(r.child("commands")),
            features=FeatureSettings.from_reader(r.child("features")),
            security=SecuritySettings.from_reader(r.child("security")),
            automod=AutomodSettings.from_reader(r.child("automod")),
            welcome_channel=r.optional_id("welcome_channel", "welcomeChannel"),
            log_channel=r.optional_id("log_channel", "logChannel"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def copy(self) -> "ServerConfiguration":
        return copy.deepcopy(self)


# =============================================================================
# Economy
# =============================================================================

@dataclass
class EconomyAccount:
    """
    A user's wallet and bank.

    Invariant: total == balance + bank after normalize(), which runs before
    every write.
    """

    user_id: int
    balance: int = 0
    bank: int = 0
    last_daily: Optional[float] = None
    last_work: Optional[float] = None
    work_streak: int = 0
    inventory: List[str] = field(default_factory=list)
    total: int = 0

    def normalize(self) -> "EconomyAccount":
        self.balance = int(self.balance)
        self.bank = int(self.bank)
        self.work_streak = max(0, int(self.work_streak))
        self.total = self.balance + self.bank
        return self

    def copy(self) -> "EconomyAccount":
        return copy.deepcopy(self)

    def to_row(self) -> Tuple:
        return (
            self.user_id,
            self.balance,
            self.bank,
            self.last_daily,
            self.last_work,
            self.work_streak,
            json.dumps(self.inventory),
            self.total,
        )

    @classmethod
    def from_row(cls, row) -> "EconomyAccount":
        inventory = _safe_json_loads(row["inventory"], [])
        if not isinstance(inventory, list):
            inventory = []
        return cls(
            user_id=row["user_id"],
            balance=row["balance"] or 0,
            bank=row["bank"] or 0,
            last_daily=row["last_daily"],
            last_work=row["last_work"],
            work_streak=row["work_streak"] or 0,
            inventory=[str(item) for item in inventory],
        ).normalize()


# =============================================================================
# Automod Violations
# =============================================================================

@dataclass(frozen=True)
class ViolationRecord:
    """One automod hit. Append only."""

    type: str
    user_id: int
    channel_id: int
    message_id: int
    timestamp: float
    details: Optional[str] = None

    def to_row(self) -> Tuple:
        return (self.type, self.user_id, self.channel_id, self.message_id, self.timestamp, self.details)

    @classmethod
    def from_row(cls, row) -> "ViolationRecord":
        return cls(
            type=row["type"],
            user_id=row["user_id"],
            channel_id=row["channel_id"],
            message_id=row["message_id"],
            timestamp=row["timestamp"],
            details=row["details"],
        )


__all__ = [
    "AUTOMOD_ACTIONS",
    "AUTOMOD_FILTERS",
    "AUTOMOD_THRESHOLDS",
    "AutomodActions",
    "AutomodFilters",
    "AutomodSettings",
    "AutomodThresholds",
    "AutomodWhitelist",
    "BotSettings",
    "CommandSettings",
    "EconomyAccount",
    "ExperimentSettings",
    "FeatureSettings",
    "SecuritySettings",
    "ServerConfiguration",
    "ViolationRecord",
]
