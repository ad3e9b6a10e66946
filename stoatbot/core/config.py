"""
StoatBot - Configuration Module
===============================

Process configuration loaded from environment variables.

DESIGN:
    A single Config dataclass is built once by load_config() in main.py and
    passed explicitly to every service. Per-server settings are not here;
    they live in the store (see core.database.configs).

    Key patterns:
    - Required variables are collected first and reported together
    - Optional numeric settings are clamped to a sane range with a warning
    - Invalid values for required settings raise ConfigValidationError
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Set

from stoatbot.core import constants


# =============================================================================
# Configuration Dataclass
# =============================================================================

@dataclass
class Config:
    """
    Bot configuration loaded from environment variables.

    Attributes:
        discord_token: Bot authentication token.
        owner_ids: Global bot owners, allowed to run owner-only commands anywhere.
        default_prefix: Command prefix for servers that never set one.
        database_path: Path of the SQLite database file.
        error_webhook_url: Optional webhook that receives error reports.
    """

    # -------------------------------------------------------------------------
    # Required
    # -------------------------------------------------------------------------

    discord_token: str

    # -------------------------------------------------------------------------
    # Optional: Identity
    # -------------------------------------------------------------------------

    owner_ids: Set[int] = field(default_factory=set)
    default_prefix: str = "!"
    database_path: str = "data/stoatbot.db"
    error_webhook_url: Optional[str] = None

    # -------------------------------------------------------------------------
    # Optional: Persistence Tuning
    # -------------------------------------------------------------------------

    cache_ttl: float = constants.CACHE_TTL
    cache_sweep_interval: float = constants.CACHE_SWEEP_INTERVAL
    batch_debounce_delay: float = constants.BATCH_DEBOUNCE_DELAY
    batch_max_wait: float = constants.BATCH_MAX_WAIT
    batch_max_pending: int = constants.BATCH_MAX_PENDING

    # -------------------------------------------------------------------------
    # Optional: Resilience Tuning
    # -------------------------------------------------------------------------

    retry_max_attempts: int = constants.RETRY_MAX_ATTEMPTS
    retry_base_delay: float = constants.RETRY_BASE_DELAY
    retry_max_delay: float = constants.RETRY_MAX_DELAY
    breaker_failure_threshold: int = constants.BREAKER_FAILURE_THRESHOLD
    breaker_cooldown: float = constants.BREAKER_COOLDOWN
    breaker_success_threshold: int = constants.BREAKER_SUCCESS_THRESHOLD

    # -------------------------------------------------------------------------
    # Optional: Automod
    # -------------------------------------------------------------------------

    spam_window: float = constants.SPAM_WINDOW

    def is_owner(self, user_id: int) -> bool:
        """Check if a user is a global bot owner."""
        return user_id in self.owner_ids


# =============================================================================
# Embed Colors
# =============================================================================

class EmbedColors:
    """Color palette for command reply embeds."""

    GREEN = 0x1F5E2E
    GOLD = 0xE6B84A
    RED = 0xDC3545
    BLUE = 0x3498DB

    SUCCESS = GREEN
    ERROR = RED
    WARNING = GOLD
    INFO = BLUE


# =============================================================================
# Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


def _parse_int_set(value: Optional[str], name: str) -> Set[int]:
    """
    Parse comma-separated string to set of integers.

    Args:
        value: Comma-separated string of integers (e.g., "123,456,789").
        name: Variable name for error messages.

    Returns:
        Set of parsed integers, empty set if input is None or empty.

    Raises:
        ConfigValidationError: If any entry is not an integer.
    """
    if not value:
        return set()
    result = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            result.add(int(part))
        except ValueError:
            raise ConfigValidationError(f"Invalid integer in {name}: {part}")
    return result


def _parse_int_with_default(
    value: Optional[str],
    default: int,
    name: str,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """
    Parse optional integer with default and range validation.

    Out-of-range values are clamped with a warning. A value that is not an
    integer at all is a configuration error.
    """
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigValidationError(f"Invalid integer for {name}: {value}")
    return _clamp(parsed, name, min_val, max_val)


def _parse_float_with_default(
    value: Optional[str],
    default: float,
    name: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
) -> float:
    """Float variant of _parse_int_with_default."""
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ConfigValidationError(f"Invalid number for {name}: {value}")
    return _clamp(parsed, name, min_val, max_val)


def _clamp(parsed, name: str, min_val, max_val):
    from stoatbot.core.logger import logger

    if min_val is not None and parsed < min_val:
        logger.warning(f"Config {name}={parsed} below min {min_val}, using {min_val}")
        return min_val
    if max_val is not None and parsed > max_val:
        logger.warning(f"Config {name}={parsed} above max {max_val}, using {max_val}")
        return max_val
    return parsed


def _validate_url(value: Optional[str], name: str) -> Optional[str]:
    """
    Validate URL format for webhooks.

    Returns:
        URL if valid, None if invalid or empty.
    """
    if not value:
        return None
    if not value.startswith(("https://", "http://")):
        from stoatbot.core.logger import logger
        logger.warning(f"Config {name} invalid URL format, ignoring")
        return None
    return value


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Returns:
        Validated Config object with all settings.

    Raises:
        ConfigValidationError: If a required variable is missing or invalid.
    """
    missing = []

    discord_token = os.getenv("DISCORD_TOKEN")
    if not discord_token:
        missing.append("DISCORD_TOKEN")

    if missing:
        raise ConfigValidationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    prefix = os.getenv("DEFAULT_PREFIX", "!").strip()
    if not prefix or " " in prefix:
        raise ConfigValidationError(f"Invalid DEFAULT_PREFIX: {prefix!r}")

    return Config(
        discord_token=discord_token,
        owner_ids=_parse_int_set(os.getenv("OWNER_IDS"), "OWNER_IDS"),
        default_prefix=prefix,
        database_path=os.getenv("DATABASE_PATH", "data/stoatbot.db"),
        error_webhook_url=_validate_url(os.getenv("ERROR_WEBHOOK_URL"), "ERROR_WEBHOOK_URL"),
        cache_ttl=_parse_float_with_default(
            os.getenv("CACHE_TTL"), constants.CACHE_TTL, "CACHE_TTL", min_val=1.0, max_val=86400.0
        ),
        cache_sweep_interval=_parse_float_with_default(
            os.getenv("CACHE_SWEEP_INTERVAL"), constants.CACHE_SWEEP_INTERVAL,
            "CACHE_SWEEP_INTERVAL", min_val=1.0, max_val=3600.0,
        ),
        batch_debounce_delay=_parse_float_with_default(
            os.getenv("BATCH_DEBOUNCE_DELAY"), constants.BATCH_DEBOUNCE_DELAY,
            "BATCH_DEBOUNCE_DELAY", min_val=0.0, max_val=60.0,
        ),
        batch_max_wait=_parse_float_with_default(
            os.getenv("BATCH_MAX_WAIT"), constants.BATCH_MAX_WAIT, "BATCH_MAX_WAIT", min_val=0.1, max_val=300.0
        ),
        batch_max_pending=_parse_int_with_default(
            os.getenv("BATCH_MAX_PENDING"), constants.BATCH_MAX_PENDING,
            "BATCH_MAX_PENDING", min_val=1, max_val=100000,
        ),
        retry_max_attempts=_parse_int_with_default(
            os.getenv("RETRY_MAX_ATTEMPTS"), constants.RETRY_MAX_ATTEMPTS,
            "RETRY_MAX_ATTEMPTS", min_val=1, max_val=10,
        ),
        retry_base_delay=_parse_float_with_default(
            os.getenv("RETRY_BASE_DELAY"), constants.RETRY_BASE_DELAY, "RETRY_BASE_DELAY", min_val=0.0, max_val=60.0
        ),
        retry_max_delay=_parse_float_with_default(
            os.getenv("RETRY_MAX_DELAY"), constants.RETRY_MAX_DELAY, "RETRY_MAX_DELAY", min_val=0.0, max_val=300.0
        ),
        breaker_failure_threshold=_parse_int_with_default(
            os.getenv("BREAKER_FAILURE_THRESHOLD"), constants.BREAKER_FAILURE_THRESHOLD,
            "BREAKER_FAILURE_THRESHOLD", min_val=1, max_val=100,
        ),
        breaker_cooldown=_parse_float_with_default(
            os.getenv("BREAKER_COOLDOWN"), constants.BREAKER_COOLDOWN, "BREAKER_COOLDOWN", min_val=1.0, max_val=3600.0
        ),
        breaker_success_threshold=_parse_int_with_default(
            os.getenv("BREAKER_SUCCESS_THRESHOLD"), constants.BREAKER_SUCCESS_THRESHOLD,
            "BREAKER_SUCCESS_THRESHOLD", min_val=1, max_val=100,
        ),
        spam_window=_parse_float_with_default(
            os.getenv("SPAM_WINDOW"), constants.SPAM_WINDOW, "SPAM_WINDOW", min_val=1.0, max_val=300.0
        ),
    )


def log_config(config: Config) -> None:
    """Log a startup summary of the loaded configuration."""
    from stoatbot.core.logger import logger

    logger.tree("Configuration Loaded", [
        ("Default Prefix", config.default_prefix),
        ("Database", config.database_path),
        ("Owners", str(len(config.owner_ids))),
        ("Cache TTL", f"{config.cache_ttl:.0f}s"),
        ("Batch Window", f"{config.batch_debounce_delay}s / {config.batch_max_wait}s"),
        ("Breaker", f"{config.breaker_failure_threshold} failures, {config.breaker_cooldown:.0f}s cooldown"),
        ("Error Webhook", "Enabled" if config.error_webhook_url else "Disabled"),
    ], emoji="⚙️")


__all__ = [
    "Config",
    "ConfigValidationError",
    "EmbedColors",
    "load_config",
    "log_config",
]
