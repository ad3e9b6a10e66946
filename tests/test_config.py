"""
StoatBot - Configuration Tests
==============================

Tests for environment parsing in load_config().
"""

import pytest

from stoatbot.core import constants
from stoatbot.core.config import Config, ConfigValidationError, load_config


ENV_VARS = (
    "DISCORD_TOKEN", "OWNER_IDS", "DEFAULT_PREFIX", "DATABASE_PATH",
    "ERROR_WEBHOOK_URL", "CACHE_TTL", "CACHE_SWEEP_INTERVAL",
    "BATCH_DEBOUNCE_DELAY", "BATCH_MAX_WAIT", "BATCH_MAX_PENDING",
    "RETRY_MAX_ATTEMPTS", "RETRY_BASE_DELAY", "RETRY_MAX_DELAY",
    "BREAKER_FAILURE_THRESHOLD", "BREAKER_COOLDOWN",
    "BREAKER_SUCCESS_THRESHOLD", "SPAM_WINDOW",
)


@pytest.fixture
def env(monkeypatch):
    """Clean environment with only a token set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DISCORD_TOKEN", "token")
    return monkeypatch


class TestLoadConfig:
    def test_defaults(self, env):
        config = load_config()

        assert config.discord_token == "token"
        assert config.owner_ids == set()
        assert config.default_prefix == "!"
        assert config.cache_ttl == constants.CACHE_TTL
        assert config.error_webhook_url is None

    def test_missing_token(self, env):
        env.delenv("DISCORD_TOKEN")

        with pytest.raises(ConfigValidationError, match="DISCORD_TOKEN"):
            load_config()

    def test_owner_ids(self, env):
        env.setenv("OWNER_IDS", "1, 2,,3")

        config = load_config()

        assert config.owner_ids == {1, 2, 3}
        assert config.is_owner(2)
        assert not config.is_owner(4)

    def test_bad_owner_id(self, env):
        env.setenv("OWNER_IDS", "1,abc")

        with pytest.raises(ConfigValidationError, match="OWNER_IDS"):
            load_config()

    @pytest.mark.parametrize("prefix", ["a b", "   "])
    def test_bad_prefix(self, env, prefix):
        env.setenv("DEFAULT_PREFIX", prefix)

        with pytest.raises(ConfigValidationError, match="DEFAULT_PREFIX"):
            load_config()

    def test_out_of_range_is_clamped(self, env):
        env.setenv("CACHE_TTL", "0")
        env.setenv("RETRY_MAX_ATTEMPTS", "50")

        config = load_config()

        assert config.cache_ttl == 1.0
        assert config.retry_max_attempts == 10

    def test_non_numeric_is_rejected(self, env):
        env.setenv("BREAKER_COOLDOWN", "soon")

        with pytest.raises(ConfigValidationError, match="BREAKER_COOLDOWN"):
            load_config()

    def test_webhook_url(self, env):
        env.setenv("ERROR_WEBHOOK_URL", "not-a-url")
        assert load_config().error_webhook_url is None

        env.setenv("ERROR_WEBHOOK_URL", "https://example.com/hook")
        assert load_config().error_webhook_url == "https://example.com/hook"

    def test_config_is_plain_dataclass(self):
        config = Config(discord_token="x", owner_ids={5})
        assert config.is_owner(5)
        assert config.database_path == "data/stoatbot.db"
