"""
StoatBot - Centralized Constants
================================

Magic numbers live here. Import from this module instead of hardcoding.
"""

# =============================================================================
# Time Constants (in seconds)
# =============================================================================

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# =============================================================================
# Persistence
# =============================================================================

CACHE_TTL = 300                       # Config/economy cache entry lifetime
CACHE_SWEEP_INTERVAL = 60             # Eviction sweep period
BATCH_DEBOUNCE_DELAY = 0.5            # Quiet period before a batch flush
BATCH_MAX_WAIT = 5.0                  # Oldest pending op never waits longer
BATCH_MAX_PENDING = 500               # Pending ops before an inline flush
DB_CONNECT_ATTEMPTS = 3

# =============================================================================
# Dispatcher
# =============================================================================

COMMAND_CACHE_TTL = 300               # Resolve() cache lifetime
COMMAND_CACHE_MAX_SIZE = 500
RATE_LIMIT_CLEANUP_INTERVAL = 300
DEFAULT_RATE_LIMIT_USAGES = 3
DEFAULT_RATE_LIMIT_DURATION = 10.0
HANDLED_MESSAGE_TTL = 60              # Duplicate gateway deliveries ignored for this long
HANDLED_MESSAGE_MAX = 1000
COMMAND_LOAD_CONCURRENCY = 4          # Categories loading at once
COMMAND_LOAD_TIMEOUT = 30.0           # Per category attempt
COMMAND_LOAD_RETRIES = 2              # Extra attempts after a timeout
COMMAND_LOAD_RETRY_DELAY = 1.0

# =============================================================================
# Automod
# =============================================================================

SPAM_WINDOW = 10.0                    # Sliding window for message rate
RAPID_REPEAT_COUNT = 3                # Messages in window counted as repeats
ESCALATION_SCORE = 3.0                # Score that triggers a timeout
SCORE_DECAY = 0.5
CAPS_MIN_LENGTH = 8                   # Caps ratio only above this length
DEFAULT_TIMEOUT_MINUTES = 5
HISTORY_PRUNE_INTERVAL = 30 * SECONDS_PER_MINUTE
HISTORY_IDLE_EXPIRY = SECONDS_PER_HOUR

# =============================================================================
# Resilience
# =============================================================================

RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 10.0
RETRY_JITTER = 0.3                    # Up to 30% extra delay
BREAKER_FAILURE_THRESHOLD = 5
BREAKER_COOLDOWN = 60.0
BREAKER_SUCCESS_THRESHOLD = 3
API_TIMEOUT = 10.0

# =============================================================================
# Economy
# =============================================================================

DAILY_AMOUNT = 1000
DAILY_COOLDOWN = SECONDS_PER_DAY
WORK_COOLDOWN = SECONDS_PER_HOUR
WORK_MIN_REWARD = 100
WORK_MAX_REWARD = 500
WORK_STREAK_BONUS = 0.1               # Bonus per streak step, fraction of reward
WORK_STREAK_EXPIRY = 2 * SECONDS_PER_DAY
