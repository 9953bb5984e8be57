"""
Central constants for the scan alert gateway.
All magic numbers and configurable thresholds are defined here.
"""

# =============================================================================
# HTTP & NETWORKING
# =============================================================================
DEFAULT_PORT = 3000             # HTTP listen port
TELEGRAM_TIMEOUT = 10           # Telegram API timeout (seconds)
VENDOR_TIMEOUT = 10             # Market data vendor timeout (seconds)
MAX_RETRY_ATTEMPTS = 3          # Maximum retry attempts
DEFAULT_RETRY_DELAY = 1.0       # Base delay for retries (seconds)
MAX_RETRY_DELAY = 30.0          # Maximum retry delay (seconds)
CONNECTION_POOL_SIZE = 10       # HTTP connection pool size
MONGO_TIMEOUT_MS = 5000         # Server selection timeout for the document store


# =============================================================================
# RATE LIMITING
# =============================================================================
VENDOR_RATE_LIMIT = 100         # Vendor calls per window
RATE_LIMIT_WINDOW = 60.0        # Sliding window (seconds)
RATE_LIMIT_SOFT_RATIO = 0.8     # Start spacing calls at 80% of budget
RATE_LIMIT_MIN_DELAY = 0.05     # Minimum spacing once throttled (seconds)
TELEGRAM_RATE_LIMIT = 20        # Telegram messages per minute


# =============================================================================
# QUOTE CACHE
# =============================================================================
QUOTE_CACHE_TTL = 15 * 60       # Intraday cache validity (seconds)
DEFAULT_SYMBOL_SUFFIX = ".NS"   # Exchange suffix for bare symbols
CACHE_WORKERS = 8               # Threads for vendor fetches
HISTORY_INTERVAL = "1d"         # Bar interval for indicators
HISTORY_PERIOD = "1y"           # Bar range for indicators


# =============================================================================
# INDICATORS
# =============================================================================
SMA_SHORT = 20
SMA_MEDIUM = 50
SMA_LONG = 200
RSI_PERIOD = 14
VOLUME_AVG_PERIOD = 10


# =============================================================================
# STOP LOSS & SCAN FILTERS
# =============================================================================
SMA_STOP_BAND = 0.98            # SMA within 2% under day-low replaces it
OPEN_LOW_TOLERANCE = 0.01       # |open - low| allowed for open=low scans
OPEN_EQUALS_LOW_MARKER = "open=low"


# =============================================================================
# WEBHOOK PROCESSING
# =============================================================================
ENRICH_WORKERS = 5              # Concurrent enrichments per request
REQUEST_BUDGET_SECONDS = 30.0   # Global per-request budget
SECRET_HEADER = "x-webhook-secret"
SIMULATED_TEST_SYMBOL = "SIMULATED.TEST"
REAL_TEST_SYMBOL = "REAL.TEST"
TEST_SYMBOLS = frozenset({SIMULATED_TEST_SYMBOL, REAL_TEST_SYMBOL})
DEFAULT_TEST_SYMBOLS = ["RELIANCE", "TATAMOTORS", "HDFCBANK", "TCS", "INFY"]
DEFAULT_TEST_SCAN = "Test Multiple Stocks"


# =============================================================================
# TRACKER
# =============================================================================
REFRESH_BATCH_SIZE = 5          # Concurrent quote refreshes
REFRESH_BATCH_DELAY = 0.5       # Pause between refresh batches (seconds)
DIGEST_TOP_N = 3                # Top / worst performers in the digest
ARCHIVE_RETENTION_DAYS = 30     # Days to keep dated tracker archives


# =============================================================================
# STORE
# =============================================================================
JOURNAL_MAX_ALERTS = 1000       # Local journal cap for alerts
JOURNAL_MAX_SUMMARIES = 100     # Local journal cap for summaries


# =============================================================================
# ANALYTICS
# =============================================================================
ANALYTICS_SAVE_EVERY = 5        # Checkpoint after this many tracked alerts
TOP_SCANS_MIN_ALERTS = 3        # Minimum alerts for a scan to be ranked
TOP_STOCKS_MIN_ALERTS = 2       # Minimum alerts for a stock to be ranked
TOP_RANK_SIZE = 5               # Entries per ranking


# =============================================================================
# STATUS MONITOR
# =============================================================================
MAX_RECENT_ALERTS = 20          # Ring buffer cap for alerts
MAX_RECENT_ERRORS = 50          # Ring buffer cap for errors
STATUS_CHECKPOINT_SECONDS = 300  # Periodic checkpoint (5 minutes)
STATUS_TICK_SECONDS = 3600      # Daily-reset check (hourly)


# =============================================================================
# SCHEDULER & LIFECYCLE
# =============================================================================
MARKET_TIMEZONE = "Asia/Kolkata"
SUMMARY_TIME = "15:30"          # Daily digest (market timezone, weekdays)
SHUTDOWN_GRACE_SECONDS = 10     # Forced exit after this long


# =============================================================================
# FILES
# =============================================================================
DATA_DIR = "data"
TRACKER_FILE = "alerted_stocks.json"
ANALYTICS_FILE = "performance_analytics.json"
STATUS_FILE = "system_status.json"
JOURNAL_FILE = "mongodb_backup.json"
