"""Application-wide constants for the TickTick MCP Server.

This module contains the fixed protocol values shared across the codebase
for better maintainability and discoverability.
"""

# ========================================
# Credential Store Collections
# ========================================

TOKENS_COLLECTION = "ticktick-tokens"
LOCKS_COLLECTION = "refresh-locks"
CLIENTS_COLLECTION = "oauth-clients"
AUTH_CODES_COLLECTION = "oauth-codes"
ACCESS_TOKENS_COLLECTION = "oauth-access-tokens"
REFRESH_TOKENS_COLLECTION = "oauth-refresh-tokens"

REFRESH_LOCK_PREFIX = "ticktick_refresh_lock:"

# ========================================
# OAuth Bridge
# ========================================

STATE_BYTES = 24  # hex-encoded, 48 chars
CODE_VERIFIER_BYTES = 48  # hex-encoded, 96 chars
CODE_CHALLENGE_METHOD = "S256"
CALLBACK_PATH = "/callback"
MCP_PATH = "/mcp"

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
SUPPORTED_SCOPES = ("tasks:read", "tasks:write")

# Paths subject to per-IP rate limiting
AUTH_RATE_LIMITED_PATHS = ("/authorize", "/callback", "/register", "/token")

# ========================================
# Token Handling
# ========================================

# Persisted expiry is pulled forward so a token is refreshed before TickTick rejects it
TOKEN_EXPIRY_SKEW_SECONDS = 30

# Jitter applied on top of exponential backoff
BACKOFF_JITTER_RATIO = 0.3

# ========================================
# Tasks
# ========================================

TASK_STATUS_ACTIVE = 0
TASK_STATUS_COMPLETED = 2

VALID_PRIORITIES = (0, 1, 3, 5)
DUE_FILTERS = ("today", "tomorrow", "overdue", "this_week")

DEFAULT_TASK_LIMIT = 50
MAX_TASK_LIMIT = 200

# ========================================
# Idempotency
# ========================================

IDEMPOTENCY_KEY_PATTERN = r"^[A-Za-z0-9:_-]+$"
IDEMPOTENCY_KEY_MAX_LENGTH = 128

# ========================================
# Client Bookkeeping
# ========================================

# Deleted tasks remembered per client; oldest are forgotten first
MAX_TOMBSTONES = 500

# Per-user clients kept in memory; least recently used are evicted first
MAX_CACHED_CLIENTS = 1000
