"""Centralized constants for the increm engine.

All magic numbers, storage keys and host property codes live here so every
layer imports from a single source of truth.
"""

# ---------- Time ----------
MS_PER_DAY = 1000 * 60 * 60 * 24

# ---------- Host properties ----------
INCREMENTAL_POWERUP = "incremental"
PRIORITY_SLOT = "priority"
NEXT_REP_DATE_SLOT = "nextRepDate"
HISTORY_SLOT = "repHist"
# Id the host gives the nextRepDate slot; property rows reference it as their first element
NEXT_REP_DATE_SLOT_NODE = f"{INCREMENTAL_POWERUP}.{NEXT_REP_DATE_SLOT}"

CARD_PRIORITY_POWERUP = "cardPriority"
CARD_PRIORITY_SLOT = "priority"
CARD_SOURCE_SLOT = "prioritySource"
CARD_LAST_UPDATED_SLOT = "lastUpdated"

DISMISSED_POWERUP = "dismissed"
DISMISSED_HISTORY_SLOT = "dismissedHistory"
DISMISSED_DATE_SLOT = "dismissedDate"

PRIORITY_REVIEW_TAG = "Priority Review Queue"
FULL_KB_MARKER = "Full Knowledge Base"

# ---------- Session storage keys ----------
ALL_INCREMENTAL_KEY = "all-incremental-rem"
ALL_CARD_PRIORITY_KEY = "all-card-priority-info"
CARD_PRIORITY_REFRESH_KEY = "card-priority-cache-refresh"
CURRENT_ITEM_KEY = "current-inc-rem"
CURRENT_SCOPE_IDS_KEY = "current-scope-rem-ids"
PRIORITY_CALC_SCOPE_IDS_KEY = "priority-calc-scope-rem-ids"
CURRENT_SUB_QUEUE_KEY = "current-sub-queue-id"
ORIGINAL_SCOPE_KEY = "originalScopeId"
IS_PRIORITY_REVIEW_DOC_KEY = "isPriorityReviewDoc"
QUEUE_SESSION_CACHE_KEY = "queue-session-cache"
SEEN_ITEMS_KEY = "seen-rem-in-session"
SEEN_CARDS_KEY = "seen-card-in-session"
CURRENT_QUEUE_MODE_KEY = "current-queue-mode"
REVIEW_START_TIME_KEY = "increm-review-start-time"
SKIP_CARD_SHIELD_KEY = "skipCardHistorySave"
SKIP_ITEM_SHIELD_KEY = "skipIncRemHistorySave"

# ---------- Durable storage keys ----------
PAUSE_TIMER_KEY = "no-inc-rem-timer-end"
RANDOMNESS_KEY = "randomness"
CARDS_PER_ITEM_KEY = "cardsPerRem"
ITEM_SHIELD_HISTORY_KEY = "priorityShieldHistory"
CARD_SHIELD_HISTORY_KEY = "cardPriorityShieldHistory"
DOC_ITEM_SHIELD_HISTORY_KEY = "documentPriorityShieldHistory"
DOC_CARD_SHIELD_HISTORY_KEY = "documentCardPriorityShieldHistory"

# ---------- Priority ----------
MIN_PRIORITY = 0
MAX_PRIORITY = 100
DEFAULT_ITEM_PRIORITY = 10
DEFAULT_CARD_PRIORITY = 50
MAX_ANCESTOR_DEPTH = 1000

# ---------- Scheduling ----------
DEFAULT_MULTIPLIER = 2.0
DEFAULT_INITIAL_INTERVAL = 1  # days

# ---------- Queue ----------
DEFAULT_CARDS_PER_ITEM = 4
DEFAULT_RANDOMNESS = 0.0
ITEMS_ONLY = "no-cards"
FLASHCARDS_ONLY = "no-rem"

# ---------- Batching ----------
PROPAGATION_BATCH_SIZE = 50
CARD_CACHE_BATCH_SIZE = 100
ITEM_LOAD_BATCH_SIZE = 500
BATCH_DELAY_MS = 100
DEBOUNCE_MS = 200

# ---------- Host bridge / HTTP ----------
REQUEST_TIMEOUT = 30.0
RESPONSIVENESS_TIMEOUT = 2.0
HOST_API_VERSION = 1
