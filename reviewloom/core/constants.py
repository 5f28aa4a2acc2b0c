"""Shared constants for ReviewLoom.

This module contains constants that are used across multiple modules
to avoid duplication and ensure consistency.
"""

# =============================================================================
# Analysis Status
# =============================================================================

STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"

ANALYSIS_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)

# =============================================================================
# Suggestion Severity
# =============================================================================

SEVERITY_HIGH = "HIGH"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_LOW = "LOW"

SEVERITIES = (SEVERITY_HIGH, SEVERITY_MEDIUM, SEVERITY_LOW)

# Sort rank: HIGH first
SEVERITY_RANK = {SEVERITY_HIGH: 0, SEVERITY_MEDIUM: 1, SEVERITY_LOW: 2}

OVERALL_RATINGS = ("excellent", "good", "needs_improvement", "poor")

# Reserved category for synthetic error suggestions
ANALYSIS_ERROR_CATEGORY = "Analysis Error"
ANALYSIS_ERROR_FILE_PATH = "analysis-error"

# =============================================================================
# Suggestion Field Bounds
# =============================================================================

MAX_MESSAGE_LENGTH = 200
MAX_SUGGESTION_LENGTH = 500
MAX_SNIPPET_LENGTH = 300
MAX_MAIN_CONCERNS = 5
MAX_LINE_NUMBER = 2**31 - 1  # INTEGER column

# =============================================================================
# Prompt Limits
# =============================================================================

MAX_PROMPT_FILES = 10
MAX_PATCH_CHARS = 2000
TRUNCATION_MARKER = "\n... (truncated)"

# =============================================================================
# Cache TTLs (seconds)
# =============================================================================

DIFF_CACHE_TTL = 30 * 60
REPORT_CACHE_TTL = 24 * 60 * 60
ANALYSIS_CACHE_TTL = 60 * 60
LISTING_CACHE_TTL = 5 * 60
STATS_CACHE_TTL = 10 * 60
STATUS_CACHE_TTL = 60
CREDENTIAL_TTL = 7 * 24 * 60 * 60

# =============================================================================
# Request Validation
# =============================================================================

# CUID-shaped identifiers: "c" + 24 lowercase base36 chars
ID_PATTERN = r"^c[a-z0-9]{24}$"

MIN_PR_NUMBER = 1
MAX_PR_NUMBER = 99999

MAX_PAGE = 1000
MAX_PAGE_LIMIT = 50
DEFAULT_PAGE_LIMIT = 10
DEFAULT_SUGGESTION_PAGE_LIMIT = 20

SORT_FIELDS = ("createdAt", "completedAt", "status", "prNumber")
SORT_ORDERS = ("asc", "desc")

RECENT_ANALYSES_COUNT = 5
