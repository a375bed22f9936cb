"""Global constants for repairflow.

Centralizes timing and limit values used across phases so they are
discoverable and consistent.
"""

# =============================================================================
# Remote UI settle delays (seconds)
# =============================================================================

SETTLE_AFTER_SELECT_SECONDS = 2.0
"""Pause after selecting a catalog option before reading the next level."""

SETTLE_AFTER_CONFIRM_SECONDS = 3.0
"""Pause after confirming a leaf action before reading back its values."""

SETTLE_AFTER_CONTEXT_SECONDS = 3.0
"""Pause after the estimate page is opened, before sourcing begins."""

# =============================================================================
# Category tree
# =============================================================================

MAX_TREE_LEVELS = 7
"""Hard upper bound on category-tree depth."""

LEVEL_LABELS: dict[int, str] = {
    1: "Primary System",
    2: "Component Group",
    3: "Operation Type",
    4: "Qualifier",
    5: "Sub-qualifier",
    6: "Variation",
    7: "Detail",
}

LEAF_LEVEL_LABEL = "operational procedure"
QUALIFIER_LABEL = "Qualifier"

# =============================================================================
# Session
# =============================================================================

SESSION_REFRESH_MARGIN_SECONDS = 5 * 60
"""A session counts as expired this long before its real expiry."""

SESSION_DEFAULT_LIFETIME_SECONDS = 2 * 60 * 60
"""Lifetime assumed for tokens that carry no ``exp`` claim."""

# =============================================================================
# Text limits
# =============================================================================

TRUNCATE_ERROR_MESSAGE_CHARS = 200
"""Maximum characters kept from a remote error body."""

OPTION_PREVIEW_COUNT = 10
"""Options listed in log lines before truncating with an ellipsis."""
