"""
Antigravity Account Storage Constants

This module contains the schema version, file locations and defaults used
by the account storage layer.
"""

# =============================================================================
# Schema Versions
# =============================================================================

# Current on-disk schema version; every loaded document is upgraded to this
STORAGE_VERSION = 3

# =============================================================================
# Storage Location
# =============================================================================

CONFIG_DIR_NAME = "opencode"
STORAGE_FILE_NAME = "antigravity-accounts.json"

# Environment overrides
STORAGE_DIR_ENV = "ANTIGRAVITY_STORAGE_DIR"
STORAGE_PATH_ENV = "ANTIGRAVITY_STORAGE_PATH"

# Seconds a writer waits for the sibling lock file before writing unlocked
LOCK_TIMEOUT_SECONDS = 10.0

# Owner read/write only
STORAGE_FILE_MODE = 0o600

# =============================================================================
# Switch Reasons
# =============================================================================

SWITCH_REASON_INITIAL = "initial"
