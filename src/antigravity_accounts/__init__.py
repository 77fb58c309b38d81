"""
Antigravity Account Storage

Versioned persistence for multi-account Antigravity credentials. Reads an
accounts file of any schema version, upgrades it to the current version and
writes it back.
"""

from .accounts import (
    UnreadableStorageError,
    add_or_update_account,
    deduplicate_accounts_by_email,
    remove_account_by_email,
    set_active_account,
)
from .migrations import (
    migrate_to_current,
    migrate_v1_to_v2,
    migrate_v2_to_v3,
)
from .schema import (
    AccountMetadata,
    AccountStorage,
    RateLimitState,
    UnknownStorageVersionError,
)
from .storage import (
    AccountStore,
    clear_accounts,
    get_storage_path,
    load_accounts,
    repair_active_index,
    save_accounts,
)


__version__ = "0.1.0"

__all__ = [
    # Storage
    "AccountStore",
    "load_accounts",
    "save_accounts",
    "clear_accounts",
    "get_storage_path",
    "repair_active_index",

    # Schema
    "AccountMetadata",
    "AccountStorage",
    "RateLimitState",
    "UnknownStorageVersionError",

    # Migrations
    "migrate_v1_to_v2",
    "migrate_v2_to_v3",
    "migrate_to_current",

    # Account operations
    "add_or_update_account",
    "remove_account_by_email",
    "set_active_account",
    "deduplicate_accounts_by_email",
    "UnreadableStorageError",
]
