"""
Antigravity Account Storage Migrations

Single-step upgrades between stored schema versions, and the chain that
applies them in order until a document reaches the current version.

Expired rate limits are dropped while migrating. Expiry is judged against
the wall clock at migration time, not the time the document was written.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Union

from .constants import STORAGE_VERSION
from .schema import (
    AccountMetadataV1,
    AccountMetadataV2,
    AccountMetadataV3,
    AccountStorageV1,
    AccountStorageV2,
    AccountStorageV3,
    AnyAccountStorage,
    RateLimitStateV2,
    RateLimitStateV3,
    UnknownStorageVersionError,
)


logger = logging.getLogger(__name__)

# Fields every account version shares; copied verbatim by every step
_CARRIED_FIELDS = (
    "email",
    "refresh_token",
    "project_id",
    "managed_project_id",
    "added_at",
    "last_used",
    "last_switch_reason",
)


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _is_future(reset_at: Optional[float], now: float) -> bool:
    return reset_at is not None and reset_at > now


def _carry(account: Union[AccountMetadataV1, AccountMetadataV2]) -> Dict[str, Any]:
    return {name: getattr(account, name) for name in _CARRIED_FIELDS}


def _account_v1_to_v2(account: AccountMetadataV1, now: float) -> AccountMetadataV2:
    rate_limits = None
    if account.is_rate_limited and _is_future(account.rate_limit_reset_time, now):
        rate_limits = RateLimitStateV2(
            claude=account.rate_limit_reset_time,
            gemini=account.rate_limit_reset_time,
        )
    elif account.is_rate_limited:
        logger.debug("Dropping expired rate limit for %s", account.email or "(unknown)")

    return AccountMetadataV2(**_carry(account), rate_limit_reset_times=rate_limits)


def _account_v2_to_v3(account: AccountMetadataV2, now: float) -> AccountMetadataV3:
    old = account.rate_limit_reset_times or RateLimitStateV2()
    limits: Dict[str, float] = {}

    if _is_future(old.claude, now):
        limits["claude"] = old.claude
    if _is_future(old.gemini, now):
        # Legacy gemini limits were always on the Antigravity quota
        limits["gemini_antigravity"] = old.gemini

    dropped = sum(value is not None for value in (old.claude, old.gemini)) - len(limits)
    if dropped:
        logger.debug("Dropping %d expired rate limit(s) for %s", dropped, account.email or "(unknown)")

    # Absent, never an empty mapping
    rate_limits = RateLimitStateV3(**limits) if limits else None
    return AccountMetadataV3(**_carry(account), rate_limit_reset_times=rate_limits)


def migrate_v1_to_v2(storage: AccountStorageV1, now: Optional[float] = None) -> AccountStorageV2:
    """
    Upgrade a version 1 document to version 2.

    A legacy rate limit that is still in the future becomes a limit on both
    the claude and gemini families. The input is not modified.

    Args:
        storage: Version 1 document
        now: Migration time in epoch milliseconds (defaults to the wall clock)

    Returns:
        A new version 2 document
    """
    now = now_ms() if now is None else now
    return AccountStorageV2(
        accounts=[_account_v1_to_v2(account, now) for account in storage.accounts],
        active_index=storage.active_index,
    )


def migrate_v2_to_v3(storage: AccountStorageV2, now: Optional[float] = None) -> AccountStorageV3:
    """
    Upgrade a version 2 document to version 3.

    Claude limits carry over; gemini limits move to the gemini-antigravity
    quota. Limits at or before ``now`` are dropped, and an account left with
    none has no ``rateLimitResetTimes`` at all. The input is not modified.

    Args:
        storage: Version 2 document
        now: Migration time in epoch milliseconds (defaults to the wall clock)

    Returns:
        A new version 3 document
    """
    now = now_ms() if now is None else now
    return AccountStorageV3(
        accounts=[_account_v2_to_v3(account, now) for account in storage.accounts],
        active_index=storage.active_index,
    )


# Keyed by source version. A new schema version adds one entry here.
MIGRATIONS: Dict[int, Callable[[Any, float], AnyAccountStorage]] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
}


def migrate_to_current(storage: AnyAccountStorage, now: Optional[float] = None) -> AccountStorageV3:
    """
    Apply single-step migrations in order until the current version.

    One migration time is used for every step so a limit cannot survive one
    step and expire in the next.

    Args:
        storage: Document of any known version
        now: Migration time in epoch milliseconds (defaults to the wall clock)

    Returns:
        The current-version document (the input itself if already current)

    Raises:
        UnknownStorageVersionError: If no step is registered for a version
    """
    now = now_ms() if now is None else now
    current = storage
    while current.version != STORAGE_VERSION:
        step = MIGRATIONS.get(current.version)
        if step is None:
            raise UnknownStorageVersionError(current.version)
        current = step(current, now)
    return current
