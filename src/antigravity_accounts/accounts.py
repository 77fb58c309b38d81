"""
Antigravity Account Operations

Read-modify-write helpers over an AccountStore: adding, updating, removing
and selecting accounts.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .constants import SWITCH_REASON_INITIAL
from .migrations import now_ms
from .schema import AccountMetadataV3, AccountStorageV3, ActiveIndexByFamily
from .storage import AccountStore, repair_active_index


logger = logging.getLogger(__name__)


class UnreadableStorageError(ValueError):
    """Raised instead of overwriting an accounts file that exists but cannot be loaded."""

    def __init__(self, path: Path):
        super().__init__(f"Refusing to overwrite unreadable account storage at {path}")
        self.path = path


def _account_key(account: AccountMetadataV3) -> str:
    return account.email or account.refresh_token


def _follow_index(
    old: List[AccountMetadataV3],
    new: List[AccountMetadataV3],
    index: Optional[int],
) -> Optional[int]:
    """
    Position in ``new`` of the account that sat at ``index`` in ``old``.

    If that account is gone, the index is clamped to the new list.
    """
    if index is None or not 0 <= index < len(old):
        return index

    key = _account_key(old[index])
    for i, account in enumerate(new):
        if _account_key(account) == key:
            return i
    return min(index, max(len(new) - 1, 0))


def _replace_accounts(storage: AccountStorageV3, accounts: List[AccountMetadataV3]) -> AccountStorageV3:
    """Swap in a new account list, keeping the active indexes on the same accounts."""
    old = storage.accounts
    update = {
        "accounts": accounts,
        "active_index": _follow_index(old, accounts, storage.active_index),
    }

    family = storage.active_index_by_family
    if family is not None:
        update["active_index_by_family"] = family.model_copy(update={
            "claude": _follow_index(old, accounts, family.claude),
            "gemini": _follow_index(old, accounts, family.gemini),
        })

    return repair_active_index(storage.model_copy(update=update))


def deduplicate_accounts_by_email(accounts: List[AccountMetadataV3]) -> List[AccountMetadataV3]:
    """
    Deduplicate accounts by email, keeping the newest one.

    Accounts without email are preserved as-is, after the others.

    Args:
        accounts: List of accounts to deduplicate

    Returns:
        Deduplicated list of accounts
    """
    by_email: Dict[str, AccountMetadataV3] = {}
    no_email: List[AccountMetadataV3] = []

    for account in accounts:
        if not account.email:
            no_email.append(account)
            continue

        existing = by_email.get(account.email)
        if existing is None:
            by_email[account.email] = account
        elif (account.last_used, account.added_at) > (existing.last_used, existing.added_at):
            by_email[account.email] = account

    return list(by_email.values()) + no_email


def add_or_update_account(
    store: AccountStore,
    email: Optional[str],
    refresh_token: str,
    project_id: Optional[str] = None,
    managed_project_id: Optional[str] = None,
    now: Optional[int] = None,
) -> AccountStorageV3:
    """
    Add a new account or update an existing one.

    If an account with the same email exists, update it.
    Otherwise, add a new account.

    Args:
        store: Storage gateway to read and write
        email: User's email address
        refresh_token: OAuth refresh token
        project_id: Antigravity project ID
        managed_project_id: Managed project ID
        now: Timestamp in epoch milliseconds (defaults to the wall clock)

    Returns:
        Updated AccountStorageV3

    Raises:
        UnreadableStorageError: If the file exists but cannot be loaded
        OSError: If the updated document cannot be saved
    """
    now = now_ms() if now is None else now
    storage = store.load()
    if storage is None:
        if store.path.exists():
            raise UnreadableStorageError(store.path)
        storage = AccountStorageV3()
    accounts = list(storage.accounts)

    existing_index = None
    if email:
        for i, account in enumerate(accounts):
            if account.email == email:
                existing_index = i
                break

    if existing_index is not None:
        existing = accounts[existing_index]
        accounts[existing_index] = existing.model_copy(update={
            "refresh_token": refresh_token,
            "project_id": project_id or existing.project_id,
            "managed_project_id": managed_project_id or existing.managed_project_id,
            "last_used": now,
        })
        logger.info("Updated account %s", email)
    else:
        accounts.append(AccountMetadataV3(
            refresh_token=refresh_token,
            email=email,
            project_id=project_id,
            managed_project_id=managed_project_id,
            added_at=now,
            last_used=now,
            last_switch_reason=SWITCH_REASON_INITIAL if not accounts else None,
        ))
        logger.info("Added account %s", email or "(unknown)")

    storage = _replace_accounts(storage, deduplicate_accounts_by_email(accounts))
    store.save(storage)
    return storage


def remove_account_by_email(store: AccountStore, email: str) -> bool:
    """
    Remove an account by email address.

    Args:
        store: Storage gateway to read and write
        email: Email of account to remove

    Returns:
        True if account was removed, False if not found
    """
    storage = store.load()
    if not storage:
        return False

    accounts = [acc for acc in storage.accounts if acc.email != email]
    if len(accounts) == len(storage.accounts):
        return False

    store.save(_replace_accounts(storage, accounts))
    logger.info("Removed account %s", email)
    return True


def set_active_account(store: AccountStore, index: int) -> bool:
    """
    Set the active account by index.

    Args:
        store: Storage gateway to read and write
        index: Index of account to make active

    Returns:
        True if successful, False if index is invalid
    """
    storage = store.load()
    if not storage or index < 0 or index >= len(storage.accounts):
        return False

    store.save(storage.model_copy(update={
        "active_index": index,
        "active_index_by_family": ActiveIndexByFamily(claude=index, gemini=index),
    }))
    return True
