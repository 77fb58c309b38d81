"""
Antigravity Account Storage

This module handles persistent storage of multiple Antigravity accounts:
reading a document of any schema version, migrating it to the current one,
and writing it back.
"""

import asyncio
import json
import logging
import os
import secrets
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from filelock import FileLock, Timeout
from pydantic import ValidationError

from .constants import (
    CONFIG_DIR_NAME,
    LOCK_TIMEOUT_SECONDS,
    STORAGE_VERSION,
    STORAGE_DIR_ENV,
    STORAGE_FILE_MODE,
    STORAGE_FILE_NAME,
    STORAGE_PATH_ENV,
)
from .migrations import migrate_to_current, now_ms
from .schema import (
    AccountStorageV3,
    UnknownStorageVersionError,
    decode_storage,
    dump_storage,
    is_current,
)


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def get_config_dir() -> Path:
    """
    Get the configuration directory for storing accounts.

    Returns:
        Path to the config directory
    """
    if env_dir := os.environ.get(STORAGE_DIR_ENV):
        return Path(env_dir)

    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA") or os.path.join(os.path.expanduser("~"), "AppData", "Roaming")
        return Path(app_data) / CONFIG_DIR_NAME
    else:
        xdg_config = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
        return Path(xdg_config) / CONFIG_DIR_NAME


def get_storage_path(path: Optional[PathLike] = None) -> Path:
    """
    Get the path to the accounts storage file.

    Args:
        path: Optional custom path to the storage file

    Returns:
        Path to the accounts JSON file
    """
    if path:
        return Path(path)

    if env_path := os.environ.get(STORAGE_PATH_ENV):
        return Path(env_path)

    return get_config_dir() / STORAGE_FILE_NAME


def get_lock_path(storage_path: Path) -> Path:
    """Lock file that serializes writers of ``storage_path``."""
    return storage_path.parent / f"{storage_path.name}.lock"


def repair_active_index(storage: AccountStorageV3) -> AccountStorageV3:
    """
    Reset an unusable active index to 0.

    Missing, negative and out-of-range indexes are all reset, including on
    an empty account list.

    Args:
        storage: Current-version document

    Returns:
        The same document, or a copy with ``active_index`` set to 0
    """
    index = storage.active_index
    if index is None or index < 0 or index >= len(storage.accounts):
        return storage.model_copy(update={"active_index": 0})
    return storage


class AccountStore:
    """
    Gateway to a single accounts JSON file.

    Loading never raises: absence, corruption and read errors all come back
    as ``None``. Saving raises on failure so callers can report lost writes.
    Clearing never raises.
    """

    def __init__(
        self,
        path: Optional[PathLike] = None,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the store.

        Args:
            path: Storage file path (defaults to ``get_storage_path()``)
            lock_timeout: Seconds to wait for the writer lock
            clock: Returns the current time in epoch milliseconds; used to
                expire rate limits while migrating
        """
        self.path = get_storage_path(path)
        self.lock_path = get_lock_path(self.path)
        self.lock_timeout = lock_timeout
        self._clock = clock or now_ms

    def __repr__(self) -> str:
        return f"AccountStore(path={str(self.path)!r})"

    def load(self) -> Optional[AccountStorageV3]:
        """
        Load accounts, migrating older documents to the current version.

        A migrated document is written back. If that write fails the
        migrated document is still returned.

        Returns:
            AccountStorageV3, or None if the file is missing or unusable
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to load account storage from %s: %s", self.path, e)
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning("Account storage at %s is not valid JSON, ignoring: %s", self.path, e)
            return None

        if not isinstance(data, dict) or not isinstance(data.get("accounts"), list):
            logger.warning("Invalid storage format at %s, ignoring", self.path)
            return None

        try:
            storage = decode_storage(data)
        except UnknownStorageVersionError as e:
            logger.warning("Unknown storage version %r at %s, ignoring", e.version, self.path)
            return None
        except ValidationError as e:
            logger.warning(
                "Account storage at %s does not match schema v%s, ignoring: %s",
                self.path,
                data.get("version"),
                e,
            )
            return None

        if not is_current(storage):
            logger.info("Migrating account storage from v%d to v%d", storage.version, STORAGE_VERSION)
            storage = migrate_to_current(storage, now=self._clock())
            try:
                self.save(storage)
                logger.info("Migration to v%d complete", storage.version)
            except Exception as e:
                logger.warning("Failed to persist migrated storage to %s: %s", self.path, e)

        return repair_active_index(storage)

    def save(self, storage: AccountStorageV3) -> None:
        """
        Write accounts to storage, replacing the file.

        Args:
            storage: Current-version document to write

        Raises:
            OSError: If the directory or file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = dump_storage(storage)

        with self._write_lock():
            self._write_atomic(content)

    def clear(self) -> None:
        """Remove the storage file. Never raises."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Failed to clear account storage at %s: %s", self.path, e)

    async def load_async(self) -> Optional[AccountStorageV3]:
        return await asyncio.to_thread(self.load)

    async def save_async(self, storage: AccountStorageV3) -> None:
        await asyncio.to_thread(self.save, storage)

    async def clear_async(self) -> None:
        await asyncio.to_thread(self.clear)

    @contextmanager
    def _write_lock(self) -> Iterator[None]:
        lock = FileLock(str(self.lock_path), timeout=self.lock_timeout)
        try:
            lock.acquire()
            acquired = True
        except Timeout:
            # If we can't acquire the lock, write anyway
            logger.warning("Timed out waiting for %s, writing without lock", self.lock_path)
            acquired = False

        try:
            yield
        finally:
            if acquired:
                lock.release()

    def _write_atomic(self, content: str) -> None:
        # Atomic write via temp file
        temp_path = self.path.with_name(f"{self.path.name}.{secrets.token_hex(6)}.tmp")
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, STORAGE_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(temp_path, self.path)
        finally:
            # Clean up temp file if it still exists
            temp_path.unlink(missing_ok=True)


def load_accounts(path: Optional[PathLike] = None) -> Optional[AccountStorageV3]:
    """
    Load accounts from storage.

    Args:
        path: Optional custom storage path

    Returns:
        AccountStorageV3 or None if the file doesn't exist or is invalid
    """
    return AccountStore(path).load()


def save_accounts(storage: AccountStorageV3, path: Optional[PathLike] = None) -> None:
    """
    Save accounts to storage.

    Args:
        storage: AccountStorageV3 to save
        path: Optional custom storage path
    """
    AccountStore(path).save(storage)


def clear_accounts(path: Optional[PathLike] = None) -> None:
    """
    Remove all stored accounts.

    Args:
        path: Optional custom storage path
    """
    AccountStore(path).clear()
