from __future__ import annotations

import logging
import secrets
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import final

from chat_transfer.exceptions import BackupError, StoreUnavailableError

from .state_store import StateStore

logger = logging.getLogger(__name__)

BACKUP_MARKER = ".chat-transfer-"


@final
@dataclass(frozen=True, slots=True)
class BackupHandle:
    """A point-in-time copy of one store, sufficient to fully restore it."""

    source: Path
    path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def backup_path_for(store_path: Path, backup_dir: Path | None = None) -> Path:
    """
    `<name>.chat-transfer-<UTC timestamp>-<random>.bak` beside the store or in `backup_dir`.

    The random suffix keeps two stores with the same file name (every store is
    called state.vscdb) apart when they share a backup directory.
    """
    target_dir = backup_dir if backup_dir is not None else store_path.parent
    ts = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return target_dir / f"{store_path.name}{BACKUP_MARKER}{ts}-{secrets.token_hex(3)}.bak"


def create_backup(store: StateStore, backup_dir: Path | None = None) -> BackupHandle:
    """
    Copies the live store through the SQLite online backup API.

    Works while another process (the editor) has the file open; no exclusive
    lock is taken. A failed backup leaves no partial file behind.

    Raises:
        BackupError: if the copy cannot be written.
    """
    path = backup_path_for(store.path, backup_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        store.copy_to(path)
    except (sqlite3.Error, OSError, StoreUnavailableError) as e:
        path.unlink(missing_ok=True)
        raise BackupError(f"Could not back up {store.path} to {path}: {e}") from e

    logger.info("Backed up %s to %s", store.path, path)
    return BackupHandle(source=store.path, path=path)


def restore_backup(backup: BackupHandle | Path, store: StateStore) -> None:
    """
    Overwrites `store` with the backup's contents and verifies the result.

    The copy runs under SQLite's own locking, so it waits for (and is safe
    against) other connections rather than replacing the file underneath them.

    Raises:
        BackupError: if the backup is missing, cannot be copied, or the restored store fails its integrity check.
    """
    backup_path = backup.path if isinstance(backup, BackupHandle) else Path(backup)
    if not backup_path.is_file():
        raise BackupError(f"Backup not found: {backup_path}")

    try:
        store.copy_from(backup_path)
    except (sqlite3.Error, OSError, StoreUnavailableError) as e:
        raise BackupError(f"Could not restore {store.path} from {backup_path}: {e}") from e

    if not store.check_integrity():
        raise BackupError(f"Restored store {store.path} failed its integrity check; backup kept at {backup_path}")
    logger.info("Restored %s from %s", store.path, backup_path)


def discard_backup(backup: BackupHandle) -> None:
    backup.path.unlink(missing_ok=True)
    logger.info("Discarded backup %s", backup.path)
