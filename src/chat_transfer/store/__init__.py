"""
Storage access layer for state.vscdb key-value stores.

Provides:
- StateStore: point/prefix reads, insert-if-absent, index read/write, transactions, integrity checks
- Online backup / restore / discard of whole stores
"""

from .backup import BackupHandle, create_backup, discard_backup, restore_backup
from .state_store import StateStore, require_engine

__all__ = [
    "StateStore",
    "require_engine",
    "BackupHandle",
    "create_backup",
    "restore_backup",
    "discard_backup",
]
