from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from chat_transfer.exceptions import (
    BackupError,
    DecodeError,
    PostconditionFailedError,
    PreconditionFailedError,
    TransferError,
)
from chat_transfer.keys import parse_fragment_key, payload_key
from chat_transfer.models import MergeReport, MergeState, RecordMetadata, RemovalReport, Snapshot, record_id_of
from chat_transfer.store import BackupHandle, StateStore, create_backup, discard_backup

logger = logging.getLogger(__name__)


def _advance(report: MergeReport | RemovalReport, state: MergeState) -> None:
    logger.debug("Merge state: %s -> %s", report.state.value, state.value)
    report.state = state


def _index_entries(index: dict[str, Any] | None) -> list[RecordMetadata]:
    match index:
        case {"allComposers": list(entries)}:
            return list(entries)  # pyright: ignore[reportUnknownArgumentType]
        case _:
            return []


def _backup_all(
    stores: Iterable[StateStore],
    backup_dir: Path | None,
    report: MergeReport | RemovalReport,
) -> list[BackupHandle]:
    backups: list[BackupHandle] = []
    try:
        for store in stores:
            backups.append(create_backup(store, backup_dir))
    except BackupError:
        # Nothing has been mutated yet, so a partial set of backups is useless.
        for backup in backups:
            discard_backup(backup)
        _advance(report, MergeState.ABORTED)
        raise
    _advance(report, MergeState.BACKED_UP)
    return backups


def _load_target_index(index_store: StateStore) -> dict[str, Any]:
    """
    Reads the index a write will build on. A missing index is empty; a broken one is an error.

    Raises:
        DecodeError: if the document or its `allComposers` entry cannot be used.
    """
    current = index_store.load_index()
    if current is None:
        return {}
    match current.get("allComposers"):
        case None | list():
            return current
        case other:
            raise DecodeError(f"allComposers is a JSON {type(other).__name__}, expected an array")


def _require_readable_index(index_store: StateStore, report: MergeReport | RemovalReport) -> None:
    try:
        _load_target_index(index_store)
    except DecodeError as e:
        _advance(report, MergeState.ABORTED)
        raise PreconditionFailedError(
            f"Composer index in {index_store.path} cannot be parsed ({e.message}). Nothing was changed."
        ) from e


def _verify(stores: Iterable[StateStore]) -> list[Path]:
    """Runs every integrity check (no short-circuit) and returns the paths that failed."""
    return [store.path for store in stores if not store.check_integrity()]


def payload_pairs(snapshot: Snapshot) -> tuple[list[tuple[str, str]], list[str]]:
    """
    Builds the (key, value) pairs a merge inserts into the payload store.

    One `composerData:<id>` per payload, then every bubble. Bubbles without a key or
    value, and bubbles whose key does not belong to the composer they are filed
    under, are skipped with a warning.
    """
    pairs: list[tuple[str, str]] = [(payload_key(record_id), value) for record_id, value in snapshot.payloads.items()]
    warnings: list[str] = []
    for record_id, entries in snapshot.fragments.items():
        for entry in entries:
            if entry.value is None or not entry.key:
                logger.warning("Skipping incomplete bubbles entry %r under composer %s", entry.key, record_id)
                warnings.append(f"Skipped bubble {entry.key or '<no key>'} under {record_id}: no key or value.")
                continue
            match parse_fragment_key(entry.key):
                case (str(owner), _) if owner == record_id:
                    pairs.append((entry.key, entry.value))
                case _:
                    logger.warning("Skipping bubble %s filed under composer %s", entry.key, record_id)
                    warnings.append(f"Skipped bubble {entry.key}: not filed under its own composer {record_id}.")
    return pairs, warnings


def merge(
    snapshot: Snapshot,
    index_store: StateStore,
    payload_store: StateStore,
    *,
    backup_dir: Path | None = None,
    report: MergeReport | None = None,
) -> MergeReport:
    """
    Merges `snapshot` into a target index store and payload store.

    Protocol: back up both stores, verify both, insert payloads and bubbles
    (insert-if-absent, committed first), append missing index entries (committed
    second), verify both again, discard backups.

    The two stores cannot share a transaction. Payloads always land before the
    index entries that reference them, and the backups are the recovery path once
    anything has been committed; there is no automatic rollback after that point.

    Running the same merge twice inserts nothing the second time.

    Pass `report` to observe how far a failed merge got: it is updated in place
    and its `state` is ABORTED or FAILED when this raises.

    Raises:
        BackupError: a backup could not be taken (nothing changed).
        PreconditionFailedError: a target failed its integrity check, or its index
            cannot be parsed (nothing changed).
        PostconditionFailedError: something failed after mutation began; backups are kept.
    """
    if report is None:
        report = MergeReport()
    report.warnings.extend(snapshot.consistency_warnings())
    stores = (index_store, payload_store)

    # 1. Backups
    backups = _backup_all(stores, backup_dir, report)
    report.backups = [str(b.path) for b in backups]

    # 2. Pre-verification
    failing = _verify(stores)
    if failing:
        _advance(report, MergeState.ABORTED)
        names = ", ".join(str(p) for p in failing)
        raise PreconditionFailedError(f"Integrity check failed before merge for: {names}. Nothing was changed.")
    _require_readable_index(index_store, report)
    _advance(report, MergeState.PRE_VERIFIED)

    # 3-4. Payloads and bubbles
    pairs, skipped = payload_pairs(snapshot)
    report.warnings.extend(skipped)
    try:
        with payload_store.transaction():
            for key, value in pairs:
                if payload_store.insert_if_absent(key, value):
                    report.inserted_count += 1
                else:
                    report.already_present += 1
    except TransferError:
        # Rolled back: neither store was changed.
        _advance(report, MergeState.ABORTED)
        raise
    payload_store.checkpoint()
    _advance(report, MergeState.PAYLOAD_INSERTED)
    logger.info("Inserted %d payload entries (%d already present)", report.inserted_count, report.already_present)

    # 5-6. Index
    try:
        with index_store.transaction():
            current = _load_target_index(index_store)
            entries = _index_entries(current)
            existing = {rid for rid in (record_id_of(e) for e in entries) if rid is not None}
            additions: list[RecordMetadata] = []
            for record in snapshot.records:
                record_id = record_id_of(record)
                if record_id is None or record_id in existing:
                    continue
                additions.append(record)
                existing.add(record_id)
            merged_entries = entries + additions
            index_store.write_index({**current, "allComposers": merged_entries})
    except TransferError as e:
        _advance(report, MergeState.FAILED)
        raise PostconditionFailedError(
            f"Payloads were committed to {payload_store.path} but updating the index in {index_store.path} failed: "
            + e.message,
            [b.path for b in backups],
        ) from e
    index_store.checkpoint()
    _advance(report, MergeState.INDEX_UPDATED)
    report.records_added = len(additions)
    report.final_record_ids = [rid for rid in (record_id_of(e) for e in merged_entries) if rid is not None]
    logger.info("Added %d index entries (%d total)", report.records_added, len(report.final_record_ids))

    # 7. Post-verification
    failing = _verify(stores)
    if failing:
        _advance(report, MergeState.FAILED)
        names = ", ".join(str(p) for p in failing)
        raise PostconditionFailedError(f"Integrity check failed after merge for: {names}.", [b.path for b in backups])
    _advance(report, MergeState.POST_VERIFIED)

    # 8. Commit
    for backup in backups:
        discard_backup(backup)
    report.backups = []
    _advance(report, MergeState.COMMITTED)
    return report


def remove_records(
    index_store: StateStore,
    record_ids: Iterable[str],
    *,
    backup_dir: Path | None = None,
) -> RemovalReport:
    """
    Detaches composers from an index store.

    The payload store is never touched: orphaned payloads and bubbles stay behind
    as recoverable debris instead of being cascade-deleted.
    """
    remove = set(record_ids)
    report = RemovalReport()
    if not remove:
        return report

    backups = _backup_all([index_store], backup_dir, report)

    if _verify([index_store]):
        _advance(report, MergeState.ABORTED)
        raise PreconditionFailedError(
            f"Integrity check failed before removal for: {index_store.path}. Nothing was changed."
        )
    _require_readable_index(index_store, report)
    _advance(report, MergeState.PRE_VERIFIED)

    try:
        with index_store.transaction():
            current = _load_target_index(index_store)
            entries = _index_entries(current)
            kept = [e for e in entries if record_id_of(e) not in remove]
            report.removed = len(entries) - len(kept)
            report.remaining = len(kept)
            if report.removed:
                index_store.write_index({**current, "allComposers": kept})
    except TransferError:
        _advance(report, MergeState.ABORTED)
        raise
    index_store.checkpoint()
    _advance(report, MergeState.INDEX_UPDATED)

    if _verify([index_store]):
        _advance(report, MergeState.FAILED)
        raise PostconditionFailedError(
            f"Integrity check failed after removal for: {index_store.path}.", [b.path for b in backups]
        )
    _advance(report, MergeState.POST_VERIFIED)

    for backup in backups:
        discard_backup(backup)
    _advance(report, MergeState.COMMITTED)
    logger.info("Removed %d composers from %s (%d remain)", report.removed, index_store.path, report.remaining)
    return report
