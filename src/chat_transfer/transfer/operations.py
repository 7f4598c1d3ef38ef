"""
Top-level operations behind the command surface.

Each operation opens its stores from explicit paths, runs to completion, closes
them, and returns a TransferReport. Nothing depends on an ambient "current" store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from chat_transfer.config import Settings, load_settings
from chat_transfer.exceptions import InvalidInputError, SizeLimitExceededError
from chat_transfer.keys import StoreRole
from chat_transfer.models import RecordMetadata, TransferMode, TransferReport
from chat_transfer.store import StateStore, restore_backup

from .export import build_snapshot, load_snapshot, save_snapshot, select_records
from .merge import merge, remove_records
from .remap import remap

logger = logging.getLogger(__name__)

COPY_NAME_SUFFIX = " (Copy)"


@contextmanager
def open_store(path: Path, role: StoreRole, settings: Settings) -> Iterator[StateStore]:
    store = StateStore.open(path, role=role, busy_timeout=settings["busy_timeout"])
    try:
        yield store
    finally:
        store.close()


def ensure_within_size_limit(store: StateStore, max_bytes: int) -> None:
    size = store.size_bytes()
    if size > max_bytes:
        raise SizeLimitExceededError(
            f"{store.path} is {size / 1024**3:.2f} GiB, above the {max_bytes / 1024**3:.2f} GiB processing limit. "
            + "Clear old chat history in the editor to reduce the database size, "
            + "or raise CHAT_TRANSFER_MAX_STORE_BYTES if you have the memory for it."
        )


def _unknown_selection_warnings(selected_ids: Sequence[str] | None, found: Sequence[str]) -> list[str]:
    if not selected_ids:
        return []
    unknown = sorted(set(selected_ids) - set(found))
    if not unknown:
        return []
    return [f"{len(unknown)} selected ids are not in the source index: {', '.join(unknown)}"]


def list_records(index_path: Path, *, settings: Settings | None = None) -> list[RecordMetadata]:
    settings = settings or load_settings()
    with open_store(index_path, "index", settings) as index_store:
        return select_records(index_store.read_index())


def export_to_file(
    index_path: Path,
    payload_path: Path,
    out_path: Path,
    selected_ids: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
) -> TransferReport:
    settings = settings or load_settings()
    with (
        open_store(index_path, "index", settings) as index_store,
        open_store(payload_path, "payload", settings) as payload_store,
    ):
        ensure_within_size_limit(payload_store, settings["max_store_bytes"])
        result = build_snapshot(index_store, payload_store, selected_ids)

    save_snapshot(out_path, result.snapshot)
    logger.info("Wrote export to %s", out_path)

    snapshot = result.snapshot
    return TransferReport(
        operation="export",
        records=len(snapshot.records),
        fragments=snapshot.fragment_count(),
        final_record_ids=snapshot.record_ids(),
        output_path=str(out_path),
        warnings=result.diagnostics.warnings() + _unknown_selection_warnings(selected_ids, snapshot.record_ids()),
    )


def import_from_file(
    in_path: Path,
    index_path: Path,
    payload_path: Path,
    *,
    settings: Settings | None = None,
) -> TransferReport:
    """
    Imports an export file under fresh ids, so importing the same file twice yields two copies.
    """
    settings = settings or load_settings()
    # Validate the file before touching any store.
    snapshot = load_snapshot(in_path)
    warnings = snapshot.consistency_warnings()

    cloned = remap(snapshot)
    if cloned.synthesized_payload_ids:
        warnings.append(f"Created empty content for {len(cloned.synthesized_payload_ids)} records without a payload.")

    with (
        open_store(index_path, "index", settings) as index_store,
        open_store(payload_path, "payload", settings) as payload_store,
    ):
        report = merge(cloned.snapshot, index_store, payload_store, backup_dir=settings["backup_dir"])

    return TransferReport(
        operation="import",
        records=len(cloned.snapshot.records),
        fragments=cloned.snapshot.fragment_count(),
        inserted=report.inserted_count,
        already_present=report.already_present,
        final_record_ids=report.final_record_ids,
        warnings=warnings + [w for w in report.warnings if w not in warnings],
    )


def local_transfer(
    source_index_path: Path,
    target_index_path: Path,
    payload_path: Path,
    mode: TransferMode,
    selected_ids: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
) -> TransferReport:
    """
    Moves composers between two workspace index stores that share one payload store.

    - copy: clone under fresh ids (names get a " (Copy)" suffix) into the target.
    - cut: add the same ids to the target, then detach them from the source.
    - ref: add the same ids to the target and leave the source alone.

    The target index is always committed before a cut touches the source.
    """
    settings = settings or load_settings()
    if mode is not TransferMode.COPY and source_index_path.resolve() == target_index_path.resolve():
        raise InvalidInputError(f"Source and target are the same store; '{mode.value}' would be a no-op.")

    with (
        open_store(source_index_path, "index", settings) as source_store,
        open_store(target_index_path, "index", settings) as target_store,
        open_store(payload_path, "payload", settings) as payload_store,
    ):
        ensure_within_size_limit(payload_store, settings["max_store_bytes"])
        result = build_snapshot(source_store, payload_store, selected_ids)
        warnings = result.diagnostics.warnings() + _unknown_selection_warnings(
            selected_ids, result.snapshot.record_ids()
        )

        snapshot = result.snapshot
        if mode is TransferMode.COPY:
            cloned = remap(snapshot, name_suffix=COPY_NAME_SUFFIX)
            snapshot = cloned.snapshot

        report = merge(snapshot, target_store, payload_store, backup_dir=settings["backup_dir"])
        warnings.extend(w for w in report.warnings if w not in warnings)

        removed = 0
        if mode is TransferMode.CUT:
            removal = remove_records(source_store, result.snapshot.record_ids(), backup_dir=settings["backup_dir"])
            removed = removal.removed

    return TransferReport(
        operation=f"transfer ({mode.value})",
        records=len(snapshot.records),
        fragments=snapshot.fragment_count(),
        inserted=report.inserted_count,
        already_present=report.already_present,
        removed=removed,
        final_record_ids=report.final_record_ids,
        warnings=warnings,
    )


def remove_from_index(
    index_path: Path,
    record_ids: Sequence[str],
    *,
    settings: Settings | None = None,
) -> TransferReport:
    if not record_ids:
        raise InvalidInputError("No composer ids given to remove.")
    settings = settings or load_settings()
    with open_store(index_path, "index", settings) as index_store:
        removal = remove_records(index_store, record_ids, backup_dir=settings["backup_dir"])
        remaining = select_records(index_store.read_index())

    warnings = _unknown_selection_warnings(record_ids, []) if removal.removed == 0 else []
    return TransferReport(
        operation="remove",
        records=len(record_ids),
        removed=removal.removed,
        final_record_ids=[str(r["composerId"]) for r in remaining],
        warnings=warnings,
    )


def restore(
    backup_path: Path,
    store_path: Path,
    role: StoreRole = "index",
    *,
    settings: Settings | None = None,
) -> TransferReport:
    settings = settings or load_settings()
    with open_store(store_path, role, settings) as store:
        restore_backup(backup_path, store)
    return TransferReport(operation="restore", output_path=str(store_path))
