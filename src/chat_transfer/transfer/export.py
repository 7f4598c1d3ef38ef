from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import msgspec

from chat_transfer.exceptions import InvalidFormatError
from chat_transfer.fs import atomic_write_bytes, read_bytes_safe
from chat_transfer.models import ExportDiagnostics, ExportResult, RecordMetadata, Snapshot, record_id_of
from chat_transfer.serialization import convert, loads_any, to_pretty_json
from chat_transfer.store import StateStore

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".cursor-chat.json"


def select_records(index: dict[str, object] | None, selected_ids: Iterable[str] | None = None) -> list[RecordMetadata]:
    """
    Returns the index entries to export.

    - No index, or no `allComposers` list: nothing.
    - A non-empty selection filters by composerId membership; otherwise all entries are taken.
    - Entries without a composerId are dropped either way.
    """
    if index is None:
        return []
    match index.get("allComposers"):
        case list(entries):
            pass
        case _:
            return []

    records: list[RecordMetadata] = [
        e for e in entries if record_id_of(e) is not None  # pyright: ignore[reportUnknownVariableType]
    ]
    wanted = set(selected_ids) if selected_ids is not None else set()
    if wanted:
        records = [r for r in records if record_id_of(r) in wanted]
    return records


def build_snapshot(
    index_store: StateStore,
    payload_store: StateStore,
    selected_ids: Iterable[str] | None = None,
) -> ExportResult:
    """
    Assembles a Snapshot of the selected composers with their payloads and bubbles.

    A missing payload is recorded in the diagnostics and never aborts the build;
    the usual cause is a payload store that belongs to a different profile.
    """
    records = select_records(index_store.read_index(), selected_ids)
    snapshot = Snapshot(records=records)
    diagnostics = ExportDiagnostics()

    for record_id in snapshot.record_ids():
        diagnostics.records_scanned += 1

        payload = payload_store.read_payload(record_id)
        if payload is not None:
            snapshot.payloads[record_id] = payload
            diagnostics.payload_hits += 1
        else:
            diagnostics.payload_misses += 1
            diagnostics.missing_payload_ids.append(record_id)

        fragments = payload_store.read_fragments(record_id)
        if fragments:
            snapshot.fragments[record_id] = fragments
            diagnostics.fragment_count += len(fragments)

    logger.info(
        "Built snapshot: %d records, %d payloads found, %d missing, %d bubbles",
        diagnostics.records_scanned,
        diagnostics.payload_hits,
        diagnostics.payload_misses,
        diagnostics.fragment_count,
    )
    if diagnostics.missing_payload_ids:
        logger.warning("No payload found for: %s", ", ".join(diagnostics.missing_payload_ids))

    return ExportResult(snapshot=snapshot, diagnostics=diagnostics)


# ---------- Snapshot files ----------


def dump_snapshot(snapshot: Snapshot) -> bytes:
    return to_pretty_json(snapshot)


def save_snapshot(path: Path, snapshot: Snapshot) -> None:
    atomic_write_bytes(path, dump_snapshot(snapshot))


def parse_snapshot(data: bytes | str) -> Snapshot:
    """
    Validates and decodes a snapshot document.

    `allComposers` must be an array and `composers` an object; `bubbles` is optional.

    Raises:
        InvalidFormatError: for anything else.
    """
    try:
        document = loads_any(data)
    except msgspec.DecodeError as e:
        raise InvalidFormatError(f"Invalid export file format: not valid JSON ({e}).") from e

    match document:
        case {"allComposers": list(), "composers": dict()}:
            pass
        case _:
            raise InvalidFormatError(
                "Invalid export file format: expected 'allComposers' to be an array and 'composers' an object."
            )

    try:
        return convert(document, Snapshot)
    except msgspec.ValidationError as e:
        raise InvalidFormatError(f"Invalid export file format: {e}") from e


def load_snapshot(path: Path) -> Snapshot:
    data = read_bytes_safe(path)
    if data is None:
        raise InvalidFormatError(f"Could not read export file: {path}")
    return parse_snapshot(data)
