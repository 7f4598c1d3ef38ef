from enum import Enum
from typing import Any

from msgspec import Struct, field

from chat_transfer.keys import fragment_prefix

RECORD_ID_FIELD = "composerId"

type RecordMetadata = dict[str, Any]


class TransferMode(str, Enum):
    COPY = "copy"
    CUT = "cut"
    REF = "ref"


class StoreKind(str, Enum):
    INDEX = "index"
    PAYLOAD = "payload"


class MergeState(str, Enum):
    IDLE = "idle"
    BACKED_UP = "backed_up"
    PRE_VERIFIED = "pre_verified"
    PAYLOAD_INSERTED = "payload_inserted"
    INDEX_UPDATED = "index_updated"
    POST_VERIFIED = "post_verified"
    COMMITTED = "committed"
    ABORTED = "aborted"
    FAILED = "failed"


class FragmentEntry(Struct, frozen=True):
    """
    One stored bubble: its full key, its opaque value, and the bubble id parsed from the key.

    Export files from older tools may omit `key` or `value`; such entries load but are never written.
    """

    key: str = ""
    value: str | None = None
    fragment_id: str = field(default="", name="bubbleId")

    @property
    def is_complete(self) -> bool:
        return bool(self.key) and self.value is not None


def record_id_of(record: object) -> str | None:
    """Returns the composerId of an index entry, or None for malformed entries."""
    match record:
        case {"composerId": str(record_id)} if record_id:
            return record_id
        case _:
            return None


class Snapshot(Struct):
    """
    Portable bundle of composer records, their payload documents and their bubbles.

    Field names on the wire match the export file format:
    allComposers / composers / bubbles.
    """

    records: list[RecordMetadata] = field(default_factory=list, name="allComposers")
    payloads: dict[str, str] = field(default_factory=dict, name="composers")
    fragments: dict[str, list[FragmentEntry]] = field(default_factory=dict, name="bubbles")

    def record_ids(self) -> list[str]:
        return [rid for rid in (record_id_of(r) for r in self.records) if rid is not None]

    def fragment_count(self) -> int:
        return sum(len(entries) for entries in self.fragments.values())

    def consistency_warnings(self) -> list[str]:
        """Non-fatal problems a merge will tolerate: missing payloads, incomplete and misfiled bubbles."""
        warnings: list[str] = []
        missing = [rid for rid in self.record_ids() if rid not in self.payloads]
        if missing:
            warnings.append(f"{len(missing)} of {len(self.record_ids())} records had no payload found.")

        incomplete = 0
        misfiled = 0
        for record_id, entries in self.fragments.items():
            prefix = fragment_prefix(record_id)
            complete = [entry for entry in entries if entry.is_complete]
            incomplete += len(entries) - len(complete)
            misfiled += sum(1 for entry in complete if not entry.key.startswith(prefix))
        if incomplete:
            warnings.append(f"{incomplete} bubbles have no key or value and will be skipped.")
        if misfiled:
            warnings.append(f"{misfiled} bubbles are filed under a composer id that does not match their key.")
        return warnings


class ExportDiagnostics(Struct):
    records_scanned: int = 0
    payload_hits: int = 0
    payload_misses: int = 0
    fragment_count: int = 0
    missing_payload_ids: list[str] = field(default_factory=list)

    def warnings(self) -> list[str]:
        if not self.payload_misses:
            return []
        return [
            f"{self.payload_misses} of {self.records_scanned} records had no payload found "
            + "(is the right global state.vscdb selected?)."
        ]


class ExportResult(Struct):
    snapshot: Snapshot
    diagnostics: ExportDiagnostics


class RemapResult(Struct):
    snapshot: Snapshot
    id_map: dict[str, str]
    fragment_id_map: dict[str, str]
    synthesized_payload_ids: list[str] = field(default_factory=list)


class MergeReport(Struct):
    inserted_count: int = 0
    already_present: int = 0
    records_added: int = 0
    final_record_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    state: MergeState = MergeState.IDLE
    backups: list[str] = field(default_factory=list)


class RemovalReport(Struct):
    removed: int = 0
    remaining: int = 0
    state: MergeState = MergeState.IDLE


class TransferReport(Struct):
    """Outcome of one top-level command; warnings are surfaced even on success."""

    operation: str
    records: int = 0
    fragments: int = 0
    inserted: int = 0
    already_present: int = 0
    removed: int = 0
    final_record_ids: list[str] = field(default_factory=list)
    output_path: str | None = None
    warnings: list[str] = field(default_factory=list)
