"""
Clone a Snapshot under fresh identifiers.

Payload and bubble documents are opaque here, so cross-references are rewritten
by literal string substitution of the old ids. New ids are random UUIDs, which
keeps accidental substring matches against unrelated data negligible; ids that
are short or non-random in the source are the known sharp edge of this approach.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

import msgspec
import regex

from chat_transfer.keys import fragment_key, parse_fragment_key
from chat_transfer.models import RECORD_ID_FIELD, FragmentEntry, RecordMetadata, RemapResult, Snapshot, record_id_of
from chat_transfer.serialization import loads_any, to_json

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMA_VERSION = 3


def _new_id() -> str:
    return str(uuid.uuid4())


def replace_literals(text: str, replacements: Mapping[str, str]) -> str:
    """
    Replaces every occurrence of each old id with its new id in a single pass.

    One alternation (longest ids first) means text inserted for one id is never
    rescanned for another, so a short old id cannot corrupt a freshly drawn UUID.
    """
    olds = sorted((old for old in replacements if old), key=len, reverse=True)
    if not olds:
        return text
    pattern = regex.compile("|".join(regex.escape(old) for old in olds))
    return pattern.sub(lambda m: replacements[m.group(0)], text)


def empty_payload(record_id: str, timestamp_ms: int) -> str:
    """A minimal well-formed composer payload for a record that had none."""
    document: dict[str, Any] = {
        "_v": PAYLOAD_SCHEMA_VERSION,
        RECORD_ID_FIELD: record_id,
        "richText": "",
        "text": "",
        "conversation": [],
        "fullConversationHeadersOnly": [],
        "createdAt": timestamp_ms,
        "lastUpdatedAt": timestamp_ms,
    }
    return to_json(document).decode("utf-8")


def _rewrite_payload(raw: str, old_id: str, new_id: str, fragment_id_map: Mapping[str, str]) -> str:
    replacements = {old_id: new_id, **fragment_id_map}
    try:
        document = loads_any(raw)
    except msgspec.DecodeError:
        # Foreign or opaque format: literal replacement on the raw text only.
        logger.debug("Payload of %s is not JSON; rewriting ids textually", old_id)
        return replace_literals(raw, replacements)

    # Literal pass before the structural one, so the new id is never rescanned.
    text = replace_literals(to_json(document).decode("utf-8"), replacements)
    match document:
        case {"composerId": _}:
            try:
                rewritten = loads_any(text)
            except msgspec.DecodeError:
                logger.warning("Id substitution broke the JSON payload of %s; keeping the textual rewrite", old_id)
                return text
            rewritten[RECORD_ID_FIELD] = new_id
            return to_json(rewritten).decode("utf-8")
        case _:
            return text


def remap(
    snapshot: Snapshot,
    *,
    now_ms: int | None = None,
    name_suffix: str | None = None,
    id_factory: Callable[[], str] = _new_id,
) -> RemapResult:
    """
    Returns a copy of `snapshot` in which every composer and bubble has a fresh id.

    - Metadata is copied verbatim except the composerId and the createdAt/lastUpdatedAt
      timestamps, which become `now_ms + position` so a batch gets strictly increasing times.
    - Bubble keys are rebuilt and their values have the old bubble/composer ids replaced.
    - Payloads have their composerId field rewritten (when JSON) and every old id replaced.
    - Records without a payload get a minimal empty one.

    Both id maps are injective and no new id equals any input id.
    """
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    input_ids: set[str] = set(snapshot.record_ids())
    for entries in snapshot.fragments.values():
        input_ids.update(_fragment_id(entry) for entry in entries)
    issued: set[str] = set()

    def draw() -> str:
        while True:
            candidate = id_factory()
            if candidate not in issued and candidate not in input_ids:
                issued.add(candidate)
                return candidate

    id_map: dict[str, str] = {}
    fragment_id_map: dict[str, str] = {}
    cloned = Snapshot()
    timestamps: dict[str, int] = {}

    # 1. Composer metadata
    for position, record in enumerate(r for r in snapshot.records if record_id_of(r) is not None):
        old_id = record[RECORD_ID_FIELD]
        if old_id in id_map:
            logger.warning("Duplicate composer %s in snapshot; keeping the first entry", old_id)
            continue
        new_id = draw()
        id_map[old_id] = new_id
        timestamps[new_id] = now + position

        new_record: RecordMetadata = {
            **record,
            RECORD_ID_FIELD: new_id,
            "createdAt": now + position,
            "lastUpdatedAt": now + position,
        }
        if name_suffix:
            name = record.get("name")
            new_record["name"] = f"{name}{name_suffix}" if name else f"Copied Chat{name_suffix}"
        cloned.records.append(new_record)

    # 2. Bubbles
    for old_id, entries in snapshot.fragments.items():
        new_id = id_map.get(old_id)
        if new_id is None:
            logger.warning(
                "Dropping %d bubbles of composer %s, which is not in the snapshot index", len(entries), old_id
            )
            continue
        new_entries: list[FragmentEntry] = []
        for entry in entries:
            if entry.value is None or not entry.key:
                logger.warning("Dropping bubble without a key or value under composer %s", old_id)
                continue
            old_fragment_id = _fragment_id(entry)
            if not old_fragment_id:
                logger.warning("Dropping bubble without an id: %s", entry.key)
                continue
            new_fragment_id = fragment_id_map.get(old_fragment_id) or draw()
            fragment_id_map[old_fragment_id] = new_fragment_id
            value = replace_literals(entry.value, {old_fragment_id: new_fragment_id, old_id: new_id})
            new_entries.append(
                FragmentEntry(key=fragment_key(new_id, new_fragment_id), value=value, fragment_id=new_fragment_id)
            )
        if new_entries:
            cloned.fragments[new_id] = new_entries

    # 3. Payloads
    for old_id, raw in snapshot.payloads.items():
        new_id = id_map.get(old_id)
        if new_id is None:
            continue
        cloned.payloads[new_id] = _rewrite_payload(raw, old_id, new_id, fragment_id_map)

    # 4. Never leave an index entry without a payload
    synthesized: list[str] = []
    for new_id in id_map.values():
        if new_id not in cloned.payloads:
            cloned.payloads[new_id] = empty_payload(new_id, timestamps[new_id])
            synthesized.append(new_id)

    logger.info(
        "Remapped %d composers and %d bubbles (%d empty payloads synthesized)",
        len(id_map),
        len(fragment_id_map),
        len(synthesized),
    )
    return RemapResult(
        snapshot=cloned,
        id_map=id_map,
        fragment_id_map=fragment_id_map,
        synthesized_payload_ids=synthesized,
    )


def _fragment_id(entry: FragmentEntry) -> str:
    if entry.fragment_id:
        return entry.fragment_id
    match parse_fragment_key(entry.key):
        case (_, str(fragment_id)):
            return fragment_id
        case _:
            return ""
