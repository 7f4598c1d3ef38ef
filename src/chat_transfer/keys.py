"""Key and table conventions shared with the host editor's own state.vscdb reader."""

from typing import Literal

INDEX_TABLE = "ItemTable"
PAYLOAD_TABLE = "cursorDiskKV"

INDEX_KEY = "composer.composerData"
PAYLOAD_KEY_PREFIX = "composerData:"
FRAGMENT_KEY_PREFIX = "bubbleId:"

type StoreRole = Literal["index", "payload"]

TABLE_FOR_ROLE: dict[StoreRole, str] = {
    "index": INDEX_TABLE,
    "payload": PAYLOAD_TABLE,
}


def payload_key(record_id: str) -> str:
    return f"{PAYLOAD_KEY_PREFIX}{record_id}"


def fragment_prefix(record_id: str) -> str:
    return f"{FRAGMENT_KEY_PREFIX}{record_id}:"


def fragment_key(record_id: str, fragment_id: str) -> str:
    return f"{fragment_prefix(record_id)}{fragment_id}"


def parse_fragment_key(key: str) -> tuple[str, str] | None:
    """
    Splits `bubbleId:<recordId>:<fragmentId>` into its two ids.

    The fragment id is everything after the second colon, so ids containing
    colons survive. Returns None for keys of any other shape.
    """
    kind, sep, rest = key.partition(":")
    if kind != FRAGMENT_KEY_PREFIX.rstrip(":") or not sep:
        return None
    record_id, sep, fragment_id = rest.partition(":")
    if not sep or not record_id:
        return None
    return record_id, fragment_id


def escape_like(prefix: str) -> str:
    """Escapes LIKE wildcards so a prefix scan matches the prefix literally (ESCAPE '\\')."""
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
