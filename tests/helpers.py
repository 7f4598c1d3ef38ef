# pyright: standard

import json
import sqlite3
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

INDEX_KEY = "composer.composerData"

# The editor declares both tables in every state.vscdb.
SCHEMA = (
    "CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)",
    "CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)",
)


def make_state_db(path: Path, tables: Iterable[str] = SCHEMA) -> Path:
    """Creates an empty state.vscdb-shaped database at `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(path)
    try:
        for statement in tables:
            con.execute(statement)
        con.commit()
    finally:
        con.close()
    return path


def put(path: Path, table: str, rows: Mapping[str, str | bytes]) -> None:
    con = sqlite3.connect(path)
    try:
        con.executemany(f"INSERT OR REPLACE INTO {table} (key, value) VALUES (?, ?)", list(rows.items()))
        con.commit()
    finally:
        con.close()


def get(path: Path, table: str, key: str) -> str | None:
    con = sqlite3.connect(path)
    try:
        row = con.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
    finally:
        con.close()
    if row is None:
        return None
    value = row[0]
    return value.decode("utf-8") if isinstance(value, bytes) else value


def keys(path: Path, table: str) -> list[str]:
    con = sqlite3.connect(path)
    try:
        return [row[0] for row in con.execute(f"SELECT key FROM {table} ORDER BY key")]
    finally:
        con.close()


def composer(record_id: str, name: str | None = None, **extra: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"composerId": record_id, "createdAt": 1000, "lastUpdatedAt": 2000, **extra}
    if name is not None:
        record["name"] = name
    return record


def seed_index(path: Path, records: list[dict[str, Any]], **extra: Any) -> None:
    put(path, "ItemTable", {INDEX_KEY: json.dumps({"allComposers": records, **extra})})


def read_index(path: Path) -> dict[str, Any] | None:
    raw = get(path, "ItemTable", INDEX_KEY)
    return json.loads(raw) if raw is not None else None


def index_ids(path: Path) -> list[str]:
    index = read_index(path) or {}
    return [r["composerId"] for r in index.get("allComposers", [])]


def seed_payload(path: Path, record_id: str, document: dict[str, Any] | str) -> None:
    value = document if isinstance(document, str) else json.dumps(document)
    put(path, "cursorDiskKV", {f"composerData:{record_id}": value})


def seed_bubble(path: Path, record_id: str, bubble_id: str, document: dict[str, Any]) -> None:
    put(path, "cursorDiskKV", {f"bubbleId:{record_id}:{bubble_id}": json.dumps(document)})


def read_payload(path: Path, record_id: str) -> dict[str, Any] | None:
    raw = get(path, "cursorDiskKV", f"composerData:{record_id}")
    return json.loads(raw) if raw is not None else None


def payload_keys(path: Path) -> list[str]:
    return keys(path, "cursorDiskKV")


def backups_in(directory: Path) -> list[Path]:
    return sorted(directory.glob("*.chat-transfer-*.bak"))


@dataclass
class Stores:
    source: Path
    target: Path
    payload: Path
    backups: Path
