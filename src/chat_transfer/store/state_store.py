from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from types import TracebackType
from typing import Any, Self
from urllib.parse import quote

import msgspec

from chat_transfer.config import DEFAULT_BUSY_TIMEOUT
from chat_transfer.exceptions import DecodeError, EngineUnavailableError, StoreUnavailableError
from chat_transfer.keys import (
    INDEX_KEY,
    TABLE_FOR_ROLE,
    StoreRole,
    escape_like,
    fragment_prefix,
    parse_fragment_key,
    payload_key,
)
from chat_transfer.models import FragmentEntry
from chat_transfer.serialization import loads_any, to_json

logger = logging.getLogger(__name__)

# TRUNCATE checkpoints need 3.8.8.
MIN_SQLITE_VERSION = (3, 8, 8)


def require_engine() -> None:
    """Raises EngineUnavailableError if the linked SQLite library cannot serve this tool."""
    if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
        wanted = ".".join(str(p) for p in MIN_SQLITE_VERSION)
        raise EngineUnavailableError(f"SQLite {sqlite3.sqlite_version} is linked, {wanted} or newer is required.")


class StateStore:
    """
    Key-value access to one state.vscdb file.

    - `role="index"` addresses the ItemTable (workspace stores, holds the composer index).
    - `role="payload"` addresses cursorDiskKV (global store, holds composer payloads and bubbles).
    - Every read round-trips to SQLite; nothing is cached.
    - Writes happen inside `transaction()`, which uses BEGIN IMMEDIATE so a concurrent
      writer makes us wait up to `busy_timeout` seconds and then fail.
    """

    path: Path
    role: StoreRole
    table: str
    busy_timeout: float
    _con: sqlite3.Connection | None
    _in_transaction: bool

    def __init__(self, path: Path, con: sqlite3.Connection, role: StoreRole, busy_timeout: float) -> None:
        self.path = path
        self.role = role
        self.table = TABLE_FOR_ROLE[role]
        self.busy_timeout = busy_timeout
        self._con = con
        self._in_transaction = False

    @classmethod
    def open(cls, path: Path, *, role: StoreRole, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> StateStore:
        """
        Opens an existing store for reading and writing. Never creates a file.

        Raises:
            EngineUnavailableError: if the SQLite library is unusable.
            StoreUnavailableError: if the file is missing, unreadable or lacks the role's table.
        """
        require_engine()
        path = Path(path)
        if not path.is_file():
            raise StoreUnavailableError(f"Store not found: {path}")

        uri = f"file:{quote(path.resolve().as_posix())}?mode=rw"
        try:
            con = sqlite3.connect(uri, uri=True, timeout=busy_timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Could not open store {path}: {e}") from e

        store = cls(path, con, role, busy_timeout)
        try:
            tables = {row[0] for row in store._query("SELECT name FROM sqlite_master WHERE type='table'")}
        except StoreUnavailableError:
            store.close()
            raise
        if store.table not in tables:
            store.close()
            raise StoreUnavailableError(f"Store {path} has no '{store.table}' table; is it a state.vscdb file?")

        logger.debug("Opened %s store %s", role, path)
        return store

    def close(self) -> None:
        if self._con is not None:
            self._con.close()
            self._con = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ---------- Index ----------

    def read_index(self) -> dict[str, Any] | None:
        """
        Reads the composer index document.

        Returns None if the key is absent or the document is malformed; malformed
        documents are logged, never raised. Writers use `load_index` instead.
        """
        try:
            return self.load_index()
        except DecodeError as e:
            logger.warning("Ignoring composer index in %s: %s", self.path, e.message)
            return None

    def load_index(self) -> dict[str, Any] | None:
        """
        Reads the composer index document, telling a missing index apart from a broken one.

        Returns None only if the key is absent.

        Raises:
            DecodeError: if the stored document is not a JSON object.
        """
        raw = self.read_value(INDEX_KEY)
        if raw is None:
            return None
        return _decode_index(raw)

    def write_index(self, index: dict[str, Any]) -> None:
        """Replaces the whole composer index document (insert-or-replace on its key)."""
        self._execute(
            f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
            (INDEX_KEY, to_json(index).decode("utf-8")),
        )

    # ---------- Key-value ----------

    def read_value(self, key: str) -> str | None:
        """Reads one value. Raises DecodeError if it is not UTF-8 text."""
        rows = self._query(f"SELECT value FROM {self.table} WHERE key = ? LIMIT 1", (key,))
        if not rows or rows[0][0] is None:
            return None
        return _as_text(rows[0][0], key)

    def read_payload(self, record_id: str) -> str | None:
        """Reads `composerData:<record_id>`. Undecodable values are logged and treated as absent."""
        key = payload_key(record_id)
        try:
            return self.read_value(key)
        except DecodeError as e:
            logger.warning("Treating %s in %s as absent: %s", key, self.path, e.message)
            return None

    def has_key(self, key: str) -> bool:
        return bool(self._query(f"SELECT 1 FROM {self.table} WHERE key = ? LIMIT 1", (key,)))

    def insert_if_absent(self, key: str, value: str) -> bool:
        """
        Inserts `key` only if it does not exist yet. Never overwrites.

        Returns True if a row was inserted.
        """
        if self.has_key(key):
            return False
        cursor = self._execute(f"INSERT OR IGNORE INTO {self.table} (key, value) VALUES (?, ?)", (key, value))
        return cursor.rowcount == 1

    def list_keys(self, prefix: str) -> list[str]:
        rows = self._query(
            f"SELECT key FROM {self.table} WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (escape_like(prefix) + "%",),
        )
        keys = (_as_text(row[0], "<key>") for row in rows)
        # LIKE is case-insensitive for ASCII; keep exact prefix matches only.
        return [k for k in keys if k.startswith(prefix)]

    def read_prefix(self, prefix: str) -> list[tuple[str, str]]:
        """Returns (key, value) pairs whose key starts with `prefix`, skipping undecodable values."""
        rows = self._query(
            f"SELECT key, value FROM {self.table} WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (escape_like(prefix) + "%",),
        )
        pairs: list[tuple[str, str]] = []
        for raw_key, raw_value in rows:
            try:
                key = _as_text(raw_key, "<key>")
                if not key.startswith(prefix) or raw_value is None:
                    continue
                pairs.append((key, _as_text(raw_value, key)))
            except DecodeError as e:
                logger.warning("Skipping entry in %s: %s", self.path, e.message)
        return pairs

    def read_fragments(self, record_id: str) -> list[FragmentEntry]:
        """Collects all bubbles stored under `bubbleId:<record_id>:`."""
        fragments: list[FragmentEntry] = []
        for key, value in self.read_prefix(fragment_prefix(record_id)):
            match parse_fragment_key(key):
                case (str(owner), str(fragment_id)) if owner == record_id:
                    fragments.append(FragmentEntry(key=key, value=value, fragment_id=fragment_id))
                case _:
                    logger.warning("Skipping bubble with unexpected key shape: %s", key)
        return fragments

    # ---------- Transactions & maintenance ----------

    @contextmanager
    def transaction(self) -> Iterator[Self]:
        """
        Runs the block inside BEGIN IMMEDIATE ... COMMIT.

        Any exception (including KeyboardInterrupt) rolls back before propagating.
        """
        if self._in_transaction:
            raise RuntimeError("Nested transactions are not supported.")
        _ = self._execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
            _ = self._execute("COMMIT")
        except BaseException:
            self._rollback()
            raise
        finally:
            self._in_transaction = False

    def checkpoint(self) -> None:
        """Best-effort WAL checkpoint so other readers see a compact file."""
        with suppress(sqlite3.Error):
            _ = self._connection().execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def check_integrity(self) -> bool:
        try:
            rows = self._connection().execute("PRAGMA integrity_check").fetchall()
        except sqlite3.DatabaseError as e:
            logger.error("Integrity check of %s raised: %s", self.path, e)
            return False
        ok = len(rows) == 1 and rows[0][0] == "ok"
        if not ok:
            details = "; ".join(str(row[0]) for row in rows[:5])
            logger.error("Integrity check of %s failed: %s", self.path, details)
        return ok

    def size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError as e:
            raise StoreUnavailableError(f"Could not stat store {self.path}: {e}") from e

    def copy_to(self, destination: Path) -> None:
        """Online copy of this database into `destination` via the SQLite backup API."""
        dest = sqlite3.connect(destination)
        try:
            self._connection().backup(dest)
        finally:
            dest.close()

    def copy_from(self, source: Path) -> None:
        """Overwrites this database with the contents of `source` via the SQLite backup API."""
        if self._in_transaction:
            raise RuntimeError("Cannot restore into a store with an open transaction.")
        src = sqlite3.connect(f"file:{quote(source.resolve().as_posix())}?mode=ro", uri=True)
        try:
            src.backup(self._connection())
        finally:
            src.close()

    # ---------- Internal ----------

    def _connection(self) -> sqlite3.Connection:
        if self._con is None:
            raise StoreUnavailableError(f"Store {self.path} is closed.")
        return self._con

    def _execute(self, sql: str, params: tuple[object, ...] = ()) -> sqlite3.Cursor:
        try:
            return self._connection().execute(sql, params)
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise StoreUnavailableError(
                    f"Store {self.path} is locked by another process (waited {self.busy_timeout:g}s). "
                    + "Close the editor or retry."
                ) from e
            raise StoreUnavailableError(f"Store {self.path} failed: {e}") from e
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Store {self.path} failed: {e}") from e

    def _query(self, sql: str, params: tuple[object, ...] = ()) -> list[tuple[Any, ...]]:
        cursor = self._execute(sql, params)
        try:
            return cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Store {self.path} failed: {e}") from e

    def _rollback(self) -> None:
        try:
            _ = self._connection().execute("ROLLBACK")
        except sqlite3.Error as e:
            # SQLite may already have rolled back on its own (e.g. after SQLITE_FULL).
            logger.debug("Rollback on %s reported: %s", self.path, e)


def _as_text(value: object, key: str) -> str:
    match value:
        case str():
            return value
        case bytes() | memoryview():
            try:
                return bytes(value).decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError(f"{key} is not UTF-8 text ({e.reason})") from e
        case _:
            return str(value)


def _decode_index(raw: str) -> dict[str, Any]:
    try:
        document = loads_any(raw)
    except msgspec.DecodeError as e:
        raise DecodeError(f"{INDEX_KEY} is not valid JSON: {e}") from e
    match document:
        case dict():
            return document
        case _:
            raise DecodeError(f"{INDEX_KEY} is a JSON {type(document).__name__}, expected an object")
