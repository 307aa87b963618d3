"""Transactional partitioned key-value store backed by SQLite.

A partition is a named key space with its own monotonic sequence. Keys are
8-byte big-endian unsigned integers, so SQLite's BLOB ordering yields
ascending-id scans. Values are JSON records.

Write transactions are exclusive process-wide; read transactions share a
snapshot and run alongside each other but never alongside a write.
Transactions do not nest.
"""

from __future__ import annotations

import logging
import sqlite3
import struct
import threading
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .constants import (
    FIXED_PARTITIONS,
    KEY_WIDTH,
    META_PARTITION,
    SCHEMA_VERSION,
    VERSION_KEY,
)
from .errors import SchemaVersionError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_KEY_FORMAT = ">Q"


def encode_key(value: int) -> bytes:
    """Encode an id as an 8-byte big-endian key."""
    try:
        return struct.pack(_KEY_FORMAT, value)
    except struct.error as e:
        raise StorageError(f"id {value!r} is not a valid key: {e}") from e


def decode_key(key: bytes) -> int:
    """Decode an 8-byte big-endian key back to an id."""
    if len(key) != KEY_WIDTH:
        raise StorageError(f"key of {len(key)} bytes is not an id key")
    return struct.unpack(_KEY_FORMAT, key)[0]


def _to_key(key: int | bytes | str) -> bytes:
    if isinstance(key, int):
        return encode_key(key)
    if isinstance(key, str):
        return key.encode()
    return key


def dump_record(record: BaseModel) -> str:
    """Serialize a model for storage."""
    try:
        return record.model_dump_json()
    except PydanticSerializationError as e:
        raise StorageError(f"failed to serialize {type(record).__name__}: {e}") from e


def load_record(model: type[T] | TypeAdapter[T], raw: str) -> T:
    """Deserialize a stored record into model (a model class or TypeAdapter)."""
    try:
        if isinstance(model, TypeAdapter):
            return model.validate_json(raw)
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise StorageError(f"corrupt record: {e}") from e


class _RWLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Partition:
    """A named key space seen through one transaction."""

    def __init__(self, tx: Transaction, name: str):
        self._tx = tx
        self.name = name

    def get(self, key: int | bytes | str) -> str | None:
        row = self._tx._execute(
            "SELECT value FROM records WHERE partition = ? AND key = ?",
            (self.name, _to_key(key)),
        ).fetchone()
        return None if row is None else row[0]

    def contains(self, key: int | bytes | str) -> bool:
        return self.get(key) is not None

    def put(self, key: int | bytes | str, value: str) -> None:
        self._tx._require_writable()
        self._tx._execute(
            "INSERT OR REPLACE INTO records (partition, key, value) VALUES (?, ?, ?)",
            (self.name, _to_key(key), value),
        )

    def delete(self, key: int | bytes | str) -> bool:
        """Delete a key. Returns False if it was not present."""
        self._tx._require_writable()
        cursor = self._tx._execute(
            "DELETE FROM records WHERE partition = ? AND key = ?",
            (self.name, _to_key(key)),
        )
        return cursor.rowcount > 0

    def scan(self) -> list[tuple[int, str]]:
        """All (id, value) pairs in ascending id order.

        Materialized up front so callers may delete while iterating.
        """
        rows = self._tx._execute(
            "SELECT key, value FROM records WHERE partition = ? ORDER BY key",
            (self.name,),
        ).fetchall()
        return [(decode_key(row[0]), row[1]) for row in rows]

    def next_sequence(self) -> int:
        """Advance and return this partition's sequence."""
        self._tx._require_writable()
        self._tx._execute(
            "UPDATE partitions SET sequence = sequence + 1 WHERE name = ?",
            (self.name,),
        )
        row = self._tx._execute(
            "SELECT sequence FROM partitions WHERE name = ?", (self.name,)
        ).fetchone()
        return row[0]


class Transaction:
    """Handle passed to transaction bodies."""

    def __init__(self, conn: sqlite3.Connection, writable: bool):
        self._conn = conn
        self.writable = writable

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)

    def _require_writable(self) -> None:
        if not self.writable:
            raise StorageError("cannot mutate inside a read transaction")

    def has_partition(self, name: str) -> bool:
        row = self._execute("SELECT 1 FROM partitions WHERE name = ?", (name,)).fetchone()
        return row is not None

    def partition(self, name: str) -> Partition:
        if not self.has_partition(name):
            raise StorageError(f"partition {name!r} does not exist")
        return Partition(self, name)

    def create_partition(self, name: str, exist_ok: bool = False) -> Partition:
        self._require_writable()
        if self.has_partition(name):
            if not exist_ok:
                raise StorageError(f"partition {name!r} already exists")
        else:
            self._execute("INSERT INTO partitions (name, sequence) VALUES (?, 0)", (name,))
        return Partition(self, name)

    def drop_partition(self, name: str) -> None:
        self._require_writable()
        if not self.has_partition(name):
            raise StorageError(f"partition {name!r} does not exist")
        self._execute("DELETE FROM records WHERE partition = ?", (name,))
        self._execute("DELETE FROM partitions WHERE name = ?", (name,))


class Store:
    """Single-file transactional store."""

    def __init__(self, db_path: Path):
        """Open (and on first run, initialize) the store.

        Args:
            db_path: Path to agnt.db

        Raises:
            SchemaVersionError: the file was written by an unknown schema.
            StorageError: the file could not be opened or initialized.
        """
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = _RWLock()
        self._local = threading.local()
        self._conns: list[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=30.0,
                    isolation_level=None,  # transactions are managed explicitly
                    check_same_thread=False,
                )
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA busy_timeout=30000")
            except sqlite3.Error as e:
                raise StorageError(f"failed to open database {self.db_path}: {e}") from e
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
        return conn

    def _init_db(self) -> None:
        """Create tables, then check or set the schema marker."""
        conn = self._get_conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS partitions (
                    name TEXT PRIMARY KEY,
                    sequence INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS records (
                    partition TEXT NOT NULL,
                    key BLOB NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (partition, key)
                ) WITHOUT ROWID;
            """)
        except sqlite3.Error as e:
            raise StorageError(f"failed to create tables: {e}") from e

        with self.write_tx() as tx:
            meta = tx.create_partition(META_PARTITION, exist_ok=True)
            version = meta.get(VERSION_KEY)
            if version is None:
                logger.info(f"Initializing new store at {self.db_path}")
                meta.put(VERSION_KEY, SCHEMA_VERSION)
                for name in FIXED_PARTITIONS:
                    tx.create_partition(name)
            elif version != SCHEMA_VERSION:
                raise SchemaVersionError(version)

    @contextmanager
    def _transaction(self, writable: bool) -> Iterator[Transaction]:
        if getattr(self._local, "in_tx", False):
            raise StorageError("transactions do not nest")
        lock = self._lock.write() if writable else self._lock.read()
        with lock:
            conn = self._get_conn()
            self._local.in_tx = True
            try:
                conn.execute("BEGIN IMMEDIATE" if writable else "BEGIN")
            except sqlite3.Error as e:
                self._local.in_tx = False
                raise StorageError(f"failed to begin transaction: {e}") from e
            try:
                yield Transaction(conn, writable)
            except BaseException as e:
                self._rollback(conn)
                if isinstance(e, sqlite3.Error):
                    raise StorageError(f"transaction aborted: {e}") from e
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback(conn)
                    raise StorageError(f"failed to commit: {e}") from e
            finally:
                self._local.in_tx = False

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # SQLite may already have rolled back on its own after some errors
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def read_tx(self) -> AbstractContextManager[Transaction]:
        """Context manager yielding a read-only Transaction."""
        return self._transaction(writable=False)

    def write_tx(self) -> AbstractContextManager[Transaction]:
        """Context manager yielding a writable Transaction."""
        return self._transaction(writable=True)

    def view(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn inside a read transaction and return its result."""
        with self.read_tx() as tx:
            return fn(tx)

    def update(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn inside a write transaction and return its result."""
        with self.write_tx() as tx:
            return fn(tx)

    def close(self) -> None:
        """Close all connections.

        Forces a WAL checkpoint first so the main file holds every change.
        """
        with self._conns_lock:
            conns, self._conns = self._conns, []
        for i, conn in enumerate(conns):
            try:
                if i == 0:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing database connection: {e}")
        self._local = threading.local()
