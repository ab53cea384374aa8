"""
Durable record collections.

A collection is a keyed set of JSON-serializable records that survives
process restarts. All writes go through `mutate()`, a read-modify-write
step: the callback receives the full mapping, edits it in place, and the
collection persists the result.

Two backends:
- JsonRecordCollection: a flat JSON array document, rewritten wholesale on
  every change. Atomic against readers and against other threads of the
  same process, but two processes can still interleave and lose an update.
- SqliteRecordCollection: one row per record, each mutation inside a
  `BEGIN IMMEDIATE` transaction, so read-modify-write is atomic across
  processes too.
"""

import copy
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, TypeVar

from hexworld.generation.shared import atomic_write_json

logger = logging.getLogger(__name__)

T = TypeVar("T")
Records = dict[str, dict[str, Any]]


class RecordCollection(ABC):
  """A durable mapping of key -> record with atomic read-modify-write."""

  @abstractmethod
  def load(self) -> Records:
    """Return a snapshot of all records."""

  @abstractmethod
  def mutate(self, fn: Callable[[Records], T]) -> T:
    """
    Apply fn to the full mapping and persist any change atomically.

    Returns whatever fn returns.
    """

  def get(self, key: str) -> dict[str, Any] | None:
    return self.load().get(key)


class JsonRecordCollection(RecordCollection):
  """Records stored as a JSON array in a single file."""

  def __init__(self, path: Path, key_field: str):
    self.path = Path(path)
    self.key_field = key_field
    self._lock = threading.Lock()

  def _read(self) -> Records:
    if not self.path.exists():
      return {}
    try:
      with open(self.path, encoding="utf-8") as f:
        entries = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
      logger.warning(f"Failed to load {self.path}, using empty data: {e}")
      return {}
    if not isinstance(entries, list):
      logger.warning(f"Expected a JSON array in {self.path}, using empty data")
      return {}
    records: Records = {}
    for entry in entries:
      if isinstance(entry, dict) and self.key_field in entry:
        records[str(entry[self.key_field])] = entry
    return records

  def load(self) -> Records:
    with self._lock:
      return self._read()

  def mutate(self, fn: Callable[[Records], T]) -> T:
    with self._lock:
      records = self._read()
      before = copy.deepcopy(records)
      result = fn(records)
      if records != before:
        atomic_write_json(self.path, list(records.values()))
      return result


class SqliteRecordCollection(RecordCollection):
  """Records stored as JSON rows in a SQLite table."""

  def __init__(self, db_path: Path, table: str, key_field: str):
    if not table.isidentifier():
      raise ValueError(f"Invalid table name: {table}")
    self.db_path = Path(db_path)
    self.table = table
    self.key_field = key_field
    self._init_table()

  def _connect(self) -> sqlite3.Connection:
    self.db_path.parent.mkdir(parents=True, exist_ok=True)
    # Autocommit mode; transactions are opened explicitly
    return sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)

  def _init_table(self) -> None:
    conn = self._connect()
    try:
      conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {self.table} (
          key TEXT PRIMARY KEY,
          record TEXT NOT NULL
        )
      """)
    finally:
      conn.close()

  def _read(self, conn: sqlite3.Connection) -> Records:
    cursor = conn.execute(f"SELECT key, record FROM {self.table}")
    return {row[0]: json.loads(row[1]) for row in cursor.fetchall()}

  def load(self) -> Records:
    conn = self._connect()
    try:
      return self._read(conn)
    finally:
      conn.close()

  def mutate(self, fn: Callable[[Records], T]) -> T:
    conn = self._connect()
    try:
      conn.execute("BEGIN IMMEDIATE")
      try:
        records = self._read(conn)
        before = copy.deepcopy(records)
        result = fn(records)

        for key in before.keys() - records.keys():
          conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
        for key, record in records.items():
          if before.get(key) != record:
            conn.execute(
              f"INSERT OR REPLACE INTO {self.table} (key, record) VALUES (?, ?)",
              (key, json.dumps(record)),
            )
        conn.execute("COMMIT")
        return result
      except BaseException:
        conn.execute("ROLLBACK")
        raise
    finally:
      conn.close()


def open_collection(
  backend: str, logs_dir: Path, name: str, key_field: str
) -> RecordCollection:
  """
  Open a named collection with the configured backend.

  Args:
    backend: "json" (logs_dir/<name>.json) or "sqlite" (logs_dir/ledger.db)
    logs_dir: Directory holding the durable state
    name: Collection name, also the SQLite table name
    key_field: Record field used as the key
  """
  if backend == "json":
    return JsonRecordCollection(logs_dir / f"{name}.json", key_field)
  if backend == "sqlite":
    return SqliteRecordCollection(logs_dir / "ledger.db", name, key_field)
  raise ValueError(f"Unknown ledger backend: {backend}")
