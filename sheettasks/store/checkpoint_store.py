from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol

from sheettasks.models.checkpoint import Checkpoint, ListCounters

"""Durable key/value checkpoint storage.

The export state lives under five string keys so that a backend only has to
offer get/set/delete of text values:

    lastProcessedRow    next 1-based row to process
    sourceSheetName     source identifier of the running export
    taskListCache       JSON object list name -> remote list id
    lastKnownListTitle  list title carried forward across batches
    executionReport     JSON object list name -> {total, completed, needsAction}

Backends:
- JsonFileStore: one JSON document, replaced atomically on every write
- PostgresStore: (key, value) table accessed through psycopg2
"""

__all__ = [
    "ALL_KEYS",
    "CheckpointStore",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PostgresStore",
    "StoreError",
]

KEY_ROW = "lastProcessedRow"
KEY_SOURCE = "sourceSheetName"
KEY_CACHE = "taskListCache"
KEY_LIST = "lastKnownListTitle"
KEY_REPORT = "executionReport"
ALL_KEYS = (KEY_ROW, KEY_SOURCE, KEY_CACHE, KEY_LIST, KEY_REPORT)


class StoreError(Exception):
    """Checkpoint backend failed or holds a value that cannot be decoded."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def set_many(self, items: dict[str, str]) -> None: ...
    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, used by tests and dry runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def set_many(self, items: dict[str, str]) -> None:
        for key, value in items.items():
            self.set(key, value)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """Key/value store persisted as a single JSON file.

    Writes go to `<path>.tmp` and are renamed over the target so an
    interrupted run never leaves a half-written checkpoint.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"cannot read checkpoint file {self.path}: {e}") from e
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(f"corrupt checkpoint file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"corrupt checkpoint file {self.path}: expected an object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"cannot write checkpoint file {self.path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def set_many(self, items: dict[str, str]) -> None:
        """Write several keys with a single replace of the file."""
        data = self._read()
        data.update(items)
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class PostgresStore:
    """Key/value store backed by a PostgreSQL table.

    Every operation runs in its own transaction and commits immediately, so
    state written by a batch survives even if the process dies right after.
    """

    def __init__(self, connection: Any, table: str = "sheettasks_checkpoint") -> None:
        self._conn = connection
        self._table = table
        self._execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )

    @classmethod
    def connect(cls, dsn: str, table: str = "sheettasks_checkpoint") -> PostgresStore:
        try:
            import psycopg2
        except ImportError as e:  # psycopg2-binary が依存にある想定
            raise StoreError(f"psycopg2 not available: {e}") from e
        try:
            conn = psycopg2.connect(dsn)
        except psycopg2.Error as e:
            raise StoreError(f"cannot connect to checkpoint database: {e}") from e
        return cls(conn, table)

    def _execute(self, sql: str, params: tuple[Any, ...] = (), fetch: bool = False) -> Any:
        return self._transaction([(sql, params)], fetch=fetch)

    def _transaction(self, statements: list[tuple[str, tuple[Any, ...]]], fetch: bool = False) -> Any:
        try:
            row = None
            with self._conn.cursor() as cur:
                for sql, params in statements:
                    cur.execute(sql, params)
                if fetch:
                    row = cur.fetchone()
            self._conn.commit()
            return row
        except Exception as e:
            try:
                self._conn.rollback()
            except Exception:  # pragma: no cover
                pass
            raise StoreError(f"checkpoint query failed: {e}") from e

    def get(self, key: str) -> str | None:
        row = self._execute(f"SELECT value FROM {self._table} WHERE key = %s", (key,), fetch=True)
        return row[0] if row else None

    def _upsert_sql(self) -> str:
        return (
            f"INSERT INTO {self._table} (key, value) VALUES (%s, %s) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value"
        )

    def set(self, key: str, value: str) -> None:
        self._execute(self._upsert_sql(), (key, value))

    def set_many(self, items: dict[str, str]) -> None:
        """Upsert every key in one transaction."""
        sql = self._upsert_sql()
        self._transaction([(sql, (key, value)) for key, value in items.items()])

    def delete(self, key: str) -> None:
        self._execute(f"DELETE FROM {self._table} WHERE key = %s", (key,))

    def close(self) -> None:
        try:
            self._conn.close()
        except Exception:  # pragma: no cover
            pass


def _decode_json_object(raw: str | None, key: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoreError(f"checkpoint key {key} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise StoreError(f"checkpoint key {key} is not a JSON object")
    return data


class CheckpointStore:
    """Loads and stores Checkpoint values over a KeyValueStore."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def begin(self, source: str) -> None:
        """Start a fresh run: wipe every key, then record the source."""
        self.clear()
        self.kv.set(KEY_SOURCE, source)

    def clear(self) -> None:
        for key in ALL_KEYS:
            self.kv.delete(key)

    def source(self) -> str | None:
        return self.kv.get(KEY_SOURCE) or None

    def load(self, first_data_row: int) -> Checkpoint:
        """Read the checkpoint, applying defaults for absent keys.

        A non-numeric cursor falls back to first_data_row. A cursor below the
        first data row is raised to it.
        """
        raw_row = self.kv.get(KEY_ROW)
        try:
            next_row = int(raw_row) if raw_row else first_data_row
        except ValueError:
            next_row = first_data_row
        cache = {str(k): str(v) for k, v in _decode_json_object(self.kv.get(KEY_CACHE), KEY_CACHE).items()}
        report_raw = _decode_json_object(self.kv.get(KEY_REPORT), KEY_REPORT)
        report = {
            str(name): ListCounters.from_dict(counters if isinstance(counters, dict) else {})
            for name, counters in report_raw.items()
        }
        return Checkpoint(
            source=self.source(),
            next_row=max(next_row, first_data_row),
            list_cache=cache,
            last_list_name=self.kv.get(KEY_LIST) or None,
            report=report,
        )

    def save(self, checkpoint: Checkpoint) -> None:
        """Persist the batch state as one write.

        The cursor is the last key written: a backend that fails part way
        leaves the previous cursor in place and the batch is redone.
        """
        items = {
            KEY_CACHE: json.dumps(checkpoint.list_cache, ensure_ascii=False),
            KEY_REPORT: json.dumps(checkpoint.report_as_dict(), ensure_ascii=False),
        }
        if checkpoint.last_list_name:
            items[KEY_LIST] = checkpoint.last_list_name
        items[KEY_ROW] = str(checkpoint.next_row)
        self.kv.set_many(items)
