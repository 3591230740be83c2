"""
Repository layer

Generic keyed-collection store over the SQLite tables declared in db.py.
Keeps SQL isolated from the service logic to improve maintainability.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from db import COLLECTIONS, Collection
from errors import DuplicateKey

logger = logging.getLogger(__name__)


class Store:
    """
    Durable collections of plain dict records.

    Every write is committed before the call returns, unless it runs inside
    transaction(), in which case the whole block commits (or rolls back) as
    one unit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._tx_depth = 0

    def _collection(self, name: str) -> Collection:
        try:
            return COLLECTIONS[name]
        except KeyError:
            raise ValueError(f"Unknown collection '{name}'. Known: {', '.join(COLLECTIONS)}") from None

    def _to_record(self, coll: Collection, row: sqlite3.Row) -> dict:
        record = {}
        for record_key, column in coll.columns.items():
            value = row[column]
            if record_key in coll.json_fields and value is not None:
                value = json.loads(value)
            record[record_key] = value
        return record

    def _to_params(self, coll: Collection, record: dict) -> list[Any]:
        if not record.get(coll.key):
            raise ValueError(f"Record for '{coll.table}' is missing its key '{coll.key}'.")
        params = []
        for record_key in coll.columns:
            value = record.get(record_key)
            if record_key in coll.json_fields:
                value = json.dumps(value)
            params.append(value)
        return params

    def _write(self, sql: str, params: list[Any]) -> None:
        try:
            self._conn.execute(sql, params)
            if self._tx_depth == 0:
                self._conn.commit()
        except sqlite3.Error:
            # Roll back on any DB error to avoid partial writes.
            if self._tx_depth == 0:
                self._conn.rollback()
            raise

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Groups several writes so they commit together or not at all."""
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.rollback()
                logger.debug("Store transaction rolled back")
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.commit()

    def get(self, collection: str, key: str) -> Optional[dict]:
        coll = self._collection(collection)
        row = self._conn.execute(
            f"SELECT * FROM {coll.table} WHERE {coll.column(coll.key)} = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        return self._to_record(coll, row)

    def get_all(
        self,
        collection: str,
        index_key: Optional[str] = None,
        index_value: Optional[Any] = None,
    ) -> list[dict]:
        """
        Returns every record, or those whose index_key equals index_value.

        Order is insertion order, or index order when an index is named.
        Passing an index without a value returns all records sorted by it.
        """
        coll = self._collection(collection)
        if index_key is None:
            rows = self._conn.execute(f"SELECT * FROM {coll.table} ORDER BY rowid ASC").fetchall()
        else:
            if index_key not in coll.indexes:
                raise ValueError(f"Collection '{collection}' has no index '{index_key}'.")
            column = coll.indexes[index_key]
            if index_value is None:
                rows = self._conn.execute(
                    f"SELECT * FROM {coll.table} ORDER BY {column} ASC, rowid ASC"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    f"SELECT * FROM {coll.table} WHERE {column} = ? ORDER BY rowid ASC",
                    (index_value,),
                ).fetchall()
        return [self._to_record(coll, r) for r in rows]

    def add(self, collection: str, record: dict) -> str:
        coll = self._collection(collection)
        params = self._to_params(coll, record)
        key = record[coll.key]
        # Single writer per process, so check-then-insert cannot race.
        if self.get(collection, key) is not None:
            raise DuplicateKey(collection, key)
        columns = ", ".join(coll.columns.values())
        placeholders = ", ".join("?" for _ in coll.columns)
        self._write(f"INSERT INTO {coll.table} ({columns}) VALUES ({placeholders})", params)
        return key

    def update(self, collection: str, record: dict) -> str:
        """Upsert: creates the record if absent, else replaces it by primary key."""
        coll = self._collection(collection)
        params = self._to_params(coll, record)
        key_column = coll.column(coll.key)
        columns = ", ".join(coll.columns.values())
        placeholders = ", ".join("?" for _ in coll.columns)
        assignments = ", ".join(
            f"{c} = excluded.{c}" for c in coll.columns.values() if c != key_column
        )
        # ON CONFLICT keeps the rowid, so listing order survives updates.
        self._write(
            f"INSERT INTO {coll.table} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT({key_column}) DO UPDATE SET {assignments}",
            params,
        )
        return record[coll.key]

    def delete(self, collection: str, key: str) -> None:
        coll = self._collection(collection)
        self._write(f"DELETE FROM {coll.table} WHERE {coll.column(coll.key)} = ?", [key])

    def clear(self, collection: str) -> None:
        coll = self._collection(collection)
        self._write(f"DELETE FROM {coll.table}", [])

    def count(self, collection: str) -> int:
        coll = self._collection(collection)
        return int(self._conn.execute(f"SELECT COUNT(*) FROM {coll.table}").fetchone()[0])
