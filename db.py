"""
SQLite database utilities and schema initialisation.

Design goals:
- Reliable: stock has a CHECK constraint as a last line of defence.
- Maintainable: single place for schema, connection behaviour and the
  mapping between wire-format record keys and table columns.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Collection:
    """Describes how one keyed collection maps onto its table."""

    table: str
    key: str
    # Record key -> column name, in column order.
    columns: dict[str, str]
    # Index key -> column name for get_all(index_key=...).
    indexes: dict[str, str] = field(default_factory=dict)
    # Record keys stored as JSON text.
    json_fields: frozenset[str] = frozenset()

    def column(self, record_key: str) -> str:
        return self.columns[record_key]


COLLECTIONS: dict[str, Collection] = {
    "components": Collection(
        table="components",
        key="id",
        columns={
            "id": "id",
            "name": "name",
            "category": "category",
            "stock": "stock",
            "cost": "cost",
            "description": "description",
            "createdAt": "created_at",
            "updatedAt": "updated_at",
        },
        indexes={"category": "category", "name": "name"},
    ),
    "cart": Collection(
        table="cart",
        key="id",
        columns={
            "id": "id",
            "componentId": "component_id",
            "name": "name",
            "price": "price",
            "quantity": "quantity",
            "maxQuantity": "max_quantity",
            "addedAt": "added_at",
        },
        indexes={"componentId": "component_id"},
    ),
    "settings": Collection(
        table="settings",
        key="key",
        columns={"key": "key", "value": "value", "updatedAt": "updated_at"},
        json_fields=frozenset({"value"}),
    ),
    "transactions": Collection(
        table="transactions",
        key="id",
        columns={"id": "id", "date": "date", "items": "items", "total": "total"},
        indexes={"date": "date"},
        json_fields=frozenset({"items"}),
    ),
}


def get_connection(db_path: str) -> sqlite3.Connection:
    """
    Creates a SQLite connection with consistent settings.

    - Row factory enabled for dict-like access
    - Foreign keys enabled (off by default in sqlite)
    """
    conn = sqlite3.connect(db_path)
    # Access rows like dicts: row["column_name"].
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Creates tables if they do not already exist."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS components (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            category    TEXT NOT NULL DEFAULT '',
            stock       INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0),
            cost        TEXT NOT NULL DEFAULT '0.00',
            description TEXT NOT NULL DEFAULT '',
            created_at  TEXT NOT NULL DEFAULT '',
            updated_at  TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS cart (
            id           TEXT PRIMARY KEY,
            component_id TEXT NOT NULL,
            name         TEXT NOT NULL DEFAULT '',
            price        TEXT NOT NULL DEFAULT '0.00',
            quantity     INTEGER NOT NULL CHECK (quantity >= 1),
            max_quantity INTEGER NOT NULL,
            added_at     TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS settings (
            key        TEXT PRIMARY KEY,
            value      TEXT,
            updated_at TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS transactions (
            id    TEXT PRIMARY KEY,
            date  TEXT NOT NULL,
            items TEXT NOT NULL DEFAULT '[]',
            total TEXT NOT NULL DEFAULT '0.00'
        );

        CREATE INDEX IF NOT EXISTS idx_components_category ON components(category);
        CREATE INDEX IF NOT EXISTS idx_components_name ON components(name);
        CREATE INDEX IF NOT EXISTS idx_cart_component ON cart(component_id);
        CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);
        """
    )
    conn.commit()
