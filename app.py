"""
Application context.

One AppContext lives for one session and owns the connection, the event
bus, the services and the sync scheduler. Front ends call through it
instead of sharing module-level state.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

import backup
from cart import CartService
from checkout import CheckoutService
from config import Settings, build_sync_adapter
from db import get_connection, init_db
from events import DATA_CHANGED, EventBus
from repositories import Store
from services import InventoryService, SettingsService
from sync import NullSyncAdapter, SyncAdapter, SyncScheduler
from transaction import Transaction

logger = logging.getLogger(__name__)


class AppContext:
    def __init__(self, conn: sqlite3.Connection, sync_adapter: Optional[SyncAdapter] = None) -> None:
        init_db(conn)
        self.conn = conn
        self.events = EventBus()
        self.store = Store(conn)
        self.settings = SettingsService(self.store, self.events)
        self.inventory = InventoryService(self.store, self.events, self.settings)
        self.cart = CartService(self.store, self.events, self.inventory)
        self.checkout_service = CheckoutService(self.store, self.events, self.inventory, self.cart)
        self.sync = SyncScheduler(sync_adapter or NullSyncAdapter(), self.store, self.settings, self.events)

    @classmethod
    def from_settings(cls, config: Settings) -> AppContext:
        conn = get_connection(config.db_path)
        # The gist backend persists its id through SettingsService, so the
        # context is built first and the adapter attached afterwards.
        ctx = cls(conn)
        try:
            ctx.sync.adapter = build_sync_adapter(config, ctx.settings)
            ctx.sync.poll_interval = config.sync_poll_interval
        except Exception:
            ctx.close()
            raise
        if config.seed_demo_data:
            ctx.seed_demo()
        return ctx

    # Multi-write operations run inside sync.batch() so auto-sync pushes once.

    def checkout(self) -> Transaction:
        with self.sync.batch():
            return self.checkout_service.checkout()

    def import_json(self, text: str) -> backup.Snapshot:
        with self.sync.batch():
            snapshot = backup.import_json(self.store, text)
            self.events.emit(DATA_CHANGED, collection="*", source="import")
        return snapshot

    def export_json(self) -> str:
        return backup.export_json(self.store)

    def reset(self, keep_sync: bool = True) -> None:
        with self.sync.batch():
            backup.reset(self.store, keep_sync=keep_sync)
            self.events.emit(DATA_CHANGED, collection="*", source="reset")

    def seed_demo(self) -> bool:
        with self.sync.batch():
            seeded = backup.seed_demo(self.store)
            if seeded:
                self.events.emit(DATA_CHANGED, collection="components", source="demo")
        return seeded

    def close(self) -> None:
        self.sync.close()
        self.conn.close()
