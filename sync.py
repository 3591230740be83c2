"""
Sync layer: the adapter contract, inbound merge and the auto-sync scheduler.

Policy is last-writer-wins on whole collections. Whatever the most recent
successful push or pull carried replaces the other side; there is no
field-level merge. Concurrent edits from two devices can therefore discard
one device's changes, which is a known limitation.

Cross-device checkout is only guaranteed per device. Each pushed snapshot
lists the orders its stock already reflects; every inbound snapshot goes
through reconcile() first, which re-applies local orders the snapshot lost,
clamps stock that ends below zero and flags the orders that oversold.
"""

import abc
import logging
import queue
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from backup import apply_snapshot, parse_snapshot
from component import utc_now_iso
from errors import ImportFormatError, SyncError
from events import DATA_CHANGED, SYNC_COMPLETED, SYNC_FAILED, Event, EventBus
from repositories import Store
from services import SYNCED_SETTINGS, SettingsService
from transaction import Transaction

logger = logging.getLogger(__name__)

RemoteListener = Callable[[dict], None]


class SyncAdapter(abc.ABC):
    """Capability set every remote backend provides."""

    name = "base"

    @abc.abstractmethod
    def push(self, document: dict) -> None:
        """Overwrites the remote document. Raises SyncError on failure."""

    @abc.abstractmethod
    def pull(self) -> Optional[dict]:
        """Returns the decoded remote document, or None when none is configured."""

    @abc.abstractmethod
    def subscribe(self, on_remote_change: RemoteListener) -> Callable[[], None]:
        """Registers a listener for remote changes; returns an unsubscribe callable."""

    def poll(self) -> bool:
        """Checks for a remote change and notifies listeners. Push-based backends do nothing."""
        return False

    def close(self) -> None:
        pass


# Order ids carried in the remote document; older ids fall off the front.
MAX_TRACKED_ORDERS = 1000


def _merge_ids(*groups: list[str]) -> list[str]:
    merged: dict[str, None] = {}
    for group in groups:
        for order_id in group:
            merged.pop(order_id, None)
            merged[order_id] = None
    return list(merged)[-MAX_TRACKED_ORDERS:]


def local_orders(store: Store) -> list[Transaction]:
    """The device's own order history, oldest first, limited to the tracked window."""
    history = [Transaction.from_record(r) for r in store.get_all("transactions", "date")]
    return history[-MAX_TRACKED_ORDERS:]


def build_remote_document(store: Store, settings: SettingsService) -> dict:
    """
    The synced shape: export minus transactions and device-local settings.

    `orders` lists the ids of every order whose stock decrement the snapshot
    already contains, so a receiving device can tell which of its own orders
    a later overwrite has lost.
    """
    now = utc_now_iso()
    return {
        "components": store.get_all("components"),
        "cart": store.get_all("cart"),
        "settings": {
            "currency": settings.currency,
            "lowStockThreshold": settings.low_stock_threshold,
            "lastSync": now,
        },
        "orders": _merge_ids(settings.get("syncedOrders") or [], [t.id for t in local_orders(store)]),
        "lastUpdated": now,
    }


@dataclass
class ReconciliationReport:
    clamped_components: list[str] = field(default_factory=list)
    dropped_cart_lines: list[str] = field(default_factory=list)
    replayed_orders: list[str] = field(default_factory=list)
    flagged_transactions: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.clamped_components or self.dropped_cart_lines or self.flagged_transactions)


def _inbound_order_ids(document: dict) -> list[str]:
    orders = document.get("orders")
    if not isinstance(orders, list):
        return []
    return [o for o in orders if isinstance(o, str)]


def reconcile(document: dict, history: list[Transaction], first_contact: bool = False) -> ReconciliationReport:
    """
    Repairs an inbound document in place.

    Local orders missing from the document's `orders` list were overwritten
    by another device's push; their quantities are subtracted again from the
    inbound stock. Stock that ends below zero is clamped to zero and the
    local orders that took it there are flagged. On first contact the local
    history belongs to a different inventory and is not replayed.

    Cart lines below one (or bounded by a max below one) are dropped and
    quantities above maxQuantity are capped.
    """
    report = ReconciliationReport()
    components = document.get("components")
    if isinstance(components, list):
        records = {}
        running = {}
        for record in components:
            stock = record.get("stock") if isinstance(record, dict) else None
            if isinstance(stock, (int, float)) and not isinstance(stock, bool) and float(stock).is_integer():
                records[record.get("id")] = record
                running[record.get("id")] = int(stock)

        if not first_contact:
            reflected = set(_inbound_order_ids(document))
            for order in history:
                if order.id in reflected:
                    continue
                touched = [item for item in order.items if item.component_id in running]
                if not touched:
                    continue
                report.replayed_orders.append(order.id)
                for item in touched:
                    running[item.component_id] -= item.quantity
                if any(running[item.component_id] < 0 for item in touched):
                    report.flagged_transactions.append(order.id)

        for component_id, stock in running.items():
            record = records[component_id]
            if stock < 0:
                logger.warning("Stock for %s reconciled to %s; clamped to 0", component_id, stock)
                report.clamped_components.append(str(component_id))
                stock = 0
            if stock != record["stock"]:
                record["stock"] = stock

    if isinstance(document.get("cart"), list):
        kept = []
        for line in document["cart"]:
            qty = line.get("quantity") if isinstance(line, dict) else None
            max_qty = line.get("maxQuantity") if isinstance(line, dict) else None
            if isinstance(qty, (int, float)) and qty < 1:
                report.dropped_cart_lines.append(str(line.get("id")))
                continue
            if isinstance(max_qty, (int, float)) and max_qty < 1:
                report.dropped_cart_lines.append(str(line.get("id")))
                continue
            if isinstance(qty, (int, float)) and isinstance(max_qty, (int, float)) and qty > max_qty:
                line["quantity"] = max_qty
            kept.append(line)
        document["cart"] = kept
    return report


def merge_inbound(store: Store, settings: SettingsService, document: dict) -> ReconciliationReport:
    """Replaces local components/cart (and synced settings) with an inbound document."""
    if not isinstance(document, dict):
        raise SyncError("Remote document is not an object.")
    history = local_orders(store)
    report = reconcile(document, history, first_contact=settings.get("syncedOrders") is None)
    if report.replayed_orders:
        logger.info("Replayed %d local order(s) missing from the remote snapshot", len(report.replayed_orders))

    # Historical orders are never synced; ignore them if a remote carries any.
    inbound = {k: document[k] for k in ("components", "cart") if k in document}
    remote_settings = document.get("settings")
    if isinstance(remote_settings, dict):
        inbound["settings"] = {k: remote_settings[k] for k in SYNCED_SETTINGS if k in remote_settings}
    try:
        snapshot = parse_snapshot(inbound)
    except ImportFormatError as e:
        raise SyncError(f"Remote document is malformed: {e}") from e
    apply_snapshot(store, snapshot)

    # Local stock now accounts for every local order, replayed or not.
    settings.set("syncedOrders", _merge_ids(_inbound_order_ids(document), [t.id for t in history]))
    settings.set("lastSync", utc_now_iso())
    if report.flagged_transactions:
        logger.warning("Flagged %d transaction(s) for review", len(report.flagged_transactions))
        settings.flag_for_review(report.flagged_transactions)
    return report


class SyncScheduler:
    """
    Pushes a full snapshot after mutations when auto-sync is on.

    Bursts inside batch() collapse into one trailing push. A failed push is
    logged and published as SYNC_FAILED; it never undoes the local write and
    is not retried until the next mutation.

    Remote changes arrive on whatever thread the backend uses, so they are
    queued and applied by process_remote_changes() on the writer thread.
    """

    def __init__(
        self,
        adapter: SyncAdapter,
        store: Store,
        settings: SettingsService,
        event_bus: EventBus,
        poll_interval: float = 30.0,
    ) -> None:
        self.adapter = adapter
        self.poll_interval = poll_interval
        self._last_poll: Optional[float] = None
        self._store = store
        self._settings = settings
        self._events = event_bus
        self._batch_depth = 0
        self._pending = False
        self._inbox: "queue.Queue[dict]" = queue.Queue()
        self._stop_listening: Optional[Callable[[], None]] = None
        self.last_error: Optional[SyncError] = None
        self.push_count = 0
        self._unsubscribe = event_bus.subscribe(DATA_CHANGED, self._on_data_changed)

    def _on_data_changed(self, event: Event) -> None:
        if not self._settings.auto_sync:
            return
        if self._batch_depth:
            self._pending = True
            return
        self.sync_now()

    @contextmanager
    def batch(self) -> Iterator[None]:
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._pending:
                self._pending = False
                self.sync_now()

    def _failed(self, direction: str, error: SyncError) -> None:
        self.last_error = error
        logger.warning("Sync %s via %s failed: %s", direction, self.adapter.name, error)
        self._events.emit(SYNC_FAILED, direction=direction, backend=self.adapter.name, error=str(error))

    def sync_now(self) -> bool:
        document = build_remote_document(self._store, self._settings)
        try:
            self.adapter.push(document)
        except SyncError as e:
            self._failed("push", e)
            return False
        self.push_count += 1
        self.last_error = None
        self._settings.set("syncedOrders", document["orders"])
        self._settings.set("lastSync", document["settings"]["lastSync"])
        logger.info("Pushed snapshot via %s", self.adapter.name)
        self._events.emit(SYNC_COMPLETED, direction="push", backend=self.adapter.name)
        return True

    def pull_now(self) -> Optional[ReconciliationReport]:
        try:
            document = self.adapter.pull()
            if document is None:
                return None
            return self._apply(document)
        except SyncError as e:
            self._failed("pull", e)
            return None

    def _apply(self, document: dict) -> ReconciliationReport:
        report = merge_inbound(self._store, self._settings, document)
        logger.info("Applied remote snapshot via %s", self.adapter.name)
        self._events.emit(SYNC_COMPLETED, direction="pull", backend=self.adapter.name, report=report)
        return report

    def start_listening(self) -> None:
        if self._stop_listening is None:
            self._stop_listening = self.adapter.subscribe(self._inbox.put)

    def stop_listening(self) -> None:
        if self._stop_listening is not None:
            self._stop_listening()
            self._stop_listening = None

    def _poll_if_due(self) -> None:
        now = time.monotonic()
        if self._last_poll is not None and now - self._last_poll < self.poll_interval:
            return
        self._last_poll = now
        try:
            self.adapter.poll()
        except SyncError as e:
            self._failed("pull", e)

    def process_remote_changes(self) -> Optional[ReconciliationReport]:
        """
        Applies the newest queued remote document; older ones are superseded.

        While listening, polling backends are checked first, at most once per
        poll_interval seconds.
        """
        if self._stop_listening is not None:
            self._poll_if_due()
        latest = None
        while True:
            try:
                latest = self._inbox.get_nowait()
            except queue.Empty:
                break
        if latest is None:
            return None
        try:
            return self._apply(latest)
        except SyncError as e:
            self._failed("pull", e)
            return None

    def close(self) -> None:
        self.stop_listening()
        self._unsubscribe()
        self.adapter.close()


class NullSyncAdapter(SyncAdapter):
    """Used when no remote backend is configured; every call is a no-op."""

    name = "none"

    def push(self, document: dict) -> None:
        return None

    def pull(self) -> Optional[dict]:
        return None

    def subscribe(self, on_remote_change: RemoteListener) -> Callable[[], None]:
        return lambda: None
