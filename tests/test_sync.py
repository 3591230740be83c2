import copy
import unittest
from decimal import Decimal
from typing import Callable, Optional

from app import AppContext
from db import get_connection
from errors import SyncError
from events import SYNC_FAILED
from sync import SyncAdapter, build_remote_document, merge_inbound, reconcile
from transaction import Transaction, TransactionItem


class MemoryRemote:
    """Stands in for the remote document shared by several devices."""

    def __init__(self) -> None:
        self.document: Optional[dict] = None
        self.fail_next = False


class MemoryAdapter(SyncAdapter):
    name = "memory"

    def __init__(self, remote: MemoryRemote) -> None:
        self.remote = remote
        self.pushes: list[dict] = []
        self.listeners: list[Callable[[dict], None]] = []

    def push(self, document: dict) -> None:
        if self.remote.fail_next:
            self.remote.fail_next = False
            raise SyncError("remote unavailable")
        self.pushes.append(document)
        self.remote.document = copy.deepcopy(document)

    def pull(self) -> Optional[dict]:
        return copy.deepcopy(self.remote.document)

    def subscribe(self, on_remote_change):
        self.listeners.append(on_remote_change)
        return lambda: self.listeners.remove(on_remote_change)


class SyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.remote = MemoryRemote()
        self.device_a = self._device()
        self.device_b = self._device()

    def _device(self) -> AppContext:
        ctx = AppContext(get_connection(":memory:"), MemoryAdapter(self.remote))
        self.addCleanup(ctx.close)
        return ctx

    def _add(self, ctx: AppContext, name: str, stock: int = 5):
        return ctx.inventory.add_component({"name": name, "category": "Parts", "stock": stock, "cost": "1.00"})

    def test_remote_document_shape(self) -> None:
        self._add(self.device_a, "A")
        doc = build_remote_document(self.device_a.store, self.device_a.settings)
        self.assertEqual(set(doc), {"components", "cart", "settings", "orders", "lastUpdated"})
        self.assertEqual(set(doc["settings"]), {"currency", "lowStockThreshold", "lastSync"})
        self.assertNotIn("transactions", doc)

    def test_push_then_pull_replaces_wholesale(self) -> None:
        a1 = self._add(self.device_a, "A1")
        self.device_a.cart.add_to_cart(a1.id, 2)
        self.device_a.settings.set("currency", "EUR")
        self._add(self.device_b, "B-only")
        self.device_b.settings.set("gistId", "local-handle")

        self.assertTrue(self.device_a.sync.sync_now())
        report = self.device_b.sync.pull_now()

        self.assertTrue(report.clean)
        self.assertEqual([c.name for c in self.device_b.inventory.list_all()], ["A1"])
        self.assertEqual(self.device_b.cart.get_line(a1.id).quantity, 2)
        self.assertEqual(self.device_b.settings.currency, "EUR")
        # Device-local settings are not part of the remote document.
        self.assertEqual(self.device_b.settings.get("gistId"), "local-handle")
        self.assertIsNotNone(self.device_b.settings.get("lastSync"))

    def test_fields_absent_from_snapshot_are_untouched(self) -> None:
        self._add(self.device_b, "B1")
        self.remote.document = {"settings": {"currency": "USD"}}
        self.device_b.sync.pull_now()
        self.assertEqual([c.name for c in self.device_b.inventory.list_all()], ["B1"])
        self.assertEqual(self.device_b.settings.currency, "USD")

    def test_pull_without_remote_document(self) -> None:
        self._add(self.device_b, "B1")
        self.assertIsNone(self.device_b.sync.pull_now())
        self.assertEqual(len(self.device_b.inventory.list_all()), 1)

    def test_auto_sync_pushes_after_each_mutation(self) -> None:
        adapter = self.device_a.sync.adapter
        comp = self._add(self.device_a, "A")
        self.assertEqual(adapter.pushes, [])

        self.device_a.settings.set_auto_sync(True)
        self.device_a.inventory.adjust_stock(comp.id, 1)
        self.device_a.cart.add_to_cart(comp.id, 1)
        self.device_a.settings.set("currency", "USD")
        self.assertEqual(len(adapter.pushes), 3)
        self.assertEqual(adapter.pushes[-1]["settings"]["currency"], "USD")

    def test_batch_coalesces_into_one_trailing_push(self) -> None:
        adapter = self.device_a.sync.adapter
        self.device_a.settings.set_auto_sync(True)
        with self.device_a.sync.batch():
            for i in range(5):
                self._add(self.device_a, f"Part {i}")
            self.assertEqual(adapter.pushes, [])
        self.assertEqual(len(adapter.pushes), 1)
        self.assertEqual(len(adapter.pushes[0]["components"]), 5)

    def test_checkout_pushes_once(self) -> None:
        adapter = self.device_a.sync.adapter
        a = self._add(self.device_a, "A")
        b = self._add(self.device_a, "B")
        self.device_a.cart.add_to_cart(a.id, 1)
        self.device_a.cart.add_to_cart(b.id, 1)
        self.device_a.settings.set_auto_sync(True)
        self.device_a.checkout()
        self.assertEqual(len(adapter.pushes), 1)
        self.assertEqual(adapter.pushes[0]["cart"], [])

    def test_failed_push_keeps_local_write(self) -> None:
        failures = []
        self.device_a.events.subscribe(SYNC_FAILED, failures.append)
        self.device_a.settings.set_auto_sync(True)
        self.remote.fail_next = True

        comp = self._add(self.device_a, "A")

        self.assertEqual(self.device_a.inventory.get_component(comp.id).name, "A")
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(self.device_a.sync.last_error, SyncError)
        self.assertIsNone(self.remote.document)
        # The next mutation is the retry.
        self.device_a.inventory.adjust_stock(comp.id, 1)
        self.assertIsNone(self.device_a.sync.last_error)
        self.assertEqual(self.remote.document["components"][0]["stock"], 6)

    def test_pull_does_not_echo_a_push(self) -> None:
        self._add(self.device_a, "A")
        self.device_a.sync.sync_now()
        self.device_b.settings.set_auto_sync(True)
        pushes_before = len(self.device_b.sync.adapter.pushes)
        self.device_b.sync.pull_now()
        self.assertEqual(len(self.device_b.sync.adapter.pushes), pushes_before)

    def test_malformed_remote_document_is_sync_error(self) -> None:
        self._add(self.device_b, "B1")
        failures = []
        self.device_b.events.subscribe(SYNC_FAILED, failures.append)
        self.remote.document = {"components": [{"id": "x", "name": ""}]}
        self.assertIsNone(self.device_b.sync.pull_now())
        self.assertEqual(len(failures), 1)
        self.assertEqual([c.name for c in self.device_b.inventory.list_all()], ["B1"])

    def test_subscription_changes_applied_on_processing(self) -> None:
        self.device_b.sync.start_listening()
        adapter = self.device_b.sync.adapter
        older = {"components": [{"id": "old", "name": "Old", "stock": 1, "cost": "1"}]}
        newer = {"components": [{"id": "new", "name": "New", "stock": 2, "cost": "1"}]}
        for listener in adapter.listeners:
            listener(older)
            listener(newer)
        self.assertEqual(self.device_b.inventory.list_all(), [])

        self.device_b.sync.process_remote_changes()
        self.assertEqual([c.id for c in self.device_b.inventory.list_all()], ["new"])
        self.assertIsNone(self.device_b.sync.process_remote_changes())

        self.device_b.sync.stop_listening()
        self.assertEqual(adapter.listeners, [])

    def test_inbound_negative_stock_clamped_and_orders_flagged(self) -> None:
        comp = self._add(self.device_b, "Shared", stock=1)
        self.device_b.sync.sync_now()
        self.device_b.cart.add_to_cart(comp.id, 1)
        tx = self.device_b.checkout()

        self.remote.document = {
            "components": [{"id": comp.id, "name": "Shared", "stock": -1, "cost": "1.00"}],
            "cart": [],
        }
        report = self.device_b.sync.pull_now()

        self.assertEqual(report.clamped_components, [comp.id])
        self.assertEqual(report.flagged_transactions, [tx.id])
        self.assertEqual(self.device_b.inventory.get_component(comp.id).stock, 0)
        self.assertEqual(self.device_b.settings.get("reviewTransactions"), [tx.id])

    def test_both_devices_sell_the_last_unit(self) -> None:
        comp = self._add(self.device_a, "Last One", stock=1)
        self.device_a.sync.sync_now()
        self.device_b.sync.pull_now()

        self.device_a.cart.add_to_cart(comp.id, 1)
        order_a = self.device_a.checkout()
        self.device_a.sync.sync_now()
        self.device_b.cart.add_to_cart(comp.id, 1)
        order_b = self.device_b.checkout()
        # B never saw A's sale; its push overwrites it.
        self.device_b.sync.sync_now()

        report = self.device_a.sync.pull_now()

        self.assertEqual(report.replayed_orders, [order_a.id])
        self.assertEqual(report.clamped_components, [comp.id])
        self.assertEqual(report.flagged_transactions, [order_a.id])
        self.assertEqual(self.device_a.inventory.get_component(comp.id).stock, 0)
        self.assertEqual(self.device_a.settings.get("reviewTransactions"), [order_a.id])

        # A's next push carries both sales, so B has nothing to replay.
        self.device_a.sync.sync_now()
        report_b = self.device_b.sync.pull_now()
        self.assertEqual(report_b.replayed_orders, [])
        self.assertEqual(report_b.flagged_transactions, [])
        self.assertEqual(set(self.remote.document["orders"]), {order_a.id, order_b.id})

    def test_sale_lost_to_overwrite_is_replayed_without_flag(self) -> None:
        comp = self._add(self.device_a, "Plenty", stock=10)
        self.device_a.sync.sync_now()
        self.device_b.sync.pull_now()

        self.device_a.cart.add_to_cart(comp.id, 3)
        self.device_a.checkout()
        self.device_a.sync.sync_now()
        self.device_b.inventory.update_component(comp.id, {"description": "edited on B"})
        self.device_b.sync.sync_now()

        report = self.device_a.sync.pull_now()
        self.assertTrue(report.clean)
        self.assertEqual(self.device_a.inventory.get_component(comp.id).stock, 7)
        self.assertEqual(self.device_a.inventory.get_component(comp.id).description, "edited on B")

    def test_own_snapshot_coming_back_is_not_replayed(self) -> None:
        comp = self._add(self.device_a, "Echo", stock=4)
        self.device_a.sync.sync_now()
        self.device_a.cart.add_to_cart(comp.id, 2)
        self.device_a.checkout()
        self.device_a.sync.sync_now()

        report = self.device_a.sync.pull_now()
        self.assertEqual(report.replayed_orders, [])
        self.assertEqual(self.device_a.inventory.get_component(comp.id).stock, 2)

    def test_first_pull_does_not_replay_unrelated_history(self) -> None:
        comp = self._add(self.device_b, "Old", stock=3)
        self.device_b.cart.add_to_cart(comp.id, 1)
        self.device_b.checkout()
        self.remote.document = {"components": [{"id": comp.id, "name": "Old", "stock": 5, "cost": "1.00"}]}

        report = self.device_b.sync.pull_now()
        self.assertEqual(report.replayed_orders, [])
        self.assertEqual(self.device_b.inventory.get_component(comp.id).stock, 5)


class ReconcileTests(unittest.TestCase):
    def _order(self, order_id: str, component_id: str, quantity: int = 1) -> Transaction:
        return Transaction(
            id=order_id,
            date="2024-03-01T00:00:00.000Z",
            items=(TransactionItem(component_id, component_id.upper(), Decimal("1.00"), quantity),),
        )

    def test_only_orders_missing_from_snapshot_are_replayed(self) -> None:
        history = [self._order("seen", "c1"), self._order("lost", "c1", 2), self._order("other", "c2")]
        document = {
            "components": [{"id": "c1", "stock": 1}, {"id": "c2", "stock": 3}],
            "orders": ["seen", "other"],
        }
        report = reconcile(document, history)
        self.assertEqual(report.replayed_orders, ["lost"])
        self.assertEqual(report.clamped_components, ["c1"])
        self.assertEqual(report.flagged_transactions, ["lost"])
        self.assertEqual(document["components"], [{"id": "c1", "stock": 0}, {"id": "c2", "stock": 3}])

    def test_only_orders_that_oversell_are_flagged(self) -> None:
        history = [self._order("first", "c1"), self._order("second", "c1")]
        document = {"components": [{"id": "c1", "stock": 1}]}
        report = reconcile(document, history)
        self.assertEqual(report.replayed_orders, ["first", "second"])
        self.assertEqual(report.flagged_transactions, ["second"])

    def test_first_contact_only_clamps(self) -> None:
        document = {"components": [{"id": "c1", "stock": -2}]}
        report = reconcile(document, [self._order("mine", "c1")], first_contact=True)
        self.assertEqual(report.replayed_orders, [])
        self.assertEqual(report.clamped_components, ["c1"])
        self.assertEqual(report.flagged_transactions, [])
        self.assertEqual(document["components"][0]["stock"], 0)

    def test_cart_lines_repaired(self) -> None:
        document = {
            "cart": [
                {"id": "a", "componentId": "a", "quantity": 0, "maxQuantity": 3},
                {"id": "b", "componentId": "b", "quantity": 9, "maxQuantity": 4},
                {"id": "c", "componentId": "c", "quantity": 2, "maxQuantity": 0},
            ]
        }
        report = reconcile(document, [], first_contact=True)
        self.assertEqual(report.dropped_cart_lines, ["a", "c"])
        self.assertEqual(document["cart"], [{"id": "b", "componentId": "b", "quantity": 4, "maxQuantity": 4}])
        self.assertEqual(report.flagged_transactions, [])

    def test_line_with_zero_bound_does_not_reject_document(self) -> None:
        ctx = AppContext(get_connection(":memory:"))
        self.addCleanup(ctx.close)
        comp = ctx.inventory.add_component({"name": "Gone", "stock": 0, "cost": "1.00"})
        document = {
            "components": [comp.to_record()],
            "cart": [{
                "id": comp.id, "componentId": comp.id, "name": "Gone", "price": "1.00",
                "quantity": 1, "maxQuantity": 0, "addedAt": "2024-01-01T00:00:00.000Z",
            }],
        }
        report = merge_inbound(ctx.store, ctx.settings, document)
        self.assertEqual(report.dropped_cart_lines, [comp.id])
        self.assertEqual(ctx.cart.lines(), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
