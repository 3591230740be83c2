"""
Command-line interface (CLI) for the inventory.

The CLI is only a consumer of the core: it prompts, calls AppContext
operations, and prints one line per domain error. Alerts (low stock, sync
failures) arrive through EventBus subscriptions.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from app import AppContext
from component import Component, to_money
from config import Settings
from errors import InventoryError, ValidationError
from events import CHECKOUT_COMPLETED, LOW_STOCK, SYNC_FAILED, Event

logger = logging.getLogger(__name__)


def _prompt_non_empty(prompt: str) -> str:
    # Keep prompting until user provides a non-empty string.
    while True:
        value = input(prompt).strip()
        if value:
            return value
        print("Input cannot be empty. Please try again.")


def _prompt_int(prompt: str, *, min_value: Optional[int] = None, default: Optional[int] = None) -> int:
    # Keep prompting until user provides a valid integer (with optional min constraint).
    while True:
        raw = input(prompt).strip()
        if raw == "" and default is not None:
            return default
        try:
            value = int(raw)
        except ValueError:
            print("Please enter a valid whole number (integer).")
            continue

        if min_value is not None and value < min_value:
            print(f"Please enter a value >= {min_value}.")
            continue

        return value


def _prompt_money(prompt: str) -> str:
    while True:
        raw = input(prompt).strip()
        try:
            amount = to_money(raw)
        except ValidationError:
            print("Please enter a valid amount (e.g. 12.50).")
            continue
        if amount < 0:
            print("Please enter a value >= 0.")
            continue
        return str(amount)


def _print_component(c: Component, threshold: int) -> None:
    low_flag = "YES" if c.is_low_stock(threshold) else "NO"
    print(
        f"- id={c.id} | name={c.name} | category={c.category} | stock={c.stock} | "
        f"cost={c.cost} | low={low_flag}"
    )


def _handle_low_stock(event: Event) -> None:
    # UI prints alerts, but service layer stays UI-agnostic.
    name = event.payload.get("name", "<unknown>")
    stock = event.payload.get("stock", "<unknown>")
    print(f"\n[ALERT] LOW STOCK: '{name}' has stock={stock}\n")


def _handle_sync_failed(event: Event) -> None:
    print(f"\n[SYNC] {event.payload.get('direction', 'sync')} failed: {event.payload.get('error')}\n")


def _handle_checkout(event: Event) -> None:
    print(f"Purchase completed. Order {event.payload.get('transaction_id')} total={event.payload.get('total')}")


MENU = (
    " 1) List components",
    " 2) Search components",
    " 3) Add component",
    " 4) Edit component",
    " 5) Adjust stock (+/-)",
    " 6) Delete component",
    " 7) Add to cart",
    " 8) View cart / set quantity",
    " 9) Remove from cart",
    "10) Checkout",
    "11) Order history",
    "12) Inventory stats",
    "13) Settings",
    "14) Sync now (push)",
    "15) Load from remote (pull)",
    "16) Export data",
    "17) Import data",
    "18) Reset all data",
    " 0) Exit",
)


def _dispatch(ctx: AppContext, choice: int) -> bool:
    """Runs one menu action. Returns False when the user asked to exit."""
    threshold = ctx.settings.low_stock_threshold

    if choice == 1:
        components = ctx.inventory.list_all()
        if not components:
            print("No components found.")
        for c in components:
            _print_component(c, threshold)

    elif choice == 2:
        term = _prompt_non_empty("Search term: ")
        results = ctx.inventory.search(term)
        if not results:
            print("No matching components.")
        for c in results:
            _print_component(c, threshold)

    elif choice == 3:
        fields = {
            "name": _prompt_non_empty("Component name: "),
            "category": _prompt_non_empty("Category: "),
            "stock": _prompt_int("Stock (>= 0): ", min_value=0),
            "cost": _prompt_money("Unit cost: "),
            "description": input("Description (optional): ").strip(),
        }
        comp = ctx.inventory.add_component(fields)
        print(f"Created component id={comp.id}.")

    elif choice == 4:
        component_id = _prompt_non_empty("Component id: ")
        current = ctx.inventory.get_component(component_id)
        patch = {}
        for field_name in ("name", "category", "description"):
            value = input(f"{field_name.capitalize()} [{getattr(current, field_name)}]: ").strip()
            if value:
                patch[field_name] = value
        raw_cost = input(f"Cost [{current.cost}]: ").strip()
        if raw_cost:
            patch["cost"] = raw_cost
        ctx.inventory.update_component(component_id, patch)
        print("Component updated.")

    elif choice == 5:
        component_id = _prompt_non_empty("Component id: ")
        delta = _prompt_int("Delta (e.g., 5 or -2): ")
        comp = ctx.inventory.adjust_stock(component_id, delta)
        print(f"Stock is now {comp.stock}.")

    elif choice == 6:
        component_id = _prompt_non_empty("Component id: ")
        if input("Delete this component? [y/N]: ").strip().lower() == "y":
            ctx.inventory.delete_component(component_id)
            print("Component deleted.")

    elif choice == 7:
        component_id = _prompt_non_empty("Component id: ")
        qty = _prompt_int("Quantity [1]: ", min_value=1, default=1)
        line = ctx.cart.add_to_cart(component_id, qty)
        print(f"'{line.name}' in cart x{line.quantity}.")

    elif choice == 8:
        lines = ctx.cart.lines()
        if not lines:
            print("Your cart is empty.")
            return True
        for line in lines:
            print(f"- {line.component_id} | {line.name} | {line.price} each | x{line.quantity}")
        totals = ctx.cart.totals()
        print(f"Items: {totals.item_count} | Total: {totals.total}")
        component_id = input("Component id to change (blank to skip): ").strip()
        if component_id:
            qty = _prompt_int("New quantity (0 removes): ", min_value=0)
            ctx.cart.set_quantity(component_id, qty)
            print("Cart updated.")

    elif choice == 9:
        ctx.cart.remove(_prompt_non_empty("Component id: "))
        print("Removed from cart.")

    elif choice == 10:
        ctx.checkout()

    elif choice == 11:
        history = ctx.checkout_service.history()
        if not history:
            print("No orders yet.")
        flagged = set(ctx.settings.get("reviewTransactions") or [])
        for t in history:
            mark = " [REVIEW]" if t.id in flagged else ""
            print(f"- {t.date} | id={t.id} | items={len(t.items)} | total={t.total}{mark}")

    elif choice == 12:
        stats = ctx.inventory.compute_stats()
        print(
            f"Components: {stats.total_components} | Value: {stats.total_value} | "
            f"Low stock (<{stats.low_stock_threshold}): {stats.low_stock_items} | "
            f"Categories: {stats.categories}"
        )
        for summary in ctx.inventory.category_breakdown():
            print(f"  {summary.category}: {summary.count} items ({summary.value})")

    elif choice == 13:
        print(f"Currency: {ctx.settings.currency} | Low stock threshold: {threshold} | "
              f"Auto sync: {ctx.settings.auto_sync}")
        new_threshold = _prompt_int(f"Low stock threshold [{threshold}]: ", min_value=1, default=threshold)
        if new_threshold != threshold:
            ctx.settings.set_low_stock_threshold(new_threshold)
        currency = input(f"Currency [{ctx.settings.currency}]: ").strip().upper()
        if currency:
            ctx.settings.set("currency", currency)
        auto = input(f"Auto sync (y/n) [{'y' if ctx.settings.auto_sync else 'n'}]: ").strip().lower()
        if auto in ("y", "n"):
            ctx.settings.set_auto_sync(auto == "y")
        print("Settings saved.")

    elif choice == 14:
        if ctx.sync.sync_now():
            print("Data synced.")

    elif choice == 15:
        report = ctx.sync.pull_now()
        if report is None:
            print("Nothing loaded from remote.")
        else:
            print("Data loaded from remote.")
            if report.clamped_components:
                print(f"Clamped negative stock on: {', '.join(report.clamped_components)}")
            if report.flagged_transactions:
                print(f"{len(report.flagged_transactions)} order(s) oversold stock and are marked for review.")

    elif choice == 16:
        path = Path(input("Export to [electromanage-backup.json]: ").strip() or "electromanage-backup.json")
        path.write_text(ctx.export_json(), encoding="utf-8")
        print(f"Data exported to {path}.")

    elif choice == 17:
        path = Path(_prompt_non_empty("Import from: "))
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            print(f"Error: cannot read {path}: {e}")
            return True
        ctx.import_json(text)
        print("Data imported successfully.")

    elif choice == 18:
        if input("Reset all data? This cannot be undone. [y/N]: ").strip().lower() == "y":
            ctx.reset()
            print("All data has been reset.")

    elif choice == 0:
        print("Goodbye.")
        return False

    else:
        print("Invalid choice. Please try again.")
    return True


def run(config: Optional[Settings] = None) -> None:
    config = config or Settings()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    print("ElectroManage Inventory")
    print("-----------------------")

    try:
        ctx = AppContext.from_settings(config)
    except InventoryError as e:
        print(f"Startup error: {e}")
        return

    ctx.events.subscribe(LOW_STOCK, _handle_low_stock)
    ctx.events.subscribe(SYNC_FAILED, _handle_sync_failed)
    ctx.events.subscribe(CHECKOUT_COMPLETED, _handle_checkout)
    try:
        ctx.sync.start_listening()
    except InventoryError as e:
        print(f"Real-time sync unavailable: {e}")

    try:
        while True:
            # Polls the remote when due, then applies queued snapshots on this thread.
            ctx.sync.process_remote_changes()
            print("\nMenu:")
            for line in MENU:
                print(line)
            choice = _prompt_int("Choose an option: ", min_value=0)
            try:
                if not _dispatch(ctx, choice):
                    return
            except InventoryError as e:
                print(f"Error: {e}")

    except KeyboardInterrupt:
        print("\nExiting...")
    except sqlite3.Error as e:
        print(f"Fatal database error: {e}")
    finally:
        ctx.close()


def main() -> None:
    run()


if __name__ == "__main__":
    main()
