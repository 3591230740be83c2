"""
Cart reservations.

Prices are snapshotted when a line is created, but availability is always
re-checked against the live component, never against the stale maxQuantity.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from cart_line import CartLine
from component import to_count, utc_now_iso
from errors import InsufficientStock, NotFound, ValidationError
from events import DATA_CHANGED, EventBus
from repositories import Store
from services import InventoryService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartTotals:
    item_count: int
    total: Decimal


class CartService:
    def __init__(self, store: Store, event_bus: EventBus, inventory: InventoryService) -> None:
        self._store = store
        self._events = event_bus
        self._inventory = inventory

    def _changed(self, component_id: Optional[str] = None) -> None:
        self._events.emit(DATA_CHANGED, collection="cart", id=component_id)

    def get_line(self, component_id: str) -> Optional[CartLine]:
        record = self._store.get("cart", component_id)
        return None if record is None else CartLine.from_record(record)

    def lines(self) -> list[CartLine]:
        return [CartLine.from_record(r) for r in self._store.get_all("cart")]

    def add_to_cart(self, component_id: str, qty: int = 1) -> CartLine:
        qty = to_count(qty, "quantity")
        if qty < 1:
            raise ValidationError("Quantity to add must be at least 1.")
        component = self._inventory.get_component(component_id)
        existing = self.get_line(component_id)

        if existing is None:
            if qty > component.stock:
                raise InsufficientStock(component.name, qty, component.stock)
            line = CartLine(
                id=component.id,
                component_id=component.id,
                name=component.name,
                price=component.cost,
                quantity=qty,
                max_quantity=component.stock,
                added_at=utc_now_iso(),
            )
        else:
            wanted = existing.quantity + qty
            if wanted > component.stock:
                raise InsufficientStock(component.name, wanted, component.stock)
            # Price stays as snapshotted; only the stock bound is refreshed.
            existing.quantity = wanted
            existing.max_quantity = component.stock
            line = existing

        self._store.update("cart", line.to_record())
        logger.debug("Cart %s: quantity=%d", component_id, line.quantity)
        self._changed(component_id)
        return line

    def set_quantity(self, component_id: str, qty: int) -> Optional[CartLine]:
        """Replaces the line quantity; qty <= 0 removes the line and returns None."""
        qty = to_count(qty, "quantity")
        line = self.get_line(component_id)
        if line is None:
            raise NotFound("Cart line", component_id)
        if qty <= 0:
            self.remove(component_id)
            return None

        component = self._inventory.get_component(component_id)
        if qty > component.stock:
            raise InsufficientStock(component.name, qty, component.stock)
        line.quantity = qty
        line.max_quantity = component.stock
        self._store.update("cart", line.to_record())
        self._changed(component_id)
        return line

    def change_quantity(self, component_id: str, delta: int) -> Optional[CartLine]:
        line = self.get_line(component_id)
        if line is None:
            raise NotFound("Cart line", component_id)
        return self.set_quantity(component_id, line.quantity + to_count(delta, "delta"))

    def remove(self, component_id: str) -> None:
        if self._store.get("cart", component_id) is None:
            return
        self._store.delete("cart", component_id)
        self._changed(component_id)

    def clear(self) -> None:
        self._store.clear("cart")
        self._changed()

    def totals(self) -> CartTotals:
        lines = self.lines()
        return CartTotals(
            item_count=sum(line.quantity for line in lines),
            total=sum((line.line_total() for line in lines), Decimal("0.00")),
        )
