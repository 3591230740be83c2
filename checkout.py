"""
Checkout: turns cart reservations into stock decrements plus one order record.

Checkout is all-or-nothing. The decrements, the order record and the cart
clear run inside one store transaction, so any failure rolls them back as a
unit before CheckoutFailed is raised. Stock still missing after the rollback
is put back line by line in reverse order.
"""

import enum
import logging

from cart import CartService
from cart_line import CartLine
from component import new_id, utc_now_iso
from errors import CheckoutFailed, InsufficientStock, NotFound, ValidationError
from events import CHECKOUT_COMPLETED, DATA_CHANGED, EventBus
from repositories import Store
from services import InventoryService
from transaction import Transaction, TransactionItem

logger = logging.getLogger(__name__)


class CheckoutState(enum.Enum):
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTED = "aborted"


class CheckoutService:
    def __init__(
        self,
        store: Store,
        event_bus: EventBus,
        inventory: InventoryService,
        cart: CartService,
    ) -> None:
        self._store = store
        self._events = event_bus
        self._inventory = inventory
        self._cart = cart
        # Transient; never persisted.
        self.state = None

    def _validate(self, lines: list[CartLine]) -> dict[str, int]:
        """Checks every line against live stock; returns the stock each line saw."""
        seen = {}
        for line in lines:
            component = self._inventory.find_component(line.component_id)
            if component is None:
                raise NotFound("Component", f"{line.name} ({line.component_id})")
            if component.stock < line.quantity:
                raise InsufficientStock(line.name, line.quantity, component.stock)
            seen[line.component_id] = component.stock
        return seen

    def _restore(self, attempted: list[CartLine], stock_before: dict[str, int]) -> None:
        # Normally the store rollback has already undone every decrement; this
        # only puts back stock that is still missing afterwards.
        for line in reversed(attempted):
            try:
                component = self._inventory.find_component(line.component_id)
                if component is None:
                    logger.error("Could not restore stock for %s: component is gone", line.component_id)
                    continue
                missing = min(stock_before[line.component_id] - component.stock, line.quantity)
                if missing > 0:
                    self._inventory.adjust_stock(line.component_id, missing)
                    logger.warning("Restored %d unit(s) of %s after failed checkout", missing, line.component_id)
            except Exception as e:
                logger.error("Could not restore stock for %s during rollback: %s", line.component_id, e)

    def checkout(self) -> Transaction:
        self.state = CheckoutState.VALIDATING
        lines = self._cart.lines()
        try:
            if not lines:
                raise ValidationError("Cart is empty.")
            stock_before = self._validate(lines)
        except (NotFound, InsufficientStock, ValidationError):
            self.state = CheckoutState.ABORTED
            raise

        self.state = CheckoutState.COMMITTING
        attempted: list[CartLine] = []
        # Events raised while committing are only delivered if the commit holds.
        with self._events.deferred():
            try:
                with self._store.transaction():
                    for line in lines:
                        attempted.append(line)
                        self._inventory.adjust_stock(line.component_id, -line.quantity)

                    transaction = Transaction(
                        id=new_id(),
                        date=utc_now_iso(),
                        items=tuple(
                            TransactionItem(
                                component_id=line.component_id,
                                name=line.name,
                                price=line.price,
                                quantity=line.quantity,
                            )
                            for line in lines
                        ),
                    )
                    self._store.add("transactions", transaction.to_record())
                    self._cart.clear()
            except Exception as e:
                logger.warning("Checkout commit failed at line %d of %d: %s", len(attempted), len(lines), e)
                self._restore(attempted, stock_before)
                self.state = CheckoutState.ABORTED
                raise CheckoutFailed(f"Checkout failed and was rolled back: {e}") from e

            self.state = CheckoutState.COMMITTED
            logger.info("Checkout %s committed: %d line(s), total %s", transaction.id, len(lines), transaction.total)
            self._events.emit(DATA_CHANGED, collection="transactions", id=transaction.id)
            self._events.emit(
                CHECKOUT_COMPLETED,
                transaction_id=transaction.id,
                total=transaction.total,
                items=len(transaction.items),
            )
        return transaction

    def history(self) -> list[Transaction]:
        return [Transaction.from_record(r) for r in self._store.get_all("transactions", "date")]
