"""
Cart line domain model.

A line is a reservation against one component. Its id is the component id,
so a cart holds at most one line per component.
"""

from dataclasses import dataclass
from decimal import Decimal

from component import to_count, to_money
from errors import ValidationError


@dataclass
class CartLine:
    id: str
    component_id: str
    name: str
    # Cost snapshot taken when the line was created.
    price: Decimal
    quantity: int
    # Stock seen at the last reservation check.
    max_quantity: int
    added_at: str = ""

    def __post_init__(self) -> None:
        if self.id != self.component_id:
            raise ValidationError("Cart line id must equal its component id.")
        self.price = to_money(self.price, "price")
        self.quantity = to_count(self.quantity, "quantity")
        self.max_quantity = to_count(self.max_quantity, "maxQuantity")
        if not 1 <= self.quantity <= self.max_quantity:
            raise ValidationError(
                f"Cart quantity for '{self.name}' must be between 1 and {self.max_quantity}, got {self.quantity}."
            )

    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "componentId": self.component_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "maxQuantity": self.max_quantity,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_record(cls, record: dict) -> "CartLine":
        if not isinstance(record, dict):
            raise ValidationError(f"Cart record must be an object, got {type(record).__name__}.")
        key = record.get("componentId") or record.get("id")
        if not key:
            raise ValidationError("Cart record is missing 'componentId'.")
        return cls(
            id=str(key),
            component_id=str(key),
            name=str(record.get("name") or ""),
            price=record.get("price", 0),
            quantity=record.get("quantity", 0),
            max_quantity=record.get("maxQuantity", record.get("quantity", 0)),
            added_at=str(record.get("addedAt") or ""),
        )
