"""
Order record written by checkout.

Transactions are immutable once created: nothing in the normal flow updates
or deletes them.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from component import to_count, to_money
from errors import ValidationError


@dataclass(frozen=True)
class TransactionItem:
    component_id: str
    name: str
    price: Decimal
    quantity: int

    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_record(self) -> dict:
        return {
            "componentId": self.component_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class Transaction:
    id: str
    date: str
    items: tuple[TransactionItem, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return sum((item.line_total() for item in self.items), Decimal("0.00"))

    def touches(self, component_ids: set[str]) -> bool:
        return any(item.component_id in component_ids for item in self.items)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "items": [item.to_record() for item in self.items],
            "total": str(self.total),
        }

    @classmethod
    def from_record(cls, record: dict) -> "Transaction":
        if not isinstance(record, dict) or not record.get("id"):
            raise ValidationError("Transaction record must be an object with an 'id'.")
        raw_items = record.get("items", [])
        if not isinstance(raw_items, list):
            raise ValidationError(f"Transaction '{record['id']}' items must be a list.")
        items = []
        for raw in raw_items:
            if not isinstance(raw, dict) or not raw.get("componentId"):
                raise ValidationError(f"Transaction '{record['id']}' has a malformed item.")
            items.append(
                TransactionItem(
                    component_id=str(raw["componentId"]),
                    name=str(raw.get("name") or ""),
                    price=to_money(raw.get("price", 0), "price"),
                    quantity=to_count(raw.get("quantity", 0), "quantity"),
                )
            )
        return cls(id=str(record["id"]), date=str(record.get("date") or ""), items=tuple(items))
