"""
Component domain model.

This file defines the core data + validation rules for an inventory part.
Records travel as camelCase dicts so they match the export file and the
remote sync document.
"""

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from errors import InsufficientStock, ValidationError

CENT = Decimal("0.01")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def to_money(value: Any, field_name: str = "cost") -> Decimal:
    """Parses a money amount (str, int, float or Decimal) to minor-unit precision."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number.")
    try:
        # str() first so floats like 22.9 don't drag binary noise along.
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field_name} must be a number, got {value!r}.") from e
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number.")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_count(value: Any, field_name: str) -> int:
    """Accepts ints (and integral floats from JSON); rejects bools and fractions."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer.")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}.")
    return value


@dataclass
class Component:
    """
    Represents one electronic part held in inventory.

    stock is the quantity on hand; cost is the unit cost.
    """

    # Fields a caller may change through update_component().
    editable_fields = ("name", "category", "stock", "cost", "description")

    id: str
    name: str
    category: str = ""
    stock: int = 0
    cost: Decimal = Decimal("0.00")
    description: str = ""
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        # Protects service/repository layers from bad data.
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("Component name must be a non-empty string.")
        self.name = self.name.strip()
        self.category = (self.category or "").strip()
        self.description = self.description or ""
        self.stock = to_count(self.stock, "stock")
        if self.stock < 0:
            raise ValidationError(f"Stock for '{self.name}' must be >= 0.")
        self.cost = to_money(self.cost)
        if self.cost < 0:
            raise ValidationError(f"Cost for '{self.name}' must be >= 0.")

    def adjusted(self, delta: int) -> "Component":
        """Returns a copy with stock moved by delta; the result cannot go below zero."""
        delta = to_count(delta, "delta")
        new_stock = self.stock + delta
        if new_stock < 0:
            raise InsufficientStock(self.name, -delta, self.stock)
        return replace(self, stock=new_stock)

    def value(self) -> Decimal:
        return self.cost * self.stock

    def is_low_stock(self, threshold: int) -> bool:
        """True when stock is strictly below the low-stock threshold."""
        return self.stock < threshold

    def matches(self, term: str) -> bool:
        needle = term.lower()
        return (
            needle in self.name.lower()
            or needle in self.description.lower()
            or needle in self.category.lower()
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "stock": self.stock,
            "cost": str(self.cost),
            "description": self.description,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Component":
        if not isinstance(record, dict):
            raise ValidationError(f"Component record must be an object, got {type(record).__name__}.")
        if not record.get("id"):
            raise ValidationError("Component record is missing 'id'.")
        return cls(
            id=str(record["id"]),
            name=record.get("name", ""),
            category=str(record.get("category") or ""),
            stock=record.get("stock", 0),
            cost=record.get("cost", 0),
            description=str(record.get("description") or ""),
            created_at=str(record.get("createdAt") or ""),
            updated_at=str(record.get("updatedAt") or ""),
        )
