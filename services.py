"""
Service layer

Typed operations over the store for components and settings. Services
coordinate repository writes and publish events after each durable change.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from component import Component, new_id, utc_now_iso
from errors import NotFound, ValidationError
from events import DATA_CHANGED, LOW_STOCK, EventBus
from repositories import Store

logger = logging.getLogger(__name__)

SETTING_DEFAULTS: dict[str, Any] = {
    "currency": "INR",
    "lowStockThreshold": 5,
    "autoSync": False,
    "reviewTransactions": [],
}

# Settings that travel in the remote sync document; changing one triggers auto-sync.
SYNCED_SETTINGS = ("currency", "lowStockThreshold")


class SettingsService:
    def __init__(self, store: Store, event_bus: EventBus) -> None:
        self._store = store
        self._events = event_bus

    def get(self, key: str, default: Any = None) -> Any:
        record = self._store.get("settings", key)
        if record is not None:
            return record["value"]
        if default is not None:
            return default
        return SETTING_DEFAULTS.get(key)

    def set(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("Setting key must be a non-empty string.")
        self._store.update("settings", {"key": key, "value": value, "updatedAt": utc_now_iso()})
        if key in SYNCED_SETTINGS:
            self._events.emit(DATA_CHANGED, collection="settings", key=key)

    def delete(self, key: str) -> None:
        self._store.delete("settings", key)

    def all(self) -> dict[str, Any]:
        values = dict(SETTING_DEFAULTS)
        for record in self._store.get_all("settings"):
            values[record["key"]] = record["value"]
        return values

    @property
    def currency(self) -> str:
        return str(self.get("currency"))

    @property
    def low_stock_threshold(self) -> int:
        # Unparsable or zero values fall back to the default.
        try:
            threshold = int(self.get("lowStockThreshold"))
        except (TypeError, ValueError):
            return SETTING_DEFAULTS["lowStockThreshold"]
        return threshold or SETTING_DEFAULTS["lowStockThreshold"]

    def set_low_stock_threshold(self, threshold: int) -> None:
        if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 1:
            raise ValidationError("Low stock threshold must be an integer >= 1.")
        self.set("lowStockThreshold", threshold)

    @property
    def auto_sync(self) -> bool:
        value = self.get("autoSync")
        if isinstance(value, str):
            return value.lower() == "true"
        return bool(value)

    def set_auto_sync(self, enabled: bool) -> None:
        self.set("autoSync", bool(enabled))

    def flag_for_review(self, transaction_ids: list[str]) -> None:
        flagged = list(self.get("reviewTransactions") or [])
        for tx_id in transaction_ids:
            if tx_id not in flagged:
                flagged.append(tx_id)
        self.set("reviewTransactions", flagged)


@dataclass(frozen=True)
class InventoryStats:
    total_components: int
    total_value: Decimal
    low_stock_items: int
    categories: int
    low_stock_threshold: int


@dataclass(frozen=True)
class CategorySummary:
    category: str
    count: int
    value: Decimal


class InventoryService:
    def __init__(self, store: Store, event_bus: EventBus, settings: SettingsService) -> None:
        # Service owns no state of its own; everything lives in the store.
        self._store = store
        self._events = event_bus
        self._settings = settings

    def _save(self, component: Component) -> None:
        self._store.update("components", component.to_record())

    def _changed(self, component: Component) -> None:
        # Publish after the write so handlers never see uncommitted state.
        self._events.emit(DATA_CHANGED, collection="components", id=component.id)
        threshold = self._settings.low_stock_threshold
        if component.is_low_stock(threshold):
            self._events.emit(
                LOW_STOCK,
                component_id=component.id,
                name=component.name,
                stock=component.stock,
                threshold=threshold,
            )

    def add_component(self, fields: dict) -> Component:
        """Creates a component with a fresh id (unless one is supplied) and timestamps."""
        now = utc_now_iso()
        data = dict(fields)
        data["id"] = data.get("id") or new_id()
        data.setdefault("createdAt", now)
        data["updatedAt"] = data.get("updatedAt") or data["createdAt"]
        component = Component.from_record(data)
        self._store.add("components", component.to_record())
        logger.info("Added component %s (%s), stock=%d", component.id, component.name, component.stock)
        self._changed(component)
        return component

    def get_component(self, component_id: str) -> Component:
        record = self._store.get("components", component_id)
        if record is None:
            raise NotFound("Component", component_id)
        return Component.from_record(record)

    def find_component(self, component_id: str) -> Optional[Component]:
        record = self._store.get("components", component_id)
        return None if record is None else Component.from_record(record)

    def update_component(self, component_id: str, patch: dict) -> Component:
        """Merges patch into the stored component; a negative result is rejected."""
        current = self.get_component(component_id)
        unknown = set(patch) - set(Component.editable_fields)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}.")
        record = current.to_record()
        record.update(patch)
        record["updatedAt"] = utc_now_iso()
        updated = Component.from_record(record)
        self._save(updated)
        self._changed(updated)
        return updated

    def delete_component(self, component_id: str) -> None:
        component = self.get_component(component_id)
        with self._store.transaction():
            self._store.delete("components", component_id)
            # A reservation against a deleted part can never be checked out.
            self._store.delete("cart", component_id)
        logger.info("Deleted component %s (%s)", component.id, component.name)
        self._events.emit(DATA_CHANGED, collection="components", id=component_id)

    def adjust_stock(self, component_id: str, delta: int) -> Component:
        """
        Moves stock by delta.

        This is the only path that decrements stock: direct edits and checkout
        both route through here, and it raises InsufficientStock rather than
        letting stock go below zero.
        """
        current = self.get_component(component_id)
        adjusted = current.adjusted(delta)
        adjusted.updated_at = utc_now_iso()
        self._save(adjusted)
        logger.debug("Stock for %s: %d -> %d", component_id, current.stock, adjusted.stock)
        self._changed(adjusted)
        return adjusted

    def list_all(self) -> list[Component]:
        return [Component.from_record(r) for r in self._store.get_all("components")]

    def list_by_category(self, category: str) -> list[Component]:
        return [Component.from_record(r) for r in self._store.get_all("components", "category", category)]

    def search(self, term: str) -> list[Component]:
        return [c for c in self.list_all() if c.matches(term)]

    def list_low_stock(self) -> list[Component]:
        threshold = self._settings.low_stock_threshold
        return [c for c in self.list_all() if c.is_low_stock(threshold)]

    def compute_stats(self) -> InventoryStats:
        # Recomputed on every call; a cached copy would misreport low-stock alerts.
        components = self.list_all()
        threshold = self._settings.low_stock_threshold
        return InventoryStats(
            total_components=len(components),
            total_value=sum((c.value() for c in components), Decimal("0.00")),
            low_stock_items=sum(1 for c in components if c.is_low_stock(threshold)),
            categories=len({c.category for c in components}),
            low_stock_threshold=threshold,
        )

    def category_breakdown(self) -> list[CategorySummary]:
        totals: dict[str, list] = {}
        for c in self.list_all():
            entry = totals.setdefault(c.category, [0, Decimal("0.00")])
            entry[0] += 1
            entry[1] += c.value()
        return [CategorySummary(category=k, count=v[0], value=v[1]) for k, v in totals.items()]
