"""
Snapshots: export, import, reset and demo seeding.

A snapshot is a JSON-friendly dict of whole collections. Applying one
replaces every collection it names and leaves the rest untouched; the whole
apply runs in one store transaction, so a bad document never half-lands.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from cart_line import CartLine
from component import Component, utc_now_iso
from errors import ImportFormatError, ValidationError
from repositories import Store
from services import SETTING_DEFAULTS, SYNCED_SETTINGS
from transaction import Transaction

logger = logging.getLogger(__name__)

EXPORT_VERSION = 3

# Settings that belong to this device and survive a reset by default.
SYNC_SETTINGS = ("gistId", "autoSync")

DEMO_COMPONENTS = (
    {
        "name": "Arduino Uno R3",
        "category": "Microcontrollers",
        "stock": 12,
        "cost": "22.90",
        "description": "ATmega328P microcontroller board",
    },
    {
        "name": "Raspberry Pi 4 Model B",
        "category": "Microcontrollers",
        "stock": 8,
        "cost": "35.00",
        "description": "4GB RAM version",
    },
    {
        "name": "DHT22 Temperature Sensor",
        "category": "Sensors",
        "stock": 24,
        "cost": "9.50",
        "description": "Digital temperature and humidity sensor",
    },
    {
        "name": "HC-SR04 Ultrasonic Sensor",
        "category": "Sensors",
        "stock": 15,
        "cost": "3.50",
        "description": "Ultrasonic distance measurement sensor",
    },
)


@dataclass
class Snapshot:
    """A parsed, validated document. None means the key was absent."""

    components: Optional[list[Component]] = None
    cart: Optional[list[CartLine]] = None
    settings: Optional[dict[str, Any]] = None
    transactions: Optional[list[Transaction]] = None

    def is_empty(self) -> bool:
        return all(v is None for v in (self.components, self.cart, self.settings, self.transactions))


def _settings_dict(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, list):
        # The older export format wrote settings as a list of {key, value} records.
        values = {}
        for item in raw:
            if not isinstance(item, dict) or "key" not in item:
                raise ValidationError("Settings list entries must be objects with a 'key'.")
            values[str(item["key"])] = item.get("value")
        return values
    raise ValidationError(f"settings must be an object or a list, got {type(raw).__name__}.")


def _unique(records: list, kind: str) -> list:
    seen = set()
    for r in records:
        if r.id in seen:
            raise ValidationError(f"Duplicate {kind} id '{r.id}'.")
        seen.add(r.id)
    return records


def _parse_list(data: dict, key: str, parser) -> Optional[list]:
    if key not in data or data[key] is None:
        return None
    if not isinstance(data[key], list):
        raise ValidationError(f"'{key}' must be a list.")
    return _unique([parser(item) for item in data[key]], key)


def parse_snapshot(data: Any) -> Snapshot:
    """Validates a decoded document; raises ImportFormatError without touching the store."""
    if not isinstance(data, dict):
        raise ImportFormatError("Backup document must be a JSON object.")
    try:
        snapshot = Snapshot(
            components=_parse_list(data, "components", Component.from_record),
            cart=_parse_list(data, "cart", CartLine.from_record),
            transactions=_parse_list(data, "transactions", Transaction.from_record),
        )
        settings = _settings_dict(data["settings"]) if data.get("settings") is not None else {}
        # Legacy top-level keys written by the first export format.
        for key in SYNCED_SETTINGS:
            if key in data and data[key] is not None:
                settings.setdefault(key, data[key])
        snapshot.settings = settings or None
    except ValidationError as e:
        raise ImportFormatError(f"Invalid backup document: {e}") from e
    return snapshot


def apply_snapshot(store: Store, snapshot: Snapshot) -> None:
    """Replaces each collection the snapshot names; settings are merged key by key."""
    now = utc_now_iso()
    with store.transaction():
        if snapshot.components is not None:
            store.clear("components")
            for c in snapshot.components:
                store.add("components", c.to_record())
        if snapshot.cart is not None:
            store.clear("cart")
            for line in snapshot.cart:
                store.add("cart", line.to_record())
        if snapshot.transactions is not None:
            store.clear("transactions")
            for t in snapshot.transactions:
                store.add("transactions", t.to_record())
        if snapshot.settings is not None:
            for key, value in snapshot.settings.items():
                store.update("settings", {"key": key, "value": value, "updatedAt": now})


def _settings_values(store: Store) -> dict[str, Any]:
    return {r["key"]: r["value"] for r in store.get_all("settings")}


def build_export(store: Store) -> dict:
    return {
        "components": store.get_all("components"),
        "cart": store.get_all("cart"),
        "settings": _settings_values(store),
        "transactions": store.get_all("transactions", "date"),
        "exportDate": utc_now_iso(),
        "version": EXPORT_VERSION,
    }


def export_json(store: Store) -> str:
    return json.dumps(build_export(store), indent=2)


def import_json(store: Store, text: str) -> Snapshot:
    """Parses and applies a backup file. Nothing is written if it fails to parse."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ImportFormatError(f"Backup file is not valid JSON: {e}") from e
    snapshot = parse_snapshot(data)
    if snapshot.is_empty():
        raise ImportFormatError("Backup document contains no components, cart, settings or transactions.")
    apply_snapshot(store, snapshot)
    logger.info(
        "Imported backup: components=%s cart=%s transactions=%s settings=%s",
        len(snapshot.components) if snapshot.components is not None else "-",
        len(snapshot.cart) if snapshot.cart is not None else "-",
        len(snapshot.transactions) if snapshot.transactions is not None else "-",
        len(snapshot.settings) if snapshot.settings is not None else "-",
    )
    return snapshot


def reset(store: Store, keep_sync: bool = True) -> None:
    """Deletes every collection and restores default settings."""
    kept = {}
    if keep_sync:
        kept = {k: v for k, v in _settings_values(store).items() if k in SYNC_SETTINGS}
    now = utc_now_iso()
    with store.transaction():
        for name in ("components", "cart", "transactions", "settings"):
            store.clear(name)
        for key, value in {**SETTING_DEFAULTS, **kept}.items():
            store.update("settings", {"key": key, "value": value, "updatedAt": now})
    logger.info("All data reset (kept %s)", ", ".join(sorted(kept)) or "nothing")


def seed_demo(store: Store) -> bool:
    """Adds the demo components and default settings when the inventory is empty."""
    if store.count("components") > 0:
        return False
    now = utc_now_iso()
    data = {
        "components": [
            {"id": f"demo-{i + 1}", "createdAt": now, "updatedAt": now, **fields}
            for i, fields in enumerate(DEMO_COMPONENTS)
        ],
        "settings": {k: v for k, v in SETTING_DEFAULTS.items() if store.get("settings", k) is None},
    }
    apply_snapshot(store, parse_snapshot(data))
    logger.info("Demo data added (%d components)", len(DEMO_COMPONENTS))
    return True
