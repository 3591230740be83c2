"""
Domain error taxonomy.

Every error the core raises derives from InventoryError so the CLI (or any
other front end) can catch one type and show a single message.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for all domain errors."""


class NotFound(InventoryError, LookupError):
    """A referenced component, cart line or remote document is absent."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found.")


class ValidationError(InventoryError, ValueError):
    """Malformed input fields; no state was changed."""


class InsufficientStock(InventoryError):
    """Requested quantity exceeds live stock; no state was changed."""

    def __init__(self, name: str, requested: int, available: int) -> None:
        self.name = name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for '{name}': requested {requested}, only {available} available."
        )


class CheckoutFailed(InventoryError):
    """Commit hit an inconsistency; applied decrements were rolled back."""


class ImportFormatError(InventoryError, ValueError):
    """Backup document could not be parsed; nothing was written."""


class SyncError(InventoryError):
    """Remote sync failed. Local state is unaffected."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DuplicateKey(InventoryError):
    """Store add() was given a key that already exists."""

    def __init__(self, collection: str, key: str) -> None:
        self.collection = collection
        self.key = key
        super().__init__(f"Duplicate key '{key}' in collection '{collection}'.")
