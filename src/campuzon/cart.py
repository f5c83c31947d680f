"""Single-store shopping cart held on the client.

``CartLedger`` is the pure data model (no I/O); ``PersistedCart`` binds a
ledger to a ``CartStorage`` record and persists after every mutation.

Invariants held by every reachable ledger state:

- all lines belong to ``active_store_id``;
- ``1 <= quantity <= product.available_stock`` for each line;
- ``active_store_id`` is None exactly when ``lines`` is empty.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

from campuzon.constants import CART_RECORD_NAME, CART_SCHEMA_VERSION
from campuzon.errors import CrossStoreConflict, InsufficientStock
from campuzon.models import ProductSnapshot
from campuzon.notify import safe_notify

if TYPE_CHECKING:
    from campuzon.notify import Notifier
    from campuzon.storage import CartStorage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CartLine
# ---------------------------------------------------------------------------


@dataclass
class CartLine:
    product: ProductSnapshot
    quantity: int

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "productId": self.product.id,
            "quantity": self.quantity,
            "productSnapshot": self.product.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CartLine:
        snapshot = data.get("productSnapshot")
        if not isinstance(snapshot, dict):
            raise TypeError("productSnapshot must be an object")
        return cls(
            product=ProductSnapshot.from_dict(snapshot),
            quantity=int(data.get("quantity", 0)),
        )


# ---------------------------------------------------------------------------
# CartLedger
# ---------------------------------------------------------------------------


@dataclass
class CartLedger:
    """Pending purchase intent for a single store.

    Mutators raise ``CrossStoreConflict`` / ``InsufficientStock`` and leave
    the ledger untouched when they do.
    """

    active_store_id: str | None = None
    store_name: str | None = None
    store_slug: str | None = None
    lines: list[CartLine] = field(default_factory=list)

    # -- derived --------------------------------------------------------------

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def get_item(self, product_id: str) -> CartLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    # -- mutations ------------------------------------------------------------

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> CartLine:
        """Add ``quantity`` of ``product``, merging into an existing line."""
        if quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {quantity}")
        if self.active_store_id is not None and self.active_store_id != product.store_id:
            raise CrossStoreConflict(self.active_store_id, product.store_id)

        existing = self.get_item(product.id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        if new_quantity > product.available_stock:
            raise InsufficientStock(product.id, new_quantity, product.available_stock)

        if existing:
            # Refresh the snapshot so the stock bound tracks the latest product.
            existing.product = product
            existing.quantity = new_quantity
            return existing

        line = CartLine(product=product, quantity=new_quantity)
        self.lines.append(line)
        if self.active_store_id is None:
            self.active_store_id = product.store_id
            self.store_name = product.store_name
            self.store_slug = product.store_slug
        return line

    def update_quantity(self, product_id: str, quantity: int) -> None:
        """Set a line's quantity. Below 1 removes the line; unknown ids are ignored."""
        line = self.get_item(product_id)
        if line is None:
            return
        if quantity < 1:
            self.remove_item(product_id)
            return
        if quantity > line.product.available_stock:
            raise InsufficientStock(product_id, quantity, line.product.available_stock)
        line.quantity = quantity

    def remove_item(self, product_id: str) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]
        if not self.lines:
            self._unbind()

    def clear(self) -> None:
        self.lines = []
        self._unbind()

    def _unbind(self) -> None:
        self.active_store_id = None
        self.store_name = None
        self.store_slug = None

    # -- serialization --------------------------------------------------------

    def to_json(self) -> str:
        """Serialize to JSON string with schema version."""
        return json.dumps({
            "v": CART_SCHEMA_VERSION,
            "activeStoreId": self.active_store_id,
            "storeName": self.store_name,
            "storeSlug": self.store_slug,
            "lines": [line.to_dict() for line in self.lines],
        }, indent=2)

    @classmethod
    def from_json(cls, data: str | None) -> CartLedger:
        """Deserialize from JSON. Returns an empty ledger on corrupt/missing data.

        Lines that would break the ledger invariants are dropped with a warning.
        """
        if data is None:
            return cls()
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Cart data is corrupt; starting with an empty cart.")
            return cls()

        if not isinstance(obj, dict):
            logger.warning("Cart data is not a dict; starting with an empty cart.")
            return cls()

        store_id = obj.get("activeStoreId")
        lines: list[CartLine] = []
        seen: set[str] = set()
        raw_lines = obj.get("lines", [])
        for raw in raw_lines if isinstance(raw_lines, list) else []:
            if not isinstance(raw, dict):
                continue
            try:
                line = CartLine.from_dict(raw)
            except (AttributeError, TypeError, ValueError):
                logger.warning("Dropping unreadable cart line %r.", raw.get("productId"))
                continue
            if store_id is None:
                store_id = line.product.store_id
            if (
                line.product.store_id != store_id
                or line.product_id in seen
                or not 1 <= line.quantity <= line.product.available_stock
            ):
                logger.warning("Dropping invalid cart line for product %s.", line.product_id)
                continue
            seen.add(line.product_id)
            lines.append(line)

        if not lines:
            return cls()
        return cls(
            active_store_id=store_id,
            store_name=obj.get("storeName"),
            store_slug=obj.get("storeSlug"),
            lines=lines,
        )


# ---------------------------------------------------------------------------
# PersistedCart
# ---------------------------------------------------------------------------


class PersistedCart:
    """The process-wide cart: a ``CartLedger`` persisted to ``CartStorage``.

    Each mutation runs against a copy of the ledger, saves it, and only
    then swaps it in. A rejected operation or a failing save leaves both
    the in-memory and the stored ledger unchanged.
    """

    def __init__(
        self,
        storage: CartStorage,
        record_name: str = CART_RECORD_NAME,
        notifier: Notifier | None = None,
    ) -> None:
        self._storage = storage
        self._record_name = record_name
        self._notifier = notifier
        self._ledger = CartLedger.from_json(storage.load(record_name))

    # -- read side -----------------------------------------------------------

    @property
    def ledger(self) -> CartLedger:
        """A detached copy of the current ledger."""
        return copy.deepcopy(self._ledger)

    @property
    def active_store_id(self) -> str | None:
        return self._ledger.active_store_id

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return tuple(copy.deepcopy(self._ledger.lines))

    @property
    def item_count(self) -> int:
        return self._ledger.item_count

    @property
    def subtotal(self) -> Decimal:
        return self._ledger.subtotal

    @property
    def is_empty(self) -> bool:
        return self._ledger.is_empty

    def get_item(self, product_id: str) -> CartLine | None:
        line = self._ledger.get_item(product_id)
        return copy.deepcopy(line) if line else None

    # -- mutations ------------------------------------------------------------

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> None:
        try:
            self._commit(lambda ledger: ledger.add_item(product, quantity))
        except (CrossStoreConflict, InsufficientStock) as e:
            safe_notify(self._notifier, "error", e.message)
            raise
        safe_notify(self._notifier, "success", "Added to cart")

    def update_quantity(self, product_id: str, quantity: int) -> None:
        try:
            self._commit(lambda ledger: ledger.update_quantity(product_id, quantity))
        except InsufficientStock as e:
            safe_notify(self._notifier, "error", e.message)
            raise

    def remove_item(self, product_id: str) -> None:
        self._commit(lambda ledger: ledger.remove_item(product_id))
        safe_notify(self._notifier, "success", "Removed from cart")

    def clear(self) -> None:
        self._commit(lambda ledger: ledger.clear())

    def reload(self) -> None:
        """Re-read the stored record, discarding the in-memory ledger."""
        self._ledger = CartLedger.from_json(self._storage.load(self._record_name))

    def _commit(self, mutate: Callable[[CartLedger], object]) -> None:
        candidate = copy.deepcopy(self._ledger)
        mutate(candidate)
        self._storage.save(self._record_name, candidate.to_json())
        self._ledger = candidate
