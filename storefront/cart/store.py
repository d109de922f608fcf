"""
Cart Store - in-memory authoritative cart for the current session.

Holds the ordered line items, their sync state and the per-key generation
counters used to detect stale remote responses. Only the sync controller
writes to a store; everything else reads snapshots.
"""
from typing import Dict, Iterable, List, Optional

from storefront.cart.models import CartSnapshot, LineItem, LineKey, LineState, SnapshotLine
from storefront.errors import (
    ERROR_INVALID_QUANTITY,
    InvalidQuantity,
    LineNotFound,
    StockExceeded,
)


class CartStore:
    """
    Ordered cart lines keyed by (product_id, variant_key).

    Usage:
        store = CartStore()
        store.add_or_increment(item)
        snapshot = store.snapshot()
    """

    def __init__(self, items: Iterable[LineItem] = ()):
        # dicts keep insertion order; that order is the display order
        self._items: Dict[LineKey, LineItem] = {}
        self._states: Dict[LineKey, LineState] = {}
        self._generations: Dict[LineKey, int] = {}
        for item in items:
            self.add_or_increment(item)

    # ==================== Reads ====================

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(tuple(
            SnapshotLine(item, self._states.get(key, LineState.SETTLED))
            for key, item in self._items.items()
        ))

    def get(self, key: LineKey) -> Optional[LineItem]:
        return self._items.get(key)

    def __contains__(self, key: LineKey) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def position(self, key: LineKey) -> Optional[int]:
        for index, existing in enumerate(self._items):
            if existing == key:
                return index
        return None

    def state(self, key: LineKey) -> Optional[LineState]:
        if key not in self._items:
            return None
        return self._states.get(key, LineState.SETTLED)

    # ==================== Mutations ====================

    def add_or_increment(self, item: LineItem) -> CartSnapshot:
        """
        Add a line, or merge into the existing line with the same key.

        A merge adds the quantities and takes price and stock fields from
        the incoming item, which carries the fresher catalog data.

        Raises:
            StockExceeded: If the resulting quantity is above a known stock count
        """
        key = item.key
        existing = self._items.get(key)
        quantity = item.quantity + (existing.quantity if existing else 0)
        if item.exceeds_stock(quantity):
            raise StockExceeded(key, quantity, item.stock_count)

        if existing is None:
            self._items[key] = item
        else:
            self._items[key] = item.with_quantity(quantity)
        return self.snapshot()

    def set_quantity(self, key: LineKey, quantity: int) -> CartSnapshot:
        """
        Replace a line's quantity in place.

        Raises:
            InvalidQuantity: If quantity is not an integer >= 1
            StockExceeded: If quantity is above a known stock count
            LineNotFound: If the line is not in the cart
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity(f"{ERROR_INVALID_QUANTITY}: {quantity!r}")
        existing = self._items.get(key)
        if existing is None:
            raise LineNotFound(key)
        if existing.exceeds_stock(quantity):
            raise StockExceeded(key, quantity, existing.stock_count)

        self._items[key] = existing.with_quantity(quantity)
        return self.snapshot()

    def remove(self, key: LineKey) -> CartSnapshot:
        """Delete a line. Removing an absent key is a no-op."""
        self._items.pop(key, None)
        self._states.pop(key, None)
        return self.snapshot()

    # ==================== Sync bookkeeping ====================

    def mark_pending(self, key: LineKey, pending: bool = True) -> None:
        if key not in self._items:
            return
        if pending:
            self._states[key] = LineState.PENDING
        else:
            self._states.pop(key, None)

    def mark_retrying(self, key: LineKey) -> None:
        if key in self._items:
            self._states[key] = LineState.RETRYING

    def next_generation(self, key: LineKey) -> int:
        """Advance and return the key's generation. Counters survive removal."""
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        return generation

    def generation(self, key: LineKey) -> int:
        return self._generations.get(key, 0)

    def generations(self) -> Dict[LineKey, int]:
        return dict(self._generations)

    def put(self, item: LineItem) -> CartSnapshot:
        """Overwrite a line with a server-confirmed value, keeping its position."""
        self._items[item.key] = item
        return self.snapshot()

    def restore(self, item: LineItem, index: Optional[int]) -> CartSnapshot:
        """Re-insert a removed line at its previous position (or at the end)."""
        key = item.key
        entries = [(k, v) for k, v in self._items.items() if k != key]
        if index is None or index > len(entries):
            index = len(entries)
        entries.insert(index, (key, item))
        self._items = dict(entries)
        self._states.pop(key, None)
        return self.snapshot()

    def replace_all(self, items: Iterable[LineItem], keep: Iterable[LineKey] = ()) -> CartSnapshot:
        """
        Replace the cart with a full remote listing.

        Lines in ``keep`` retain their local value and state. Other lines
        take the remote value in their current position; lines missing from
        the listing are dropped and new ones are appended in listing order.
        """
        keep = set(keep)
        remote: Dict[LineKey, LineItem] = {}
        for item in items:
            remote[item.key] = item

        merged: List[tuple] = []
        for key, local in self._items.items():
            if key in keep:
                merged.append((key, local))
            elif key in remote:
                merged.append((key, remote.pop(key)))
        for key, item in remote.items():
            if key not in keep:
                merged.append((key, item))

        self._items = dict(merged)
        self._states = {k: s for k, s in self._states.items() if k in keep and k in self._items}
        return self.snapshot()
