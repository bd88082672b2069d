"""
Cart Store.

The cart snapshot is a JSON array persisted under a well-known storage key.
Every mutation persists the snapshot and then notifies subscribers with a
cart-updated event; changes written by other views arrive as storage events
and are re-published to this view's subscribers. Concurrent writers are not
coordinated: the last write wins.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional

from tirestore_checkout.models import (
    CART_UPDATED_EVENT,
    STORAGE_EVENT,
    CartItem,
    cart_total,
)
from tirestore_checkout.storage import StorageChange, StorageContext

logger = logging.getLogger(__name__)

# Receives (event_name, items) where event_name is "cart-updated" for changes
# made through this store and "storage" for changes made by another view.
CartListener = Callable[[str, List[CartItem]], Awaitable[None]]

DEFAULT_CART_KEY = "cart"


class CartStore:
    """Reads and writes the cart snapshot for one view."""

    def __init__(self, storage: StorageContext, key: str = DEFAULT_CART_KEY):
        self.storage = storage
        self.key = key
        self._listeners: List[CartListener] = []
        self._unsubscribe_storage: Optional[Callable[[], None]] = None

    @staticmethod
    def parse(raw: Optional[str]) -> List[CartItem]:
        """Parse a persisted snapshot. Missing or corrupt data yields an empty cart."""
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unparseable cart snapshot")
            return []
        if not isinstance(data, list):
            logger.warning("Discarding cart snapshot that is not a list")
            return []

        items: List[CartItem] = []
        for entry in data:
            try:
                items.append(CartItem.from_dict(entry))
            except (KeyError, TypeError, ValueError, ArithmeticError, AttributeError) as e:
                logger.warning(f"Skipping invalid cart entry {entry!r}: {e}")
        return items

    async def load(self) -> List[CartItem]:
        """Return the current cart. Never raises for bad persisted data."""
        try:
            raw = await self.storage.get_item(self.key)
        except Exception as e:
            logger.error(f"Cart storage read failed: {e}")
            return []
        return self.parse(raw)

    async def save(self, items: List[CartItem]) -> None:
        """Persist the snapshot, then emit cart-updated."""
        raw = json.dumps([item.to_dict() for item in items])
        await self.storage.set_item(self.key, raw)
        logger.debug(f"Saved cart with {len(items)} item(s)")
        await self._notify(CART_UPDATED_EVENT, items)

    async def clear(self) -> None:
        """Remove the snapshot, then emit cart-updated."""
        await self.storage.remove_item(self.key)
        logger.debug("Cleared cart")
        await self._notify(CART_UPDATED_EVENT, [])

    # Mutations used by product and cart pages. Each is a read-modify-write.

    async def add_item(self, item: CartItem) -> List[CartItem]:
        """Add an item, merging quantities with an existing (id, size) line."""
        items = await self.load()
        for existing in items:
            if existing.key == item.key:
                existing.quantity += item.quantity
                break
        else:
            items.append(item)
        await self.save(items)
        return items

    async def update_quantity(self, item_id: int, size: str, delta: int) -> List[CartItem]:
        """Change a line's quantity by ``delta``, never going below 1."""
        items = await self.load()
        for existing in items:
            if existing.key == (item_id, size):
                existing.quantity = max(1, existing.quantity + delta)
        await self.save(items)
        return items

    async def remove_item(self, item_id: int, size: str) -> List[CartItem]:
        items = [item for item in await self.load() if item.key != (item_id, size)]
        await self.save(items)
        return items

    async def item_count(self) -> int:
        """Total units in the cart, for badge counters."""
        return sum(item.quantity for item in await self.load())

    async def total(self) -> Decimal:
        return cart_total(await self.load())

    # Subscriptions

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """
        Subscribe to cart changes from this view and from other views.

        Returns an unsubscribe callable.
        """
        self._listeners.append(listener)
        if self._unsubscribe_storage is None:
            self._unsubscribe_storage = self.storage.on_storage(self._on_storage)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if not self._listeners and self._unsubscribe_storage is not None:
                self._unsubscribe_storage()
                self._unsubscribe_storage = None

        return unsubscribe

    async def _on_storage(self, change: StorageChange) -> None:
        if change.key != self.key:
            return
        await self._notify(STORAGE_EVENT, self.parse(change.new_value))

    async def _notify(self, event: str, items: List[CartItem]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, list(items))
            except Exception as e:
                logger.error(f"Cart listener failed on {event}: {e}")
