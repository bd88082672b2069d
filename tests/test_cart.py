"""
Tests for tirestore_checkout.cart.

Tests cover:
- Loading corrupt or missing snapshots
- Save/clear notifications
- Add/update/remove mutations
- Cross-view synchronization (two tabs over one storage)
"""
from __future__ import annotations

import json
from decimal import Decimal

import pytest

from tirestore_checkout.cart import CartStore
from tirestore_checkout.models import CART_UPDATED_EVENT, STORAGE_EVENT, CartItem


class TestCartLoad:
    """Tests for CartStore.load."""

    @pytest.mark.asyncio
    async def test_missing_snapshot_is_empty(self, cart_store):
        """Should return an empty cart when nothing is stored."""
        assert await cart_store.load() == []

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_is_empty(self, tab, cart_store):
        """Should not raise on unparseable JSON."""
        await tab.set_item("cart", "{not json")
        assert await cart_store.load() == []

    @pytest.mark.asyncio
    async def test_non_list_snapshot_is_empty(self, tab, cart_store):
        """Should ignore a snapshot that is not an array."""
        await tab.set_item("cart", json.dumps({"id": 1}))
        assert await cart_store.load() == []

    @pytest.mark.asyncio
    async def test_invalid_entries_are_skipped(self, tab, cart_store):
        """Should keep valid lines and drop malformed ones."""
        await tab.set_item("cart", json.dumps([
            {"id": 1, "name": "Good", "price": 50, "quantity": 2},
            {"name": "No id", "price": 50},
            {"id": 2, "name": "Zero qty", "price": 50, "quantity": 0},
            "garbage",
        ]))
        items = await cart_store.load()
        assert [i.id for i in items] == [1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", ["NaN", "Infinity", "-Infinity", '"nan"', '"inf"'])
    async def test_non_finite_price_is_skipped(self, tab, cart_store, price):
        """Should drop lines whose persisted price is not a finite number."""
        await tab.set_item(
            "cart",
            '[{"id": 1, "name": "Bad", "price": %s, "quantity": 1},'
            ' {"id": 2, "name": "Good", "price": 75, "quantity": 1}]' % price,
        )
        items = await cart_store.load()
        assert [i.id for i in items] == [2]
        assert await cart_store.total() == Decimal("75")

    @pytest.mark.asyncio
    async def test_storage_failure_is_empty(self, cart_store, monkeypatch):
        """Should return an empty cart if the storage read fails."""
        async def broken(key):
            raise ConnectionError("storage down")

        monkeypatch.setattr(cart_store.storage, "get_item", broken)
        assert await cart_store.load() == []


class TestCartMutations:
    """Tests for save, clear and item mutations."""

    @pytest.mark.asyncio
    async def test_save_then_load(self, cart_store, tires):
        """Should persist the snapshot as a JSON array."""
        await cart_store.save(tires)
        loaded = await cart_store.load()
        assert [i.key for i in loaded] == [i.key for i in tires]
        assert await cart_store.total() == Decimal("469.80")

    @pytest.mark.asyncio
    async def test_save_emits_cart_updated(self, cart_store, tires):
        """Should notify subscribers after persisting."""
        events = []

        async def listener(event, items):
            events.append((event, len(items), len(await cart_store.load())))

        cart_store.subscribe(listener)
        await cart_store.save(tires)
        assert events == [(CART_UPDATED_EVENT, 2, 2)]

    @pytest.mark.asyncio
    async def test_clear_emits_cart_updated(self, cart_store, tires):
        """Should notify subscribers with an empty cart on clear."""
        await cart_store.save(tires)
        events = []

        async def listener(event, items):
            events.append((event, items))

        cart_store.subscribe(listener)
        await cart_store.clear()
        assert events == [(CART_UPDATED_EVENT, [])]
        assert await cart_store.load() == []

    @pytest.mark.asyncio
    async def test_add_merges_same_line(self, cart_store):
        """Should merge quantities for the same (id, size)."""
        await cart_store.add_item(CartItem(id=1, name="Tire", size="16", unit_price=Decimal("50"), quantity=2))
        items = await cart_store.add_item(CartItem(id=1, name="Tire", size="16", unit_price=Decimal("50"), quantity=2))
        assert len(items) == 1
        assert items[0].quantity == 4
        assert await cart_store.item_count() == 4

    @pytest.mark.asyncio
    async def test_add_keeps_sizes_apart(self, cart_store):
        """Should add a separate line for a different size."""
        await cart_store.add_item(CartItem(id=1, name="Tire", size="16", unit_price=Decimal("50")))
        items = await cart_store.add_item(CartItem(id=1, name="Tire", size="17", unit_price=Decimal("55")))
        assert len(items) == 2

    @pytest.mark.asyncio
    async def test_update_quantity_never_below_one(self, cart_store):
        """Should clamp quantity decrements at one."""
        await cart_store.add_item(CartItem(id=1, name="Tire", size="16", unit_price=Decimal("50"), quantity=2))
        items = await cart_store.update_quantity(1, "16", -5)
        assert items[0].quantity == 1

    @pytest.mark.asyncio
    async def test_remove_item(self, cart_store, tires):
        """Should remove only the matching line."""
        await cart_store.save(tires)
        items = await cart_store.remove_item(82, "225/45R17")
        assert [i.id for i in items] == [17]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_save(self, cart_store, tires):
        """Should keep notifying other listeners when one fails."""
        seen = []

        async def broken(event, items):
            raise RuntimeError("boom")

        async def healthy(event, items):
            seen.append(event)

        cart_store.subscribe(broken)
        cart_store.subscribe(healthy)
        await cart_store.save(tires)
        assert seen == [CART_UPDATED_EVENT]


class TestCrossViewSync:
    """Tests for synchronization between two open views."""

    @pytest.mark.asyncio
    async def test_other_tab_receives_storage_event(self, storage, tires):
        """Should deliver a storage event to the other tab, not to the writer."""
        tab_a = CartStore(storage.context())
        tab_b = CartStore(storage.context())
        events_a, events_b = [], []

        async def on_a(event, items):
            events_a.append(event)

        async def on_b(event, items):
            events_b.append((event, len(items)))

        tab_a.subscribe(on_a)
        tab_b.subscribe(on_b)
        await tab_a.save(tires)

        assert events_a == [CART_UPDATED_EVENT]
        assert events_b == [(STORAGE_EVENT, 2)]

    @pytest.mark.asyncio
    async def test_cleared_cart_visible_in_other_tab(self, storage, tires):
        """Should show the cleared cart to a tab that reads after another tab checked out."""
        tab_a = CartStore(storage.context())
        tab_b = CartStore(storage.context())
        await tab_a.save(tires)
        assert len(await tab_b.load()) == 2

        await tab_a.clear()
        assert await tab_b.load() == []

    @pytest.mark.asyncio
    async def test_last_write_wins(self, storage):
        """Should keep the last writer's snapshot when two tabs race."""
        tab_a = CartStore(storage.context())
        tab_b = CartStore(storage.context())
        await tab_a.save([CartItem(id=1, name="A", unit_price=Decimal("10"))])
        await tab_b.save([CartItem(id=2, name="B", unit_price=Decimal("20"))])
        assert [i.id for i in await tab_a.load()] == [2]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_events(self, storage, tires):
        """Should stop delivering events after unsubscribe."""
        tab_a = CartStore(storage.context())
        tab_b = CartStore(storage.context())
        events = []

        async def on_b(event, items):
            events.append(event)

        unsubscribe = tab_b.subscribe(on_b)
        unsubscribe()
        await tab_a.save(tires)
        assert events == []

    @pytest.mark.asyncio
    async def test_other_keys_ignored(self, storage):
        """Should ignore storage changes for unrelated keys."""
        writer = storage.context()
        tab_b = CartStore(storage.context())
        events = []

        async def on_b(event, items):
            events.append(event)

        tab_b.subscribe(on_b)
        await writer.set_item("wishlist", "[]")
        assert events == []
