"""
Tests for CartStore
"""

import pytest

from storefront.cart.models import LineKey, LineState, StockStatus
from storefront.cart.store import CartStore
from storefront.errors import InvalidQuantity, LineNotFound, StockExceeded

from fakes import make_item

A = LineKey("prod-a")
B = LineKey("prod-b")
C = LineKey("prod-c")


class TestAddOrIncrement:
    def test_appends_new_lines_in_order(self, item_a, item_b):
        store = CartStore()
        store.add_or_increment(item_b)
        snapshot = store.add_or_increment(item_a)

        assert snapshot.keys == (B, A)

    def test_merges_same_key(self, item_a):
        store = CartStore([item_a])

        snapshot = store.add_or_increment(make_item("prod-a", 2, "95.00"))

        assert len(snapshot) == 1
        assert snapshot.get(A).quantity == 3
        # Fresher price from the incoming item
        assert str(snapshot.get(A).unit_price) == "95.00"

    def test_variants_are_separate_lines(self):
        store = CartStore()
        store.add_or_increment(make_item("prod-a", 1, variant_key="red/m"))
        snapshot = store.add_or_increment(make_item("prod-a", 1, variant_key="blue/m"))

        assert snapshot.keys == (LineKey("prod-a", "red/m"), LineKey("prod-a", "blue/m"))

    def test_stock_exceeded_is_raised_not_clamped(self):
        store = CartStore([make_item("prod-a", 4, stock_status=StockStatus.LOW_STOCK, stock_count=5)])

        with pytest.raises(StockExceeded) as exc_info:
            store.add_or_increment(make_item("prod-a", 2, stock_status=StockStatus.LOW_STOCK, stock_count=5))

        assert exc_info.value.requested == 6
        assert exc_info.value.available == 5
        assert store.get(A).quantity == 4

    def test_out_of_stock_not_validated_locally(self):
        store = CartStore()
        snapshot = store.add_or_increment(
            make_item("prod-a", 2, stock_status=StockStatus.OUT_OF_STOCK, stock_count=0)
        )

        assert snapshot.get(A).quantity == 2


class TestSetQuantity:
    def test_replaces_in_place(self, item_a, item_b):
        store = CartStore([item_a, item_b])

        snapshot = store.set_quantity(A, 5)

        assert snapshot.keys == (A, B)
        assert snapshot.get(A).quantity == 5

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
    def test_invalid_quantity(self, item_a, quantity):
        store = CartStore([item_a])

        with pytest.raises(InvalidQuantity):
            store.set_quantity(A, quantity)
        assert store.get(A).quantity == 1

    def test_above_stock(self):
        store = CartStore([make_item("prod-a", 1, stock_count=3)])

        with pytest.raises(StockExceeded):
            store.set_quantity(A, 4)

    def test_missing_line(self):
        with pytest.raises(LineNotFound):
            CartStore().set_quantity(A, 1)


class TestRemove:
    def test_remove_is_idempotent(self, item_a, item_b):
        store = CartStore([item_a, item_b])

        once = store.remove(A)
        twice = store.remove(A)

        assert once == twice
        assert twice.keys == (B,)

    def test_remove_absent_key(self):
        assert CartStore().remove(A).is_empty


class TestBookkeeping:
    def test_pending_flags(self, item_a):
        store = CartStore([item_a])

        store.mark_pending(A)
        assert store.snapshot().is_pending(A)
        store.mark_retrying(A)
        assert store.state(A) == LineState.RETRYING
        store.mark_pending(A, False)
        assert store.state(A) == LineState.SETTLED
        # Unknown keys are ignored
        store.mark_pending(C)
        assert store.state(C) is None

    def test_generations_survive_removal(self, item_a):
        store = CartStore([item_a])

        assert store.next_generation(A) == 1
        store.remove(A)
        assert store.generation(A) == 1
        assert store.next_generation(A) == 2
        assert store.generations() == {A: 2}

    def test_restore_at_position(self, item_a, item_b):
        c = make_item("prod-c", 1)
        store = CartStore([item_a, item_b, c])
        store.remove(B)

        snapshot = store.restore(item_b, 1)

        assert snapshot.keys == (A, B, C)

    def test_put_keeps_position(self, item_a, item_b):
        store = CartStore([item_a, item_b])

        snapshot = store.put(item_a.with_quantity(9))

        assert snapshot.keys == (A, B)
        assert snapshot.get(A).quantity == 9

    def test_replace_all(self, item_a, item_b):
        c = make_item("prod-c", 1)
        d = make_item("prod-d", 1)
        store = CartStore([item_a, item_b, c])
        store.mark_pending(C)

        snapshot = store.replace_all(
            [d, item_b.with_quantity(5), make_item("prod-c", 7)],
            keep={C},
        )

        # A dropped, B updated in place, C kept local, D appended
        assert snapshot.keys == (B, C, LineKey("prod-d"))
        assert snapshot.get(B).quantity == 5
        assert snapshot.get(C).quantity == 1
        assert snapshot.is_pending(C)
