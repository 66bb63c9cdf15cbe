"""
Cart store tests.

Verifies:
- Quantity stays within 1..stock for every mutation
- Guest cart persistence and the login merge rule
- Sync queue ordering (superseded, stale and failed tasks)
- Identity transitions are serialized and stale fetches dropped
"""

import threading

import pytest

from quickshop.cart_store import (
    CartItem,
    CartStore,
    CartSyncError,
    InsufficientStockError,
    JsonFileCartStorage,
    MemoryCartStorage,
    OutOfStockError,
    merge_carts,
)
from quickshop.cart_store.store import SYNC_APPLIED, SYNC_FAILED, SYNC_SKIPPED, SYNC_STALE


SERUM = {"id": 1, "name": "Vitamin C Serum", "slug": "vitamin-c-serum", "price": 120000,
         "image": "/img/serum.jpg", "stock": 3, "category": "Skincare"}
TONER = {"id": 2, "name": "Hydrating Toner", "slug": "hydrating-toner", "price": 85000,
         "image_url": None, "stock": 5, "category": {"name": "Skincare"}}


def item(product, quantity):
    return CartItem.from_product(product, quantity=quantity)


class FakeRemote:
    def __init__(self, items=None):
        self.items = list(items or [])
        self.pushed = []
        self.fail = False
        self.fetches = 0

    def fetch_cart(self):
        self.fetches += 1
        if self.fail:
            raise CartSyncError("offline")
        return [CartItem.from_dict(i.to_dict()) for i in self.items]

    def replace_cart(self, items):
        if self.fail:
            raise CartSyncError("offline")
        self.pushed.append([(i.id, i.quantity) for i in items])
        self.items = list(items)


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def __call__(self, level, title, description=None):
        self.messages.append((level, title, description))


# =============================================================================
# MUTATIONS
# =============================================================================


class TestMutations:

    def test_add_inserts_then_increments(self):
        store = CartStore()
        store.add_item(SERUM)
        store.add_item(SERUM)

        assert store.get_item_count(1) == 2
        assert store.get_total_items() == 2
        assert store.get_total_price() == 240000

    def test_add_at_stock_limit_fails_without_mutation(self):
        notifier = RecordingNotifier()
        store = CartStore(notifier=notifier)
        for _ in range(3):
            store.add_item(SERUM)

        with pytest.raises(OutOfStockError):
            store.add_item(SERUM)

        assert store.get_item_count(1) == 3
        assert notifier.messages[-1] == ("error", "Cannot add more", "Only 3 units available")

    def test_add_product_with_no_stock_is_rejected(self):
        store = CartStore()
        with pytest.raises(OutOfStockError):
            store.add_item(dict(SERUM, stock=0))
        assert store.items == []

    def test_add_uses_placeholder_image_and_category_name(self):
        store = CartStore()
        line = store.add_item(TONER)
        assert line.image == "/placeholder-product.jpg"
        assert line.category == "Skincare"

    def test_remove_absent_item_is_noop(self):
        store = CartStore()
        store.add_item(SERUM)
        assert store.remove_item(99) is False
        assert store.get_total_items() == 1

    def test_update_below_one_removes(self):
        store = CartStore()
        store.add_item(SERUM)
        store.update_quantity(1, 0)
        assert store.items == []

    def test_update_above_stock_raises_and_keeps_quantity(self):
        store = CartStore()
        store.add_item(SERUM)
        with pytest.raises(InsufficientStockError):
            store.update_quantity(1, 4)
        assert store.get_item_count(1) == 1

    def test_update_unknown_product_is_noop(self):
        store = CartStore()
        assert store.update_quantity(42, 2) is None
        assert store.items == []

    def test_quantity_invariant_over_mixed_sequence(self):
        store = CartStore()
        ops = [
            ("add", SERUM), ("add", TONER), ("update", 2, 5), ("add", SERUM),
            ("update", 1, 9), ("add", TONER), ("update", 1, 3), ("add", SERUM),
            ("remove", 2), ("update", 1, -1), ("add", TONER),
        ]
        for op in ops:
            try:
                if op[0] == "add":
                    store.add_item(op[1])
                elif op[0] == "update":
                    store.update_quantity(op[1], op[2])
                else:
                    store.remove_item(op[1])
            except (OutOfStockError, InsufficientStockError):
                pass
            for line in store.items:
                assert 1 <= line.quantity <= line.stock

    def test_add_refreshes_stock_and_price_snapshot(self):
        store = CartStore()
        store.add_item({**SERUM, "stock": 1})
        store.add_item({**SERUM, "stock": 3, "price": 110000})

        line = store.items[0]
        assert (line.quantity, line.stock, line.price) == (2, 3, 110000)
        assert store.update_quantity(1, 3).quantity == 3

    def test_add_after_stock_drop_cuts_line_to_stock(self):
        store = CartStore()
        for _ in range(3):
            store.add_item(SERUM)

        with pytest.raises(OutOfStockError):
            store.add_item({**SERUM, "stock": 2})

        line = store.items[0]
        assert (line.quantity, line.stock) == (2, 2)

    def test_add_after_sell_out_drops_line(self):
        store = CartStore()
        store.add_item(SERUM)
        with pytest.raises(OutOfStockError):
            store.add_item({**SERUM, "stock": 0})
        assert store.items == []

    def test_items_returns_copies(self):
        store = CartStore()
        store.add_item(SERUM)
        store.items[0].quantity = 99
        assert store.get_item_count(1) == 1


# =============================================================================
# GUEST PERSISTENCE
# =============================================================================


class TestGuestPersistence:

    def test_guest_cart_survives_restart(self, tmp_path):
        path = tmp_path / "cart.json"
        store = CartStore(storage=JsonFileCartStorage(path))
        store.add_item(SERUM)
        store.add_item(TONER)

        reopened = CartStore(storage=JsonFileCartStorage(path))
        assert [(i.id, i.quantity) for i in reopened.items] == [(1, 1), (2, 1)]

    def test_corrupt_cache_loads_empty(self, tmp_path):
        path = tmp_path / "cart.json"
        path.write_text("{not json")
        assert JsonFileCartStorage(path).load() == []

    def test_missing_cache_loads_empty(self, tmp_path):
        assert JsonFileCartStorage(tmp_path / "nope.json").load() == []


# =============================================================================
# MERGE
# =============================================================================


class TestMerge:

    def test_shared_item_quantities_add_capped_by_guest_stock(self):
        guest = [item(SERUM, 2)]
        db = [item(SERUM, 2)]
        merged = merge_carts(guest, db)
        assert [(i.id, i.quantity) for i in merged] == [(1, 3)]

    def test_guest_only_items_are_appended(self):
        guest = [item(TONER, 1)]
        db = [item(SERUM, 1)]
        merged = merge_carts(guest, db)
        assert [i.id for i in merged] == [1, 2]

    def test_inputs_not_mutated(self):
        guest = [item(SERUM, 1)]
        db = [item(SERUM, 1)]
        merge_carts(guest, db)
        assert db[0].quantity == 1
        assert guest[0].quantity == 1

    def test_merge_never_drops_items(self):
        guest = [item(SERUM, 1), item(TONER, 2)]
        db = [item(TONER, 4), item(dict(SERUM, id=3), 1)]
        merged = merge_carts(guest, db)
        assert {i.id for i in merged} == {1, 2, 3}
        by_id = {i.id: i for i in merged}
        assert by_id[2].quantity == 5


# =============================================================================
# IDENTITY TRANSITIONS
# =============================================================================


class TestIdentity:

    def test_login_merges_and_pushes(self):
        remote = FakeRemote([item(SERUM, 2)])
        storage = MemoryCartStorage()
        store = CartStore(storage=storage, remote=remote)
        store.add_item(SERUM)
        store.add_item(TONER)

        assert store.set_identity(7) is True

        assert [(i.id, i.quantity) for i in store.items] == [(1, 3), (2, 1)]
        assert remote.pushed[-1] == [(1, 3), (2, 1)]
        assert storage.load() == []

    def test_same_identity_is_noop(self):
        remote = FakeRemote()
        store = CartStore(remote=remote)
        store.set_identity(7)
        assert store.set_identity(7) is False
        assert remote.fetches == 1

    def test_logout_discards_cart(self):
        remote = FakeRemote([item(SERUM, 1)])
        store = CartStore(remote=remote)
        store.set_identity(7)

        assert store.set_identity(None) is True
        assert store.items == []
        assert store.user_id is None

    def test_failed_fetch_keeps_guest_lines_without_overwriting_server(self):
        remote = FakeRemote([item(SERUM, 1)])
        remote.fail = True
        store = CartStore(remote=remote)
        store.add_item(TONER)

        store.set_identity(7)

        assert store.user_id == 7
        assert [i.id for i in store.items] == [2]
        assert remote.pushed == []

    def test_failed_fetch_merges_server_cart_before_first_push(self):
        remote = FakeRemote([item(SERUM, 2)])
        remote.fail = True
        store = CartStore(remote=remote)
        store.add_item(TONER)
        store.set_identity(7)
        assert store.merge_pending is True

        remote.fail = False
        store.add_item(TONER)
        assert store.pending_sync == 0

        store.flush()

        assert store.merge_pending is False
        assert remote.pushed == [[(1, 2), (2, 2)]]
        assert [(i.id, i.quantity) for i in store.items] == [(1, 2), (2, 2)]

    def test_flush_while_server_unreachable_pushes_nothing(self):
        remote = FakeRemote([item(SERUM, 2)])
        remote.fail = True
        store = CartStore(remote=remote)
        store.add_item(TONER)
        store.set_identity(7)
        store.add_item(TONER)

        assert store.flush() == []
        assert remote.pushed == []
        assert store.merge_pending is True

    def test_refresh_completes_pending_merge(self):
        remote = FakeRemote([item(SERUM, 1)])
        remote.fail = True
        store = CartStore(remote=remote)
        store.add_item(SERUM)
        store.set_identity(7)

        remote.fail = False
        assert store.refresh() is True

        assert [(i.id, i.quantity) for i in store.items] == [(1, 2)]
        assert store.pending_sync == 1

    def test_logout_during_login_fetch_discards_result(self):
        started = threading.Event()
        release = threading.Event()

        class SlowRemote(FakeRemote):
            def fetch_cart(self):
                started.set()
                release.wait(5)
                return super().fetch_cart()

        remote = SlowRemote([item(SERUM, 1)])
        store = CartStore(remote=remote)
        results = []

        worker = threading.Thread(target=lambda: results.append(store.set_identity(7)))
        worker.start()
        assert started.wait(5)

        store.set_identity(None)
        release.set()
        worker.join(5)

        assert results == [False]
        assert store.user_id is None
        assert store.items == []
        assert remote.pushed == []

    def test_concurrent_logins_are_serialized(self):
        remote = FakeRemote([item(SERUM, 1)])
        store = CartStore(remote=remote)
        store.add_item(TONER)

        threads = [threading.Thread(target=store.set_identity, args=(7,)) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert remote.fetches == 1
        assert [(i.id, i.quantity) for i in store.items] == [(1, 1), (2, 1)]


# =============================================================================
# SYNC QUEUE
# =============================================================================


class TestSync:

    def test_mutations_queue_until_flush(self):
        remote = FakeRemote()
        store = CartStore(remote=remote)
        store.set_identity(7)
        store.add_item(SERUM)
        store.add_item(SERUM)

        assert store.pending_sync == 2
        outcomes = store.flush()

        assert [o.status for o in outcomes] == [SYNC_SKIPPED, SYNC_APPLIED]
        assert remote.pushed[-1] == [(1, 2)]
        assert store.pending_sync == 0

    def test_failed_sync_keeps_local_state(self):
        remote = FakeRemote()
        store = CartStore(remote=remote)
        store.set_identity(7)
        store.add_item(SERUM)
        remote.fail = True

        outcomes = store.flush()

        assert outcomes[-1].status == SYNC_FAILED
        assert outcomes[-1].error == "offline"
        assert store.get_item_count(1) == 1

    def test_tasks_for_previous_user_are_dropped(self):
        remote = FakeRemote()
        store = CartStore(remote=remote)
        store.set_identity(7)
        store.add_item(SERUM)
        with store._lock:
            queued = list(store._queue)

        store.set_identity(None)
        store._queue.extend(queued)
        outcomes = store.flush()

        assert [o.status for o in outcomes] == [SYNC_STALE]

    def test_clear_cart_pushes_empty_snapshot(self):
        remote = FakeRemote([item(SERUM, 1)])
        store = CartStore(remote=remote)
        store.set_identity(7)
        store.clear_cart()
        store.flush()
        assert remote.pushed[-1] == []

    def test_guest_mutations_do_not_queue(self):
        store = CartStore(remote=FakeRemote())
        store.add_item(SERUM)
        assert store.pending_sync == 0

    def test_refresh_dropped_when_cart_changed_meanwhile(self):
        class RacingRemote(FakeRemote):
            store = None

            def fetch_cart(self):
                result = super().fetch_cart()
                if self.store is not None and self.store.get_item_count(2) == 0:
                    self.store.add_item(TONER)
                return result

        remote = RacingRemote([item(SERUM, 1)])
        store = CartStore(remote=remote)
        store.set_identity(7)
        remote.store = store

        assert store.refresh() is False
        assert {i.id for i in store.items} == {1, 2}
