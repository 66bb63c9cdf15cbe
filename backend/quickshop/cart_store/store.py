# Overview: Cart store state machine; mutations, identity transitions and server sync.

"""
Cart Store

The shopper's cart is held here, not on the server. It works the same
with or without a network and with or without a signed-in user.

IDENTITY:
- Guest: the cart is written to local storage after every mutation.
- Signed in: every mutation queues a SyncTask carrying a full snapshot;
  flush() pushes queued snapshots to the server cart.
- Login merges the guest cart into the user's server cart (merge_carts)
  and pushes the result. Logout discards the active cart.
- If the login fetch fails the merge is pending: nothing is queued for the
  server until flush() or refresh() has read the server cart and merged it.

CONCURRENCY:
- One login transition runs at a time (_transition_lock). A logout does
  not wait for it; it bumps the generation so an in-flight login fetch is
  dropped when it returns.
- Sync tasks carry a monotonic sequence number. Older snapshots for the
  same user are skipped, tasks for a user who is no longer signed in are
  dropped, and a completion older than the last applied one is discarded.
- A failed sync is logged and reported in the outcome; local state stays.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional

from .items import CartItem, OutOfStockError, InsufficientStockError, merge_carts
from .remote import CartRemote, CartSyncError
from .storage import MemoryCartStorage

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, Optional[str]], None]

SYNC_APPLIED = "applied"
SYNC_FAILED = "failed"
SYNC_SKIPPED = "skipped"
SYNC_STALE = "stale"
SYNC_DISCARDED = "discarded"

_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_notifier(level: str, title: str, description: Optional[str] = None) -> None:
    """Default notifier: shopper-facing messages go to the log."""
    message = f"{title}: {description}" if description else title
    logger.log(_LOG_LEVELS.get(level, logging.INFO), message)


@dataclass(frozen=True)
class SyncTask:
    seq: int
    user_id: int
    items: tuple[CartItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SyncOutcome:
    seq: int
    user_id: int
    status: str
    error: Optional[str] = None


class CartStore:
    def __init__(
        self,
        storage=None,
        remote: Optional[CartRemote] = None,
        notifier: Optional[Notifier] = None,
    ):
        self._storage = storage if storage is not None else MemoryCartStorage()
        self._remote = remote
        self._notify = notifier or log_notifier

        self._lock = threading.RLock()
        self._transition_lock = threading.Lock()

        self._items: list[CartItem] = self._storage.load()
        self._user_id: Optional[int] = None
        self._target_user_id: Optional[int] = None
        self._generation = 0
        self._merge_pending = False

        self._seq = 0
        self._last_applied_seq = 0
        self._queue: list[SyncTask] = []
        self.is_loading = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def items(self) -> list[CartItem]:
        with self._lock:
            return [replace(item) for item in self._items]

    @property
    def user_id(self) -> Optional[int]:
        return self._user_id

    @property
    def merge_pending(self) -> bool:
        return self._merge_pending

    @property
    def pending_sync(self) -> int:
        with self._lock:
            return len(self._queue)

    def get_total_items(self) -> int:
        with self._lock:
            return sum(item.quantity for item in self._items)

    def get_total_price(self) -> int:
        with self._lock:
            return sum(item.price * item.quantity for item in self._items)

    def get_item_count(self, product_id: int) -> int:
        with self._lock:
            item = self._find(product_id)
            return item.quantity if item else 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _find(self, product_id: int) -> Optional[CartItem]:
        for item in self._items:
            if item.id == product_id:
                return item
        return None

    def _changed(self) -> None:
        """Persist or queue the current state. Caller holds the lock."""
        self._seq += 1
        if self._user_id is None:
            self._storage.save(self._items)
        elif self._remote is not None and not self._merge_pending:
            self._queue.append(SyncTask(
                seq=self._seq,
                user_id=self._user_id,
                items=tuple(replace(item) for item in self._items),
            ))

    def add_item(self, product: Mapping[str, Any]) -> CartItem:
        """
        Add one unit of `product`.

        Raises OutOfStockError when the line already holds every unit in
        stock. The line's price and stock are refreshed from `product` first;
        if stock fell below the held quantity the line is cut down to it.
        """
        with self._lock:
            incoming = CartItem.from_product(product)
            existing = self._find(incoming.id)

            if existing is not None:
                refreshed = (existing.price, existing.stock) != (incoming.price, incoming.stock)
                existing.price = incoming.price
                existing.stock = incoming.stock
                if existing.quantity > existing.stock:
                    self._shrink_to_stock(existing)
                    self._notify("warning", "Limited stock", f"Only {incoming.stock} units available")
                    raise OutOfStockError(incoming.id, incoming.stock)
                if existing.quantity >= incoming.stock:
                    if refreshed:
                        self._changed()
                    self._notify("error", "Cannot add more", f"Only {incoming.stock} units available")
                    raise OutOfStockError(incoming.id, incoming.stock)
                existing.quantity += 1
                self._changed()
                self._notify("success", "Quantity updated", f"{existing.name} ({existing.quantity})")
                return replace(existing)

            if incoming.stock < 1:
                self._notify("error", "Cannot add more", "Out of stock")
                raise OutOfStockError(incoming.id, incoming.stock)

            self._items.append(incoming)
            self._changed()
            self._notify("success", "Added to cart!", incoming.name)
            return replace(incoming)

    def _shrink_to_stock(self, line: CartItem) -> None:
        if line.stock < 1:
            self._items = [i for i in self._items if i.id != line.id]
        else:
            line.quantity = line.stock
        self._changed()

    def remove_item(self, product_id: int) -> bool:
        with self._lock:
            item = self._find(product_id)
            if item is None:
                return False
            self._items = [i for i in self._items if i.id != product_id]
            self._changed()
            self._notify("success", "Removed from cart", item.name)
            return True

    def update_quantity(self, product_id: int, quantity: int) -> Optional[CartItem]:
        """
        Set a line's quantity.

        quantity < 1 removes the line. Above the stock snapshot raises
        InsufficientStockError and leaves the line as it was. Unknown
        product ids are ignored.
        """
        with self._lock:
            item = self._find(product_id)
            if item is None:
                return None

            if quantity < 1:
                self.remove_item(product_id)
                return None

            if quantity > item.stock:
                self._notify("warning", "Limited stock", f"Only {item.stock} units available")
                raise InsufficientStockError(product_id, quantity, item.stock)

            item.quantity = quantity
            self._changed()
            return replace(item)

    def clear_cart(self) -> None:
        """Empty the cart; called after an order is placed."""
        with self._lock:
            self._items = []
            self._changed()

    # ------------------------------------------------------------------
    # Identity transitions
    # ------------------------------------------------------------------

    def set_identity(self, user_id: Optional[int]) -> bool:
        """
        Switch between guest and signed-in user. Returns True if the
        active cart changed, False for a no-op or a superseded login.
        """
        if user_id is None:
            with self._lock:
                if self._target_user_id is None and self._user_id is None:
                    return False
                self._discard_locked()
                return True

        with self._transition_lock:
            with self._lock:
                if user_id == self._target_user_id:
                    return False
                if self._user_id is not None:
                    # Switching accounts: the previous user's cart is not a guest cart.
                    self._discard_locked()
                self._target_user_id = user_id
                self._generation += 1
                generation = self._generation
                self.is_loading = True

            try:
                server_items = self._remote.fetch_cart() if self._remote is not None else []
                fetch_failed = False
            except CartSyncError as exc:
                logger.warning("Could not load cart for user %s: %s", user_id, exc)
                server_items = []
                fetch_failed = True

            with self._lock:
                if generation != self._generation:
                    logger.info("Discarding cart fetch for user %s; identity changed", user_id)
                    return False
                self.is_loading = False
                self._user_id = user_id
                self._storage.save([])

                if fetch_failed:
                    # Guest lines stay local until the server cart can be read and merged
                    self._merge_pending = True
                    return True

                self._merge_pending = False
                self._items = merge_carts(self._items, server_items)
                self._changed()

        self.flush()
        return True

    def _discard_locked(self) -> None:
        self._generation += 1
        self._user_id = None
        self._target_user_id = None
        self._merge_pending = False
        self._items = []
        self._queue.clear()
        self.is_loading = False
        self._storage.save([])

    def _complete_merge(self) -> bool:
        """
        Finish a login merge that was left pending by a failed fetch.

        Returns True when no merge is pending afterwards.
        """
        with self._lock:
            if not self._merge_pending:
                return True
            if self._remote is None or self._user_id is None:
                return False
            user_id = self._user_id
            generation = self._generation

        try:
            server_items = self._remote.fetch_cart()
        except CartSyncError as exc:
            logger.warning("Cart for user %s still unavailable: %s", user_id, exc)
            return False

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding pending merge for user %s; identity changed", user_id)
                return False
            if self._merge_pending:
                self._merge_pending = False
                self._items = merge_carts(self._items, server_items)
                self._changed()
            return True

    def refresh(self) -> bool:
        """
        Reload the signed-in user's cart from the server.
        A login merge left pending by a failed fetch is completed instead.

        The result is dropped if the identity changed or the cart was
        mutated locally while the request was in flight.
        """
        with self._lock:
            if self._user_id is None or self._remote is None:
                return False
            user_id = self._user_id
            generation = self._generation
            seq = self._seq
            pending = self._merge_pending

        if pending:
            return self._complete_merge()

        try:
            server_items = self._remote.fetch_cart()
        except CartSyncError as exc:
            logger.warning("Could not refresh cart for user %s: %s", user_id, exc)
            return False

        with self._lock:
            if generation != self._generation or seq != self._seq:
                logger.info("Discarding stale cart refresh for user %s", user_id)
                return False
            self._items = server_items
            return True

    # ------------------------------------------------------------------
    # Server sync
    # ------------------------------------------------------------------

    def flush(self) -> list[SyncOutcome]:
        """Push queued snapshots to the server and report what happened to each."""
        if not self._complete_merge():
            return []

        with self._lock:
            tasks = list(self._queue)
            self._queue.clear()

        latest: dict[int, int] = {}
        for task in tasks:
            latest[task.user_id] = max(latest.get(task.user_id, 0), task.seq)

        outcomes: list[SyncOutcome] = []
        for task in tasks:
            if task.seq < latest[task.user_id]:
                outcomes.append(SyncOutcome(task.seq, task.user_id, SYNC_SKIPPED))
                continue

            with self._lock:
                current_user = self._user_id
            if task.user_id != current_user:
                outcomes.append(SyncOutcome(task.seq, task.user_id, SYNC_STALE))
                continue

            try:
                self._remote.replace_cart(list(task.items))
            except CartSyncError as exc:
                logger.error("Cart sync %s for user %s failed: %s", task.seq, task.user_id, exc)
                outcomes.append(SyncOutcome(task.seq, task.user_id, SYNC_FAILED, str(exc)))
                continue

            with self._lock:
                if task.seq <= self._last_applied_seq:
                    logger.info("Discarding out-of-order cart sync %s", task.seq)
                    outcomes.append(SyncOutcome(task.seq, task.user_id, SYNC_DISCARDED))
                    continue
                self._last_applied_seq = task.seq
            outcomes.append(SyncOutcome(task.seq, task.user_id, SYNC_APPLIED))

        return outcomes
