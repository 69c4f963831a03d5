"""
Purpose: Keep a local view of orders consistent with the server.
What it does:
- Conditional list and single-order fetches keyed by freshness tokens
  (NotModified leaves local state untouched and counts as success)
- Modified records replace local ones wholesale, never field by field
- Any typed rejection of a fetch (network, expired auth, bad request) sets
  status "error" with its human-readable message and keeps the last good records
- Optimistic overlays for mutations in flight survive list refreshes until settled
- RefreshHub: lets the gateway tell every interested view that an order changed

Rule: The reconciler never writes. Mutations go through sync.mutations or the gateway.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from orders.errors import NotFound, OrderLifecycleError
from orders.models import Order, OrderFilter, OrderStatus

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Unable to load orders right now. Please try again later."


class OrderViewReconciler:
    """
    One list/detail view of orders for one session.

    status is one of idle | loading | success | error, error holds the
    human-readable message of the last failed fetch. A failed fetch keeps
    the last good records on screen.
    """

    def __init__(self, session, order_filter: Optional[OrderFilter] = None, limit: Optional[int] = None):
        self.session = session
        self.order_filter = order_filter or OrderFilter()
        self.limit = limit

        self.status = "idle"
        self.error: Optional[str] = None
        self.last_synced_at: Optional[datetime] = None

        self._records: Dict[str, Order] = {}
        self._optimistic: Dict[str, Order] = {}
        self._collection_token: Optional[str] = None
        self._listeners: List[Callable[[List[Order]], None]] = []
        self._lock = threading.RLock()

    # --- Local state ---

    @property
    def orders(self) -> List[Order]:
        with self._lock:
            return [copy.deepcopy(self._optimistic.get(order_id, order)) for order_id, order in self._records.items()]

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._optimistic.get(order_id) or self._records.get(order_id)
            return copy.deepcopy(order) if order else None

    def server_record(self, order_id: str) -> Optional[Order]:
        """Last server-confirmed copy, ignoring optimistic overlays."""
        with self._lock:
            order = self._records.get(order_id)
            return copy.deepcopy(order) if order else None

    def displays(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._records

    def is_interested(self, order: Order) -> bool:
        if self.displays(order.id):
            return True
        return self.order_filter.matches(order) and order.is_visible_to(self.session.actor)

    def add_listener(self, listener: Callable[[List[Order]], None]) -> None:
        self._listeners.append(listener)

    # --- Server reconciliation ---

    def refresh(self, force: bool = False) -> bool:
        """
        Conditional list fetch. force=True skips the freshness token.
        Returns True when local state changed.
        """
        token = None if force else self._collection_token
        self.status = "loading"
        try:
            result = self.session.fetch_orders(self.order_filter, freshness_token=token, limit=self.limit)
        except OrderLifecycleError as exc:
            self._fail(exc)
            return False

        self._synced()
        if result.not_modified:
            return False

        with self._lock:
            self._records = {order.id: order for order in result.orders}
            self._collection_token = result.freshness_token
        self._emit()
        return True

    def refresh_order(self, order_id: str) -> bool:
        """
        Targeted conditional fetch of one order. Used after a local mutation
        and when the refresh hub reports a change.
        """
        with self._lock:
            known = self._records.get(order_id)
        try:
            result = self.session.fetch_order(order_id, freshness_token=known.freshness_token if known else None)
        except NotFound:
            with self._lock:
                removed = self._records.pop(order_id, None) is not None
                self._collection_token = None
            if removed:
                self._emit()
            return removed
        except OrderLifecycleError as exc:
            self._fail(exc)
            return False

        self._synced()
        if result.not_modified:
            return False

        with self._lock:
            self._records[order_id] = result.order
            # the list token no longer describes what we hold
            self._collection_token = None
        self._emit()
        return True

    def order_changed(self, order: Order) -> None:
        if self.is_interested(order):
            self.refresh_order(order.id)

    # --- Optimistic updates ---

    def begin_optimistic(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        with self._lock:
            base = self._records.get(order_id)
            if base is None:
                return None
            guess = copy.deepcopy(base)
            guess.status = status
            self._optimistic[order_id] = guess
        self._emit()
        return copy.deepcopy(guess)

    def settle(self, order_id: str) -> None:
        """
        Drop the optimistic guess and replace it with the authoritative record.
        """
        with self._lock:
            self._optimistic.pop(order_id, None)
        self.refresh_order(order_id)

    # --- helpers ---

    def _synced(self) -> None:
        self.status = "success"
        self.error = None
        self.last_synced_at = datetime.now(timezone.utc)

    def _fail(self, exc: OrderLifecycleError) -> None:
        self.status = "error"
        self.error = exc.message or DEFAULT_ERROR_MESSAGE
        logger.warning("Order view refresh failed for %s: %s", self.session.actor.actor_id, self.error)

    def _emit(self) -> None:
        if not self._listeners:
            return
        snapshot = self.orders
        for listener in list(self._listeners):
            listener(snapshot)


class RefreshHub:
    """
    Registry of live views. Passed explicitly to the gateway; there is no
    process-wide instance.
    """

    def __init__(self):
        self._views: List[OrderViewReconciler] = []
        self._lock = threading.Lock()

    def subscribe(self, view: OrderViewReconciler) -> None:
        with self._lock:
            if view not in self._views:
                self._views.append(view)

    def unsubscribe(self, view: OrderViewReconciler) -> None:
        with self._lock:
            if view in self._views:
                self._views.remove(view)

    def order_changed(self, order: Order) -> None:
        with self._lock:
            views = list(self._views)
        for view in views:
            view.order_changed(order)
