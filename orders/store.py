"""
Purpose: The Order Store contract and its in-memory implementation.
What it does:
- Defines the operations the lifecycle core needs from durable storage:
   - insert(order)
   - get(order_id)
   - list(order_filter, limit)
   - compare_and_set(order_id, expected_token, mutate)   <- the only write path
   - record_swap(entry) / swap_entries()                <- saga audit journal

- compare_and_set is atomic per order: the mutation is applied only if the
  presented freshness token still matches, and the store stamps updated_at
  and a new version on success.
- The store also refuses any write that would give a rider a second
  outForDelivery order. That is the global half of the single-active rule.

Rule: Store owns atomicity and versioning, dispatch owns the transition rules.
"""

from __future__ import annotations

import copy
import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import Conflict, NotFound, PreconditionFailed
from .models import Order, OrderFilter, OrderStatus

Mutation = Callable[[Order], None]


@dataclass(frozen=True)
class FetchResult:
    """
    Outcome of a conditional read.
    not_modified=True means the caller's token is still current and
    orders is empty; the caller keeps its local copy.
    """
    freshness_token: Optional[str]
    orders: List[Order]
    not_modified: bool = False

    @classmethod
    def unchanged(cls, freshness_token: Optional[str]) -> FetchResult:
        return cls(freshness_token=freshness_token, orders=[], not_modified=True)

    @property
    def order(self) -> Optional[Order]:
        return self.orders[0] if self.orders else None


def collection_token(orders: List[Order], scope: str = "orders") -> str:
    """
    Content hash over the (id, version) pairs of a result set.
    Any write to any order in the set changes the token.
    """
    digest = hashlib.sha1()
    for order in sorted(orders, key=lambda o: o.id):
        digest.update(f"{order.id}:{order.version};".encode("utf-8"))
    return f'W/"{scope}-{len(orders)}-{digest.hexdigest()[:16]}"'


def ensure_single_active(candidate: Order, others: List[Order]) -> None:
    """
    Raise PreconditionFailed if candidate would be a rider's second outForDelivery order.
    """
    if candidate.status != OrderStatus.OUT_FOR_DELIVERY or not candidate.assigned_rider_id:
        return
    for other in others:
        if (
            other.id != candidate.id
            and other.status == OrderStatus.OUT_FOR_DELIVERY
            and other.assigned_rider_id == candidate.assigned_rider_id
        ):
            raise PreconditionFailed(
                f"Rider already has order {other.id} out for delivery. Finish or swap it first.",
                order_id=candidate.id,
            )


class OrderStore:
    """
    Storage contract. Implementations: InMemoryOrderStore (here) and
    backend.ordering.store.DjangoOrderStore.
    """

    def insert(self, order: Order) -> Order:
        raise NotImplementedError

    def get(self, order_id: str) -> Order:
        raise NotImplementedError

    def list(self, order_filter: Optional[OrderFilter] = None, limit: Optional[int] = None) -> List[Order]:
        raise NotImplementedError

    def compare_and_set(self, order_id: str, expected_token: Optional[str], mutate: Mutation) -> Order:
        raise NotImplementedError

    def record_swap(self, entry: Dict[str, Any]) -> None:
        raise NotImplementedError

    def swap_entries(self, swap_id: Optional[str] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def active_order_for(self, rider_id: str) -> Optional[Order]:
        active = self.list(OrderFilter(assigned_rider_id=rider_id, status=OrderStatus.OUT_FOR_DELIVERY))
        return active[0] if active else None


class InMemoryOrderStore(OrderStore):
    """
    Thread-safe in-process store. Every read hands out a deep copy so callers
    can never mutate stored state except through compare_and_set.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._orders: Dict[str, Order] = {}
        self._swaps: List[Dict[str, Any]] = []
        self._lock = threading.RLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def insert(self, order: Order) -> Order:
        with self._lock:
            if order.id in self._orders:
                # idempotency: dont double insert
                return copy.deepcopy(self._orders[order.id])
            stored = copy.deepcopy(order)
            self._orders[order.id] = stored
            return copy.deepcopy(stored)

    def get(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFound(order_id=order_id)
            return copy.deepcopy(order)

    def list(self, order_filter: Optional[OrderFilter] = None, limit: Optional[int] = None) -> List[Order]:
        order_filter = order_filter or OrderFilter()
        with self._lock:
            matched = [copy.deepcopy(o) for o in self._orders.values() if order_filter.matches(o)]
        matched.sort(key=lambda o: o.created_at, reverse=True)
        if limit is not None:
            matched = matched[:limit]
        return matched

    def compare_and_set(self, order_id: str, expected_token: Optional[str], mutate: Mutation) -> Order:
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise NotFound(order_id=order_id)
            if expected_token is not None and expected_token != current.freshness_token:
                raise Conflict(order_id=order_id, current_token=current.freshness_token)

            candidate = copy.deepcopy(current)
            mutate(candidate)
            ensure_single_active(candidate, list(self._orders.values()))

            # updated_at must move forward even if the clock did not
            now = self._clock()
            if now <= current.updated_at:
                now = current.updated_at + timedelta(microseconds=1)
            candidate.updated_at = now
            candidate.version = current.version + 1

            self._orders[order_id] = candidate
            return copy.deepcopy(candidate)

    def record_swap(self, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._swaps.append(copy.deepcopy(entry))

    def swap_entries(self, swap_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._swaps if swap_id is None or e.get("swapId") == swap_id]
