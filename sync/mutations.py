"""
Purpose: Client-side status mutations (rider advance, customer cancel, admin confirm).
What it does:
- One mutation in flight per order; a second click while one is pending is refused
- Optimistic overlay on the view while the request is out
- Conflict: silent re-fetch, then at most one retry, and only when the order is
  still where the user last saw it (re-issuing the same intent)
- Timeout / network failure: re-fetch before deciding anything, never a blind resend
- Always settles the view with a targeted refresh of the mutated order

Rule: Every retry carries the freshly read freshness token. The server still
re-validates the transition on each attempt.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Set

from orders.errors import Conflict, NetworkFailure, NotFound, PreconditionFailed
from orders.models import Order, OrderStatus
from orders.policy import LifecyclePolicy, default_lifecycle_policy

logger = logging.getLogger(__name__)


class MutationRunner:
    def __init__(self, session, reconciler=None, policy: Optional[LifecyclePolicy] = None):
        self.session = session
        self.reconciler = reconciler
        self.policy = policy or default_lifecycle_policy()
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def is_pending(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._in_flight

    def advance(self, order_id: str, next_status: Any, *, payment_collected_method: Any = None) -> Order:
        """
        Move order_id to next_status on behalf of the session's actor and
        return the server's record.
        """
        status = OrderStatus.parse(next_status)
        if status is None:
            raise PreconditionFailed("Status is invalid.", order_id=order_id)

        self._claim(order_id)
        try:
            observed = self._observed(order_id)
            if self.reconciler is not None:
                self.reconciler.begin_optimistic(order_id, status)
            return self._submit(observed, status, payment_collected_method)
        finally:
            self._release(order_id)
            if self.reconciler is not None:
                self.reconciler.settle(order_id)

    def cancel(self, order_id: str) -> Order:
        return self.advance(order_id, OrderStatus.CANCELLED)

    def _submit(self, observed: Order, status: OrderStatus, payment_collected_method: Any) -> Order:
        token = observed.freshness_token
        attempts = 0
        while True:
            try:
                return self.session.request_transition(
                    observed.id, status,
                    expected_token=token,
                    payment_collected_method=payment_collected_method,
                )
            except Conflict as exc:
                latest = self._refetch(observed.id)
                if latest.status == status:
                    logger.info("Order %s reached %s concurrently; treating as done", observed.id, status.value)
                    return latest
                if attempts >= self.policy.conflict_retry_limit or latest.status != observed.status:
                    raise Conflict(
                        f"Order {observed.id} was updated elsewhere and is now {latest.status.value}. "
                        "Review it before trying again.",
                        order_id=observed.id, current_token=latest.freshness_token,
                    ) from exc
            except NetworkFailure as exc:
                # the write may or may not have landed
                latest = self._refetch(observed.id)
                if latest.status == status:
                    logger.info("Order %s write landed despite %s", observed.id, exc.code)
                    return latest
                if attempts >= self.policy.conflict_retry_limit or latest.status != observed.status:
                    raise
            attempts += 1
            token = latest.freshness_token
            logger.info("Retrying %s -> %s on %s (attempt %d)", observed.status.value, status.value,
                        observed.id, attempts + 1)

    def _observed(self, order_id: str) -> Order:
        """
        The order as the user last saw it: the view's server record when there
        is one, otherwise a fresh read.
        """
        if self.reconciler is not None:
            known = self.reconciler.server_record(order_id)
            if known is not None:
                return known
        return self._latest(order_id)

    def _latest(self, order_id: str) -> Order:
        return self.session.fetch_order(order_id).order

    def _refetch(self, order_id: str) -> Order:
        """
        Silent re-fetch after a failed write. The order may have left the
        actor's scope meanwhile (cancelled or reassigned away from a rider).
        """
        try:
            return self._latest(order_id)
        except NotFound as exc:
            raise NotFound(f"Order {order_id} was updated elsewhere and is no longer available to you.",
                           order_id=order_id) from exc

    def _claim(self, order_id: str) -> None:
        with self._lock:
            if order_id in self._in_flight:
                raise PreconditionFailed("An update for this order is already in progress.", order_id=order_id)
            self._in_flight.add(order_id)

    def _release(self, order_id: str) -> None:
        with self._lock:
            self._in_flight.discard(order_id)
