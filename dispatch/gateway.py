"""
Purpose: The Status Mutation Gateway, the single choke point for order changes.
What it does:
Accepts a transition request from any actor (customer cancel, rider advance,
admin dispatch), runs it through the state machine, performs exactly one
conditional write against the Order Store, then tells every view showing
the order to refresh.

Also serves the role-scoped reads (single order, order lists) with
freshness tokens so clients can revalidate cheaply.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from orders.errors import Conflict, Forbidden, NotFound, PreconditionFailed
from orders.models import Actor, ActorRole, Order, OrderFilter, OrderStatus, PaymentCollectedMethod
from orders.store import FetchResult, OrderStore, collection_token
from riders.registry import RiderRegistry

from .state_machines.order_state import is_repeat_of_permitted_transition, validate_transition
from .state_machines.rider_state import apply_assignment, ensure_assignable, ensure_order_assignable

logger = logging.getLogger(__name__)


class StatusMutationGateway:
    """
    Coordinates every status write. Collaborators are injected:
    - store: the OrderStore (atomic conditional writes)
    - riders: rider lookups for admin assignment
    - refresh_hub: anything with order_changed(order); usually sync.reconciler.RefreshHub
    """
    def __init__(self, store: OrderStore, riders: RiderRegistry, refresh_hub=None, default_limit: int = 100):
        self.store = store
        self.riders = riders
        self.refresh_hub = refresh_hub
        self.default_limit = default_limit

    # ---- reads ----

    def get_order(self, order_id: str, actor: Actor) -> Order:
        """
        Orders outside the actor's scope are reported as missing, not forbidden,
        so ids of other customers' orders are not disclosed.
        """
        order = self.store.get(order_id)
        if not order.is_visible_to(actor):
            raise NotFound(order_id=order_id)
        return order

    def list_orders(self, actor: Actor, order_filter: Optional[OrderFilter] = None,
                    limit: Optional[int] = None) -> List[Order]:
        order_filter = order_filter or OrderFilter()
        # riders only ever see their own route and customers their own orders,
        # whatever filter they send
        if actor.role == ActorRole.RIDER:
            order_filter = replace(order_filter, assigned_rider_id=actor.actor_id, customer_id=None)
        elif actor.role == ActorRole.CUSTOMER:
            order_filter = replace(order_filter, customer_id=actor.actor_id)
        return self.store.list(order_filter, limit or self.default_limit)

    def fetch_order(self, order_id: str, actor: Actor, freshness_token: Optional[str] = None) -> FetchResult:
        order = self.get_order(order_id, actor)
        if freshness_token is not None and freshness_token == order.freshness_token:
            return FetchResult.unchanged(freshness_token)
        return FetchResult(freshness_token=order.freshness_token, orders=[order])

    def fetch_orders(self, actor: Actor, order_filter: Optional[OrderFilter] = None,
                     freshness_token: Optional[str] = None, limit: Optional[int] = None) -> FetchResult:
        orders = self.list_orders(actor, order_filter, limit)
        token = collection_token(orders, scope=f"{actor.role.value}-{actor.actor_id}")
        if freshness_token is not None and freshness_token == token:
            return FetchResult.unchanged(token)
        return FetchResult(freshness_token=token, orders=orders)

    # ---- writes ----

    def request_transition(
        self,
        order_id: str,
        next_status: Any,
        actor: Actor,
        *,
        expected_token: Optional[str] = None,
        payment_collected_method: Any = None,
        swap_id: Optional[str] = None,
    ) -> Order:
        """
        Check the freshness token, validate, then one conditional write.
        A stale expected_token is a Conflict before anything else is looked at:
        the caller decided on a version of the order that is gone.
        Without an expected_token the token read here is used, which still
        protects against writes landing between this read and the write.

        Re-issuing a transition that already happened (with an up-to-date or
        no token) is a no-op success: nothing is written and delivered
        payment is not recorded twice.

        swap_id: the journaled swap this request belongs to; only a started
        swap of this rider naming this order as current opens the demotion.
        """
        status = OrderStatus.parse(next_status)
        if status is None:
            raise PreconditionFailed("Status is invalid.", order_id=order_id)

        # ownership is the validator's call here, so read unscoped
        order = self.store.get(order_id)

        if expected_token is not None and expected_token != order.freshness_token:
            logger.info("Stale token for %s from %s (now %s)", order.id, actor.actor_id, order.status.value)
            raise Conflict(
                f"Order {order.id} was updated elsewhere and is now {order.status.value}.",
                order_id=order.id, current_token=order.freshness_token,
            )

        if is_repeat_of_permitted_transition(order, actor, status):
            logger.info("Order %s already %s; repeat request from %s ignored",
                        order.id, status.value, actor.actor_id)
            return order

        allow_demotion = False
        if swap_id is not None:
            self._ensure_open_swap(swap_id, order, actor)
            allow_demotion = True

        rider_active_order_id = None
        if actor.role == ActorRole.RIDER and status == OrderStatus.OUT_FOR_DELIVERY:
            active = self.store.active_order_for(actor.actor_id)
            rider_active_order_id = active.id if active else None

        decision = validate_transition(
            order, actor, status,
            rider_active_order_id=rider_active_order_id,
            allow_demotion=allow_demotion,
        )
        if not decision.accepted:
            logger.info("Rejected %s -> %s on %s by %s: %s", order.status.value, status.value,
                        order.id, actor.actor_id, decision.rejection.code)
        decision.raise_for_rejection()

        collected = None
        if status == OrderStatus.DELIVERED:
            if not payment_collected_method:
                raise PreconditionFailed("Tell us how the payment was collected before completing delivery.",
                                         order_id=order.id)
            try:
                collected = PaymentCollectedMethod(payment_collected_method)
            except ValueError:
                raise PreconditionFailed(f"Unknown payment collection method '{payment_collected_method}'.",
                                         order_id=order.id)

        def apply(target: Order) -> None:
            target.status = status
            if collected is not None:
                target.payment_collected_method = collected
            if status == OrderStatus.CANCELLED:
                target.assigned_rider_id = None

        updated = self.store.compare_and_set(order.id, expected_token or order.freshness_token, apply)
        logger.info("Order %s %s -> %s by %s %s (v%d)", updated.id, order.status.value, status.value,
                    actor.role.value, actor.actor_id, updated.version)
        self._notify(updated)
        return updated

    def assign_rider(self, order_id: str, rider_id: str, actor: Actor, *,
                     expected_token: Optional[str] = None) -> Order:
        """
        Admin dispatch. Assigning a pending order also confirms it.
        """
        if actor.role != ActorRole.ADMIN:
            raise Forbidden("Only admins can assign riders.", order_id=order_id)

        order = self.store.get(order_id)
        if expected_token is not None and expected_token != order.freshness_token:
            raise Conflict(
                f"Order {order.id} was updated elsewhere and is now {order.status.value}.",
                order_id=order.id, current_token=order.freshness_token,
            )
        rider = self.riders.get(rider_id)
        ensure_assignable(rider)
        ensure_order_assignable(order)

        if order.assigned_rider_id == rider.id and order.status == OrderStatus.CONFIRMED:
            return order

        updated = self.store.compare_and_set(
            order.id, expected_token or order.freshness_token, lambda target: apply_assignment(target, rider))
        logger.info("Order %s assigned to rider %s (status %s)", updated.id, rider.id, updated.status.value)
        self._notify(updated)
        return updated

    def record_swap(self, entry: Dict[str, Any]) -> None:
        self.store.record_swap(entry)

    def _ensure_open_swap(self, swap_id: str, order: Order, actor: Actor) -> None:
        """
        The demotion edge only opens for a swap the rider journaled as started
        with this order as the current delivery, that has not moved past that
        stage yet, and whose target is a confirmed order on the rider's route.
        """
        entries = self.store.swap_entries(swap_id)
        started = [
            entry for entry in entries
            if entry.get("stage") == "started"
            and entry.get("riderId") == actor.actor_id
            and entry.get("currentOrderId") == order.id
        ]
        is_open = bool(started) and all(entry.get("stage") == "started" for entry in entries)
        if is_open:
            try:
                target = self.store.get(started[-1].get("targetOrderId"))
            except NotFound:
                target = None
            is_open = (
                target is not None
                and target.id != order.id
                and target.status == OrderStatus.CONFIRMED
                and target.assigned_rider_id == actor.actor_id
            )
        if not is_open:
            logger.warning("Refused demotion of %s by %s: swap %s is not open", order.id, actor.actor_id, swap_id)
            raise PreconditionFailed(
                "An active delivery can only be handed back while switching to another order.",
                order_id=order.id,
            )

    def _notify(self, order: Order) -> None:
        if self.refresh_hub is not None:
            self.refresh_hub.order_changed(order)


class LocalOrderSession:
    """
    An actor bound to an in-process gateway. Exposes the same surface as
    sync.api_client.OrdersApiClient so client-side components
    (reconciler, mutation runner, swap coordinator) run against either.
    """
    def __init__(self, gateway: StatusMutationGateway, actor: Actor):
        self.gateway = gateway
        self.actor = actor

    def fetch_order(self, order_id: str, freshness_token: Optional[str] = None) -> FetchResult:
        return self.gateway.fetch_order(order_id, self.actor, freshness_token)

    def fetch_orders(self, order_filter: Optional[OrderFilter] = None, freshness_token: Optional[str] = None,
                     limit: Optional[int] = None) -> FetchResult:
        return self.gateway.fetch_orders(self.actor, order_filter, freshness_token, limit)

    def request_transition(self, order_id: str, next_status: Any, *, expected_token: Optional[str] = None,
                           payment_collected_method: Any = None, swap_id: Optional[str] = None) -> Order:
        return self.gateway.request_transition(
            order_id, next_status, self.actor,
            expected_token=expected_token,
            payment_collected_method=payment_collected_method,
            swap_id=swap_id,
        )

    def assign_rider(self, order_id: str, rider_id: str, *, expected_token: Optional[str] = None) -> Order:
        return self.gateway.assign_rider(order_id, rider_id, self.actor, expected_token=expected_token)

    def record_swap(self, entry: Dict[str, Any]) -> None:
        self.gateway.record_swap(entry)
