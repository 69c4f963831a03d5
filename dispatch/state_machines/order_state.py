"""
Purpose: The order status state machine.
What it does:
Pure functions answering "may this actor move this order to that status?".

    pending        -> confirmed, cancelled
    confirmed      -> outForDelivery, cancelled
    outForDelivery -> delivered
    delivered      -> (terminal)
    cancelled      -> (terminal)

Role ownership of edges:
- admin:    pending -> confirmed, pending -> cancelled, confirmed -> cancelled
- rider:    confirmed -> outForDelivery, outForDelivery -> delivered (own orders only)
- customer: pending -> cancelled (own orders only)

The one backward move, outForDelivery -> confirmed, exists only as the demote
step of an active-order swap and must be asked for explicitly.

Rule: No store access. Callers pass in whatever extra state a precondition needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from orders.errors import Forbidden, InvalidTransition, OrderLifecycleError, PreconditionFailed
from orders.models import Actor, ActorRole, Order, OrderStatus

Edge = Tuple[OrderStatus, OrderStatus]

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ROLE_EDGES: Dict[ActorRole, FrozenSet[Edge]] = {
    ActorRole.ADMIN: frozenset({
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    }),
    ActorRole.RIDER: frozenset({
        (OrderStatus.CONFIRMED, OrderStatus.OUT_FOR_DELIVERY),
        (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED),
    }),
    ActorRole.CUSTOMER: frozenset({
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
    }),
}

DEMOTION_EDGE: Edge = (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CONFIRMED)


@dataclass(frozen=True)
class TransitionDecision:
    """
    Accept, or Reject carrying the typed reason.
    """
    accepted: bool
    rejection: Optional[OrderLifecycleError] = None

    @classmethod
    def accept(cls) -> TransitionDecision:
        return cls(accepted=True)

    @classmethod
    def reject(cls, rejection: OrderLifecycleError) -> TransitionDecision:
        return cls(accepted=False, rejection=rejection)

    def raise_for_rejection(self) -> None:
        if self.rejection is not None:
            raise self.rejection


def owns_order(order: Order, actor: Actor) -> bool:
    if actor.role == ActorRole.ADMIN:
        return True
    if actor.role == ActorRole.RIDER:
        return order.assigned_rider_id is not None and order.assigned_rider_id == actor.actor_id
    return order.customer.user_id is not None and order.customer.user_id == actor.actor_id


def validate_transition(
    order: Order,
    actor: Actor,
    requested_status: OrderStatus,
    *,
    rider_active_order_id: Optional[str] = None,
    allow_demotion: bool = False,
) -> TransitionDecision:
    """
    Decide whether actor may move order to requested_status.

    rider_active_order_id: the id of the rider's current outForDelivery order, if any.
    allow_demotion: set by the gateway only for a journaled, still-open swap, to open
    the outForDelivery -> confirmed edge.
    """
    edge = (order.status, requested_status)

    if edge == DEMOTION_EDGE and allow_demotion:
        if actor.role != ActorRole.RIDER:
            return TransitionDecision.reject(
                Forbidden("Only the assigned rider can hand back an active delivery.", order_id=order.id))
        if not owns_order(order, actor):
            return TransitionDecision.reject(
                Forbidden("This order is not assigned to you.", order_id=order.id))
        return TransitionDecision.accept()

    if requested_status not in ALLOWED_TRANSITIONS[order.status]:
        return TransitionDecision.reject(InvalidTransition(
            f"Order {order.id} cannot move from {order.status.value} to {requested_status.value}.",
            order_id=order.id,
        ))

    if edge not in ROLE_EDGES[actor.role]:
        if actor.role == ActorRole.CUSTOMER and requested_status == OrderStatus.CANCELLED:
            message = "This order is already confirmed. Contact the store to cancel it."
        else:
            message = f"A {actor.role.value} cannot move an order to {requested_status.value}."
        return TransitionDecision.reject(Forbidden(message, order_id=order.id))

    if not owns_order(order, actor):
        return TransitionDecision.reject(Forbidden(
            "This order is not assigned to you." if actor.role == ActorRole.RIDER
            else "You can only change your own orders.",
            order_id=order.id,
        ))

    if (
        requested_status == OrderStatus.OUT_FOR_DELIVERY
        and rider_active_order_id is not None
        and rider_active_order_id != order.id
    ):
        return TransitionDecision.reject(PreconditionFailed(
            f"Order {rider_active_order_id} is already out for delivery. Complete it or make this one active instead.",
            order_id=order.id,
        ))

    return TransitionDecision.accept()


def is_repeat_of_permitted_transition(order: Order, actor: Actor, requested_status: OrderStatus) -> bool:
    """
    True when the order already sits in requested_status and the actor owns an
    edge into it, i.e. re-issuing the request would change nothing.
    """
    if order.status != requested_status or not owns_order(order, actor):
        return False
    return any(target == requested_status for _, target in ROLE_EDGES[actor.role])


def allowed_next_statuses(order: Order, actor: Actor) -> List[OrderStatus]:
    return [
        status
        for status in OrderStatus
        if status in ALLOWED_TRANSITIONS[order.status] and validate_transition(order, actor, status).accepted
    ]
