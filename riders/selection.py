"""
Purpose: What a rider should work on next.
What it does:
Accepts the orders visible to a rider, splits them into the active route and
the backlog, picks the primary stop and flags urgent ones (slot close or past,
order waiting too long).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from orders.models import Order, OrderStatus, RIDER_ACTIVE_STATUSES
from orders.policy import LifecyclePolicy, default_lifecycle_policy


@dataclass(frozen=True)
class AdvanceAction:
    button_label: str
    next_status: OrderStatus


@dataclass
class RiderQueue:
    active_orders: List[Order] = field(default_factory=list)
    backlog_orders: List[Order] = field(default_factory=list)
    primary_order: Optional[Order] = None
    urgent_order_ids: List[str] = field(default_factory=list)


def parse_slot(delivery_slot: Optional[str]) -> Optional[datetime]:
    """
    Slots are free text ("Tomorrow", "6-8 PM") unless the storefront sent an
    ISO timestamp. Only the latter takes part in urgency.
    """
    if not delivery_slot:
        return None
    try:
        slot = datetime.fromisoformat(delivery_slot)
    except ValueError:
        return None
    if slot.tzinfo is None:
        slot = slot.replace(tzinfo=timezone.utc)
    return slot


def advance_meta(order: Order) -> AdvanceAction:
    if order.status == OrderStatus.CONFIRMED:
        return AdvanceAction("Start delivery", OrderStatus.OUT_FOR_DELIVERY)
    return AdvanceAction("Complete delivery", OrderStatus.DELIVERED)


def is_urgent(order: Order, now: Optional[datetime] = None, policy: Optional[LifecyclePolicy] = None) -> bool:
    policy = policy or default_lifecycle_policy()
    now = now or datetime.now(timezone.utc)

    age_minutes = (now - order.created_at).total_seconds() / 60
    slot = parse_slot(order.delivery_slot)
    slot_past = slot is not None and slot < now - timedelta(minutes=policy.slot_grace_minutes)
    slot_very_soon = slot is not None and slot - now <= timedelta(minutes=policy.slot_very_soon_minutes)

    if order.status == OrderStatus.CONFIRMED:
        return slot_past or slot_very_soon or age_minutes > policy.confirmed_urgent_after_minutes

    if order.status == OrderStatus.OUT_FOR_DELIVERY:
        return slot_past or age_minutes > policy.out_for_delivery_urgent_after_minutes

    return False


def _route_sort_key(order: Order) -> Tuple[datetime, datetime]:
    return (parse_slot(order.delivery_slot) or order.created_at, order.created_at)


def build_rider_queue(
    orders: List[Order],
    now: Optional[datetime] = None,
    policy: Optional[LifecyclePolicy] = None
) -> RiderQueue:
    """
    Active route sorted by slot (falling back to creation time), backlog
    sorted oldest first. The primary order is the one out for delivery,
    otherwise the first stop on the route.
    """
    now = now or datetime.now(timezone.utc)

    active = sorted((o for o in orders if o.status in RIDER_ACTIVE_STATUSES), key=_route_sort_key)
    backlog = sorted((o for o in orders if o.status == OrderStatus.PENDING), key=lambda o: o.created_at)

    primary = next((o for o in active if o.status == OrderStatus.OUT_FOR_DELIVERY), None)
    if primary is None and active:
        primary = active[0]

    return RiderQueue(
        active_orders=active,
        backlog_orders=backlog,
        primary_order=primary,
        urgent_order_ids=[o.id for o in active if is_urgent(o, now, policy)],
    )
