from orders.errors import PreconditionFailed
from orders.models import Order, OrderStatus
from riders.models import Rider, RiderStatus

# orders in these statuses can still be (re)assigned
ASSIGNABLE_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)


def ensure_assignable(rider: Rider) -> None:
    """
    Called before an admin hands an order to a rider.
    Blocked or inactive riders must never receive new work.
    """
    if rider.status == RiderStatus.BLOCKED:
        raise PreconditionFailed(f"Rider {rider.display_name} is blocked and cannot be assigned orders.")
    if not rider.is_active:
        raise PreconditionFailed(f"Rider {rider.display_name} is not active and cannot be assigned orders.")


def ensure_order_assignable(order: Order) -> None:
    """
    Once an order is on the road (or finished) its rider is fixed.
    Reassigning an outForDelivery order would give the new rider an active
    delivery they never started.
    """
    if order.status not in ASSIGNABLE_ORDER_STATUSES:
        raise PreconditionFailed(
            f"Order {order.id} is {order.status.value}; riders can only be assigned to pending or confirmed orders.",
            order_id=order.id,
        )


def apply_assignment(order: Order, rider: Rider) -> Order:
    """
    Assigning a pending order confirms it in the same write.
    """
    order.assigned_rider_id = rider.id
    if order.status == OrderStatus.PENDING:
        order.status = OrderStatus.CONFIRMED
    return order
