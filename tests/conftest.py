import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from dispatch.gateway import LocalOrderSession, StatusMutationGateway
from orders.models import Actor, CustomerDetails, Order, OrderItem, OrderStatus
from orders.store import InMemoryOrderStore
from riders.models import Rider
from riders.registry import InMemoryRiderRegistry
from sync.reconciler import RefreshHub


class SteppingClock:
    """Deterministic clock: every call is one second after the previous one."""
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


def make_order(order_id="ORD-1", status=OrderStatus.PENDING, rider_id=None, customer_id="cust-1", **extra):
    return Order(
        id=order_id,
        customer=CustomerDetails("Asha", "+91 98450 12345", "12 MG Road", customer_id),
        items=[OrderItem("P-001", "Toned Milk 1L", 2, Decimal("62.00"))],
        status=status,
        assigned_rider_id=rider_id,
        **extra,
    )


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def store(clock):
    return InMemoryOrderStore(clock=clock)


@pytest.fixture
def riders():
    return InMemoryRiderRegistry([
        Rider.new("r1", "Ravi"),
        Rider.new("r2", "Sunil"),
        Rider.new("r-blocked", "Blocked Rider", "blocked"),
        Rider.new("r-inactive", "Inactive Rider", "inactive"),
    ])


@pytest.fixture
def hub():
    return RefreshHub()


@pytest.fixture
def gateway(store, riders, hub):
    return StatusMutationGateway(store, riders, refresh_hub=hub)


@pytest.fixture
def admin():
    return Actor.admin()


@pytest.fixture
def rider_session(gateway):
    return LocalOrderSession(gateway, Actor.rider("r1"))


@pytest.fixture
def admin_session(gateway, admin):
    return LocalOrderSession(gateway, admin)


@pytest.fixture
def order_factory():
    return make_order
