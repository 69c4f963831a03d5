import threading

import pytest

from dispatch.gateway import StatusMutationGateway
from orders.errors import Conflict, Forbidden, InvalidTransition, NotFound, OrderLifecycleError, PreconditionFailed
from orders.models import Actor, OrderFilter, OrderStatus, PaymentCollectedMethod
from orders.store import InMemoryOrderStore


class RecordingHub:
    def __init__(self):
        self.changed = []

    def order_changed(self, order):
        self.changed.append((order.id, order.status))


def test_admin_confirms_and_version_moves_forward(gateway, store, order_factory, admin):
    store.insert(order_factory())
    before = store.get("ORD-1")

    updated = gateway.request_transition("ORD-1", "confirmed", admin)

    assert updated.status == OrderStatus.CONFIRMED
    assert updated.version == before.version + 1
    assert updated.updated_at > before.updated_at
    assert updated.freshness_token != before.freshness_token


def test_stale_token_is_a_conflict(gateway, store, order_factory, admin):
    store.insert(order_factory())
    stale = store.get("ORD-1").freshness_token
    gateway.assign_rider("ORD-1", "r1", admin)

    with pytest.raises(Conflict) as excinfo:
        gateway.request_transition("ORD-1", OrderStatus.CANCELLED, admin, expected_token=stale)

    assert excinfo.value.current_token == store.get("ORD-1").freshness_token
    assert store.get("ORD-1").status == OrderStatus.CONFIRMED


def race(gateway, token, *attempts):
    """Run (actor, status) attempts at once, all carrying the same token; return sorted outcomes."""
    barrier = threading.Barrier(len(attempts))
    outcomes = []

    def attempt(actor, status):
        barrier.wait()
        try:
            gateway.request_transition("ORD-1", status, actor, expected_token=token)
            outcomes.append("ok")
        except OrderLifecycleError as exc:
            outcomes.append(exc.code)

    threads = [threading.Thread(target=attempt, args=args) for args in attempts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return sorted(outcomes)


def test_concurrent_writers_with_the_same_token_only_one_wins(gateway, store, order_factory):
    """Customer cancel and admin confirm race from the same read: one lands, the other is a Conflict."""
    store.insert(order_factory())
    token = store.get("ORD-1").freshness_token

    outcomes = race(gateway, token,
                    (Actor.customer("cust-1"), OrderStatus.CANCELLED),
                    (Actor.admin(), OrderStatus.CONFIRMED))

    assert outcomes == ["conflict", "ok"]
    assert store.get("ORD-1").version == 2


def test_same_transition_raced_with_the_same_token(gateway, store, order_factory):
    store.insert(order_factory(status=OrderStatus.CONFIRMED, rider_id="r1"))
    token = store.get("ORD-1").freshness_token

    outcomes = race(gateway, token,
                    (Actor.rider("r1"), OrderStatus.OUT_FOR_DELIVERY),
                    (Actor.rider("r1"), OrderStatus.OUT_FOR_DELIVERY))

    assert outcomes == ["conflict", "ok"]
    assert store.get("ORD-1").version == 2


def test_repeating_a_write_with_its_old_token_is_a_conflict(gateway, store, order_factory, admin):
    store.insert(order_factory())
    token = store.get("ORD-1").freshness_token
    confirmed = gateway.request_transition("ORD-1", OrderStatus.CONFIRMED, admin, expected_token=token)

    with pytest.raises(Conflict) as excinfo:
        gateway.request_transition("ORD-1", OrderStatus.CONFIRMED, admin, expected_token=token)

    assert excinfo.value.current_token == confirmed.freshness_token
    # with the current token the repeat is a no-op
    again = gateway.request_transition("ORD-1", OrderStatus.CONFIRMED, admin,
                                       expected_token=confirmed.freshness_token)
    assert again.version == confirmed.version


def test_stale_cancel_is_a_conflict_not_a_rejection(gateway, store, order_factory, admin):
    store.insert(order_factory())
    token = store.get("ORD-1").freshness_token
    gateway.request_transition("ORD-1", OrderStatus.CONFIRMED, admin)

    with pytest.raises(Conflict, match="now confirmed"):
        gateway.request_transition("ORD-1", OrderStatus.CANCELLED, Actor.customer("cust-1"), expected_token=token)


def test_stale_assignment_is_a_conflict(gateway, store, order_factory, admin):
    store.insert(order_factory())
    token = store.get("ORD-1").freshness_token
    gateway.request_transition("ORD-1", OrderStatus.CANCELLED, admin)

    with pytest.raises(Conflict):
        gateway.assign_rider("ORD-1", "r1", admin, expected_token=token)


def test_delivered_requires_payment_method(gateway, store, order_factory):
    store.insert(order_factory(status=OrderStatus.OUT_FOR_DELIVERY, rider_id="r1"))
    rider = Actor.rider("r1")

    with pytest.raises(PreconditionFailed):
        gateway.request_transition("ORD-1", "delivered", rider)
    with pytest.raises(PreconditionFailed):
        gateway.request_transition("ORD-1", "delivered", rider, payment_collected_method="cheque")

    delivered = gateway.request_transition("ORD-1", "delivered", rider, payment_collected_method="upi")
    assert delivered.status == OrderStatus.DELIVERED
    assert delivered.payment_collected_method == PaymentCollectedMethod.UPI
    # the delivering rider stays on record
    assert delivered.assigned_rider_id == "r1"


def test_repeated_delivery_is_a_noop(gateway, store, order_factory):
    store.insert(order_factory(status=OrderStatus.OUT_FOR_DELIVERY, rider_id="r1"))
    rider = Actor.rider("r1")
    first = gateway.request_transition("ORD-1", "delivered", rider, payment_collected_method="cash")

    again = gateway.request_transition("ORD-1", "delivered", rider, payment_collected_method="upi")

    assert again.version == first.version
    assert again.payment_collected_method == PaymentCollectedMethod.CASH


def test_invalid_status_string(gateway, store, order_factory, admin):
    store.insert(order_factory())
    with pytest.raises(PreconditionFailed, match="Status is invalid"):
        gateway.request_transition("ORD-1", "shipped", admin)


def test_customer_cannot_cancel_a_confirmed_order(gateway, store, order_factory):
    store.insert(order_factory(status=OrderStatus.CONFIRMED, rider_id="r1"))
    with pytest.raises(Forbidden):
        gateway.request_transition("ORD-1", "cancelled", Actor.customer("cust-1"))


def test_cancel_clears_rider(gateway, store, order_factory, admin):
    store.insert(order_factory(status=OrderStatus.CONFIRMED, rider_id="r1"))
    cancelled = gateway.request_transition("ORD-1", OrderStatus.CANCELLED, admin)
    assert cancelled.assigned_rider_id is None


def test_terminal_orders_reject_everything(gateway, store, order_factory, admin):
    store.insert(order_factory(status=OrderStatus.CANCELLED))
    with pytest.raises(InvalidTransition):
        gateway.request_transition("ORD-1", OrderStatus.CONFIRMED, admin)


def test_second_active_delivery_is_refused(gateway, store, order_factory):
    store.insert(order_factory("ORD-1", status=OrderStatus.OUT_FOR_DELIVERY, rider_id="r1"))
    store.insert(order_factory("ORD-2", status=OrderStatus.CONFIRMED, rider_id="r1"))

    with pytest.raises(PreconditionFailed):
        gateway.request_transition("ORD-2", OrderStatus.OUT_FOR_DELIVERY, Actor.rider("r1"))
    assert store.get("ORD-2").status == OrderStatus.CONFIRMED


def test_assignment_rules(gateway, store, order_factory, admin):
    store.insert(order_factory("ORD-1"))
    store.insert(order_factory("ORD-2", status=OrderStatus.OUT_FOR_DELIVERY, rider_id="r2"))

    assigned = gateway.assign_rider("ORD-1", "r1", admin)
    assert assigned.status == OrderStatus.CONFIRMED
    assert assigned.assigned_rider_id == "r1"

    # same rider again changes nothing
    assert gateway.assign_rider("ORD-1", "r1", admin).version == assigned.version

    with pytest.raises(NotFound):
        gateway.assign_rider("ORD-1", "ghost", admin)
    with pytest.raises(PreconditionFailed):
        gateway.assign_rider("ORD-1", "r-blocked", admin)
    with pytest.raises(PreconditionFailed):
        gateway.assign_rider("ORD-1", "r-inactive", admin)
    with pytest.raises(PreconditionFailed):
        gateway.assign_rider("ORD-2", "r1", admin)
    with pytest.raises(Forbidden):
        gateway.assign_rider("ORD-1", "r2", Actor.rider("r1"))


def test_reads_are_role_scoped(gateway, store, order_factory, admin):
    store.insert(order_factory("ORD-1", status=OrderStatus.CONFIRMED, rider_id="r1", customer_id="cust-1"))
    store.insert(order_factory("ORD-2", status=OrderStatus.CONFIRMED, rider_id="r2", customer_id="cust-2"))

    assert {o.id for o in gateway.list_orders(admin)} == {"ORD-1", "ORD-2"}
    # a rider asking for someone else's route still only gets their own
    assert [o.id for o in gateway.list_orders(Actor.rider("r1"), OrderFilter(assigned_rider_id="r2"))] == ["ORD-1"]
    assert [o.id for o in gateway.list_orders(Actor.customer("cust-2"))] == ["ORD-2"]

    with pytest.raises(NotFound):
        gateway.get_order("ORD-2", Actor.customer("cust-1"))
    with pytest.raises(NotFound):
        gateway.get_order("ORD-2", Actor.rider("r1"))


def test_conditional_reads(gateway, store, order_factory, admin):
    store.insert(order_factory())

    first = gateway.fetch_order("ORD-1", admin)
    assert not first.not_modified
    assert gateway.fetch_order("ORD-1", admin, first.freshness_token).not_modified

    listing = gateway.fetch_orders(admin)
    assert gateway.fetch_orders(admin, freshness_token=listing.freshness_token).not_modified

    gateway.request_transition("ORD-1", OrderStatus.CONFIRMED, admin)
    assert not gateway.fetch_order("ORD-1", admin, first.freshness_token).not_modified
    changed = gateway.fetch_orders(admin, freshness_token=listing.freshness_token)
    assert not changed.not_modified
    assert changed.orders[0].status == OrderStatus.CONFIRMED


def test_every_write_notifies_the_hub(store, riders, order_factory, admin):
    hub = RecordingHub()
    gateway = StatusMutationGateway(store, riders, refresh_hub=hub)
    store.insert(order_factory())

    gateway.assign_rider("ORD-1", "r1", admin)
    gateway.request_transition("ORD-1", OrderStatus.OUT_FOR_DELIVERY, Actor.rider("r1"))
    # repeats and rejections do not notify
    gateway.request_transition("ORD-1", OrderStatus.OUT_FOR_DELIVERY, Actor.rider("r1"))
    with pytest.raises(Forbidden):
        gateway.request_transition("ORD-1", OrderStatus.DELIVERED, admin, payment_collected_method="cash")

    assert hub.changed == [("ORD-1", OrderStatus.CONFIRMED), ("ORD-1", OrderStatus.OUT_FOR_DELIVERY)]


class ListSpyStore(InMemoryOrderStore):
    def __init__(self, clock):
        super().__init__(clock=clock)
        self.list_calls = []

    def list(self, order_filter=None, limit=None):
        self.list_calls.append((order_filter, limit))
        return super().list(order_filter, limit)


def test_customer_lists_are_scoped_in_the_store_query(clock, riders, order_factory):
    store = ListSpyStore(clock)
    gateway = StatusMutationGateway(store, riders)
    for index in range(5):
        store.insert(order_factory(f"ORD-{index}", customer_id="cust-1" if index == 0 else "cust-2"))

    orders = gateway.list_orders(Actor.customer("cust-1"), OrderFilter(search="ORD"), limit=1)

    assert [o.id for o in orders] == ["ORD-0"]
    order_filter, limit = store.list_calls[-1]
    assert order_filter.customer_id == "cust-1"
    assert order_filter.search == "ORD"
    assert limit == 1
