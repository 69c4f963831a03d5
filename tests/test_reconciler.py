import threading

import pytest

from dispatch.gateway import LocalOrderSession
from orders.errors import Conflict, Forbidden, NetworkFailure, NotFound, PreconditionFailed, RequestTimeout
from orders.models import Actor, OrderFilter, OrderStatus
from sync.mutations import MutationRunner
from sync.poller import VisibilityGatedPoller
from sync.reconciler import OrderViewReconciler


class CountingSession:
    """
    Pass-through session that counts fetches and can be told to fail
    the next N fetches or writes.
    """
    def __init__(self, inner):
        self.inner = inner
        self.actor = inner.actor
        self.list_fetches = 0
        self.order_fetches = 0
        self.fail_fetches = 0
        self.write_failures = []
        self.writes = 0

    def fetch_orders(self, order_filter=None, freshness_token=None, limit=None):
        self.list_fetches += 1
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise NetworkFailure()
        return self.inner.fetch_orders(order_filter, freshness_token, limit)

    def fetch_order(self, order_id, freshness_token=None):
        self.order_fetches += 1
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise NetworkFailure()
        return self.inner.fetch_order(order_id, freshness_token)

    def request_transition(self, order_id, next_status, **kwargs):
        self.writes += 1
        if self.write_failures:
            failure = self.write_failures.pop(0)
            if callable(failure):
                failure = failure()
            if failure is not None:
                raise failure
        return self.inner.request_transition(order_id, next_status, **kwargs)


@pytest.fixture
def rider_route(store, order_factory):
    store.insert(order_factory("ORD-1", status=OrderStatus.CONFIRMED, rider_id="r1"))
    store.insert(order_factory("ORD-2", status=OrderStatus.CONFIRMED, rider_id="r1"))
    store.insert(order_factory("ORD-3", status=OrderStatus.CONFIRMED, rider_id="r2"))
    return store


def test_refresh_loads_then_revalidates(rider_route, rider_session):
    view = OrderViewReconciler(rider_session, OrderFilter(assigned_rider_id="r1"))

    assert view.status == "idle"
    assert view.refresh() is True
    assert view.status == "success"
    assert sorted(o.id for o in view.orders) == ["ORD-1", "ORD-2"]

    # nothing changed: NotModified, state untouched, still a success
    snapshot = view.orders
    assert view.refresh() is False
    assert view.status == "success"
    assert [o.freshness_token for o in view.orders] == [o.freshness_token for o in snapshot]


def test_network_failure_keeps_last_good_state(rider_route, rider_session):
    session = CountingSession(rider_session)
    view = OrderViewReconciler(session)
    view.refresh()

    session.fail_fetches = 1
    assert view.refresh(force=True) is False

    assert view.status == "error"
    assert view.error
    assert len(view.orders) == 2

    assert view.refresh() is False  # recovered, and nothing changed meanwhile
    assert view.status == "success"
    assert view.error is None


def test_hub_pushes_changes_to_every_view_showing_the_order(rider_route, gateway, hub, admin):
    rider_view = OrderViewReconciler(LocalOrderSession(gateway, Actor.rider("r1")))
    admin_view = OrderViewReconciler(LocalOrderSession(gateway, admin))
    other_rider_view = OrderViewReconciler(LocalOrderSession(gateway, Actor.rider("r2")))
    for view in (rider_view, admin_view, other_rider_view):
        view.refresh()
        hub.subscribe(view)

    gateway.request_transition("ORD-1", OrderStatus.OUT_FOR_DELIVERY, Actor.rider("r1"))

    assert rider_view.get("ORD-1").status == OrderStatus.OUT_FOR_DELIVERY
    assert admin_view.get("ORD-1").status == OrderStatus.OUT_FOR_DELIVERY
    assert other_rider_view.get("ORD-1") is None


def test_newly_assigned_order_appears_in_the_riders_view(store, order_factory, gateway, hub, admin):
    store.insert(order_factory("ORD-9"))
    rider_view = OrderViewReconciler(LocalOrderSession(gateway, Actor.rider("r1")),
                                     OrderFilter(assigned_rider_id="r1"))
    rider_view.refresh()
    hub.subscribe(rider_view)
    assert rider_view.orders == []

    gateway.assign_rider("ORD-9", "r1", admin)

    assert [o.id for o in rider_view.orders] == ["ORD-9"]


def test_reassigned_order_leaves_the_old_riders_view(rider_route, gateway, hub, admin):
    rider_view = OrderViewReconciler(LocalOrderSession(gateway, Actor.rider("r1")))
    rider_view.refresh()
    hub.subscribe(rider_view)

    gateway.assign_rider("ORD-1", "r2", admin)

    assert sorted(o.id for o in rider_view.orders) == ["ORD-2"]


def test_optimistic_overlay_survives_refresh_until_settled(rider_route, rider_session):
    view = OrderViewReconciler(rider_session)
    view.refresh()

    guess = view.begin_optimistic("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
    assert guess.status == OrderStatus.OUT_FOR_DELIVERY

    view.refresh(force=True)
    assert view.get("ORD-1").status == OrderStatus.OUT_FOR_DELIVERY
    assert view.server_record("ORD-1").status == OrderStatus.CONFIRMED

    view.settle("ORD-1")
    assert view.get("ORD-1").status == OrderStatus.CONFIRMED


def test_listeners_see_every_change(rider_route, rider_session):
    seen = []
    view = OrderViewReconciler(rider_session)
    view.add_listener(lambda orders: seen.append(len(orders)))

    view.refresh()
    view.refresh()

    assert seen == [2]


# --- poller ---

def test_poller_skips_hidden_ticks_and_refreshes_on_return(rider_route, rider_session):
    session = CountingSession(rider_session)
    view = OrderViewReconciler(session)
    poller = VisibilityGatedPoller(view, interval_seconds=60)

    poller.tick()
    assert session.list_fetches == 1

    poller.set_visible(False)
    poller.tick()
    poller.tick()
    assert session.list_fetches == 1

    poller.set_visible(True)
    assert session.list_fetches == 2


def test_poller_thread_starts_with_a_refresh_and_stops_cleanly(rider_route, rider_session):
    session = CountingSession(rider_session)
    view = OrderViewReconciler(session)
    loaded = threading.Event()
    view.add_listener(lambda orders: loaded.set())

    poller = VisibilityGatedPoller(view, interval_seconds=30)
    poller.start()
    try:
        assert loaded.wait(5)
    finally:
        poller.stop(timeout=5)

    assert not poller.running
    assert len(view.orders) == 2


class RejectingSession:
    """Every fetch is refused with the given typed error, as an expired login would be."""
    def __init__(self, actor, error, signal_after=None):
        self.actor = actor
        self.error = error
        self.fetches = 0
        self.signal_after = signal_after
        self.signalled = threading.Event()

    def _refuse(self):
        self.fetches += 1
        if self.signal_after is not None and self.fetches >= self.signal_after:
            self.signalled.set()
        raise self.error

    def fetch_orders(self, order_filter=None, freshness_token=None, limit=None):
        self._refuse()

    def fetch_order(self, order_id, freshness_token=None):
        self._refuse()


@pytest.mark.parametrize("error", [
    Forbidden("Your session has expired. Log in again."),
    PreconditionFailed("Status is invalid."),
    NotFound(),
])
def test_any_rejection_is_shown_on_the_view(rider_route, rider_session, error):
    view = OrderViewReconciler(rider_session)
    view.refresh()

    view.session = RejectingSession(rider_session.actor, error)
    assert view.refresh(force=True) is False

    assert view.status == "error"
    assert view.error == error.message
    assert len(view.orders) == 2


def test_rejected_single_order_refresh_keeps_the_record(rider_route, rider_session):
    view = OrderViewReconciler(rider_session)
    view.refresh()

    view.session = RejectingSession(rider_session.actor, Forbidden("Your session has expired. Log in again."))
    assert view.refresh_order("ORD-1") is False

    assert view.status == "error"
    assert view.get("ORD-1") is not None


def test_poller_keeps_running_when_fetches_are_rejected():
    session = RejectingSession(Actor.rider("r1"), Forbidden("Your session has expired. Log in again."),
                               signal_after=3)
    view = OrderViewReconciler(session)
    poller = VisibilityGatedPoller(view, interval_seconds=0.01)

    poller.start()
    try:
        assert session.signalled.wait(5)
        assert poller.running
    finally:
        poller.stop(timeout=5)

    assert view.status == "error"
    assert view.error == "Your session has expired. Log in again."


def test_poller_rejects_bad_interval(rider_session):
    with pytest.raises(ValueError):
        VisibilityGatedPoller(OrderViewReconciler(rider_session), interval_seconds=-1)


# --- mutations ---

def test_advance_updates_the_view(rider_route, rider_session):
    view = OrderViewReconciler(rider_session)
    view.refresh()
    runner = MutationRunner(rider_session, view)

    updated = runner.advance("ORD-1", "outForDelivery")

    assert updated.status == OrderStatus.OUT_FOR_DELIVERY
    assert view.get("ORD-1").status == OrderStatus.OUT_FOR_DELIVERY
    assert not runner.is_pending("ORD-1")


def test_conflict_is_retried_once_after_a_silent_refetch(rider_route, rider_session):
    session = CountingSession(rider_session)
    session.write_failures = [Conflict()]
    runner = MutationRunner(session)

    updated = runner.advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)

    assert updated.status == OrderStatus.OUT_FOR_DELIVERY
    assert session.writes == 2


def test_second_conflict_is_surfaced(rider_route, rider_session):
    session = CountingSession(rider_session)
    session.write_failures = [Conflict(), Conflict()]

    with pytest.raises(Conflict):
        MutationRunner(session).advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
    assert session.writes == 2


def test_conflict_from_a_real_change_is_not_retried(store, order_factory, gateway, admin_session):
    store.insert(order_factory("ORD-P", status=OrderStatus.PENDING, customer_id="cust-1"))
    session = CountingSession(LocalOrderSession(gateway, Actor.customer("cust-1")))

    def admin_confirms_meanwhile():
        admin_session.request_transition("ORD-P", OrderStatus.CONFIRMED)
        return Conflict()

    session.write_failures = [admin_confirms_meanwhile]

    with pytest.raises(Conflict, match="now confirmed"):
        MutationRunner(session).cancel("ORD-P")
    assert session.writes == 1


def test_stale_view_gets_the_servers_rejection_and_is_corrected(rider_route, rider_session, admin_session):
    view = OrderViewReconciler(rider_session)
    view.refresh()
    # the admin cancels after the rider's view loaded
    admin_session.request_transition("ORD-1", OrderStatus.CANCELLED)

    with pytest.raises(NotFound, match="updated elsewhere"):
        MutationRunner(rider_session, view).advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)

    # cancelling cleared the rider, so the order is gone from the rider's view
    assert view.get("ORD-1") is None


def test_stale_view_of_a_still_visible_order_reports_where_it_is_now(store, order_factory, gateway, admin_session):
    store.insert(order_factory("ORD-P", status=OrderStatus.PENDING, customer_id="cust-1"))
    customer_session = LocalOrderSession(gateway, Actor.customer("cust-1"))
    view = OrderViewReconciler(customer_session)
    view.refresh()
    admin_session.request_transition("ORD-P", OrderStatus.CONFIRMED)

    with pytest.raises(Conflict, match="now confirmed"):
        MutationRunner(customer_session, view).cancel("ORD-P")

    assert view.get("ORD-P").status == OrderStatus.CONFIRMED


def test_timeout_after_the_write_landed_is_a_success(rider_route, rider_session):
    session = CountingSession(rider_session)

    def lands_then_times_out():
        rider_session.request_transition("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
        return RequestTimeout()

    session.write_failures = [lands_then_times_out]

    updated = MutationRunner(session).advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)

    assert updated.status == OrderStatus.OUT_FOR_DELIVERY
    assert session.writes == 1


def test_timeout_with_no_effect_is_retried_after_refetch(rider_route, rider_session):
    session = CountingSession(rider_session)
    session.write_failures = [RequestTimeout()]

    updated = MutationRunner(session).advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)

    assert updated.status == OrderStatus.OUT_FOR_DELIVERY
    assert session.writes == 2


def test_one_mutation_in_flight_per_order(rider_route, rider_session):
    session = CountingSession(rider_session)
    runner = MutationRunner(session)
    errors = []

    def second_click():
        try:
            runner.advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)
        except PreconditionFailed as exc:
            errors.append(exc)
        return None

    # the second click arrives while the first request is still out
    session.write_failures = [second_click]
    runner.advance("ORD-1", OrderStatus.OUT_FOR_DELIVERY)

    assert len(errors) == 1
    assert "already in progress" in errors[0].message
