import os
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Dict, List

import numpy as np
import pandas as pd

from dispatch.coordinator import AssignmentCoordinator
from dispatch.gateway import LocalOrderSession, StatusMutationGateway
from orders.errors import OrderLifecycleError
from orders.models import Actor, OrderFilter, OrderStatus
from orders.placement import CatalogEntry, place_order
from orders.policy import policy_from_env
from orders.store import InMemoryOrderStore
from riders.models import Rider
from riders.registry import InMemoryRiderRegistry
from riders.selection import advance_meta, build_rider_queue
from sync.mutations import MutationRunner
from sync.reconciler import OrderViewReconciler, RefreshHub


class EventLog:
    """Thread-safe collector for what every simulated actor tried and how it went."""
    def __init__(self):
        self.rows: List[Dict] = []
        self._lock = threading.Lock()

    def add(self, actor: Actor, order_id: str, action: str, outcome: str, detail: str = ""):
        with self._lock:
            self.rows.append({
                "actor_role": actor.role.value,
                "actor_id": actor.actor_id,
                "order_id": order_id,
                "action": action,
                "outcome": outcome,
                "detail": detail,
            })


def load_catalog(filepath="catalog_generated.csv") -> Dict[str, CatalogEntry]:
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    df = pd.read_csv(os.path.join(base_dir, filepath))
    return {
        row.product_id: CatalogEntry(row.product_id, row.name, Decimal(str(row.price)), int(row.stock_quantity))
        for row in df.itertuples(index=False)
    }


def load_checkouts(filepath="checkout_orders_generated.csv", limit=60) -> List[Dict]:
    """
    Re-assemble the flattened checkout lines into POST /orders style payloads.
    """
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    df = pd.read_csv(os.path.join(base_dir, filepath), keep_default_na=False)

    checkouts = []
    for checkout_id, lines in list(df.groupby("checkout_id", sort=True))[:limit]:
        first = lines.iloc[0]
        checkouts.append({
            "checkout_id": checkout_id,
            "customer_id": first["customer_id"],
            "payload": {
                "items": [{"id": row.product_id, "quantity": int(row.quantity)} for row in lines.itertuples()],
                "customer": {"name": first["customer_name"], "phone": first["customer_phone"],
                             "address": first["address"]},
                "delivery": {"slot": first["slot"], "instructions": first["instructions"]},
                "payment": {"method": first["payment_method"]},
            },
        })
    return checkouts


def rider_shift(gateway: StatusMutationGateway, hub: RefreshHub, rider: Rider, policy, log: EventLog):
    """
    One rider working through their queue: start, occasionally swap, complete.
    """
    actor = Actor.rider(rider.id)
    session = LocalOrderSession(gateway, actor)
    view = OrderViewReconciler(session, OrderFilter(assigned_rider_id=rider.id), limit=policy.rider_view_limit)
    hub.subscribe(view)
    runner = MutationRunner(session, view, policy)
    coordinator = AssignmentCoordinator(session, view)

    try:
        for _ in range(12):
            view.refresh()
            queue = build_rider_queue(view.orders, policy=policy)
            if queue.primary_order is None:
                break
            order = queue.primary_order

            # sometimes the rider decides another confirmed order should go first
            confirmed = [o for o in queue.active_orders if o.status == OrderStatus.CONFIRMED and o.id != order.id]
            if order.status == OrderStatus.OUT_FOR_DELIVERY and confirmed and random.random() < 0.3:
                target = confirmed[0]
                try:
                    record = coordinator.make_active(rider.id, target.id)
                    log.add(actor, target.id, "make_active", record.stage.value)
                except OrderLifecycleError as exc:
                    log.add(actor, target.id, "make_active", exc.code, exc.message)
                continue

            meta = advance_meta(order)
            try:
                runner.advance(
                    order.id, meta.next_status,
                    payment_collected_method=random.choice(["cash", "upi", "prepaid"]),
                )
                log.add(actor, order.id, meta.button_label, "ok")
            except OrderLifecycleError as exc:
                log.add(actor, order.id, meta.button_label, exc.code, exc.message)
    finally:
        hub.unsubscribe(view)


def customer_second_thoughts(gateway: StatusMutationGateway, customer_id: str, order_id: str, log: EventLog):
    actor = Actor.customer(customer_id)
    session = LocalOrderSession(gateway, actor)
    try:
        MutationRunner(session).cancel(order_id)
        log.add(actor, order_id, "cancel", "ok")
    except OrderLifecycleError as exc:
        log.add(actor, order_id, "cancel", exc.code, exc.message)


def run_simulation(num_riders=6, seed=7):
    print("=== STARTING ORDER LIFECYCLE SIMULATION ===")
    random.seed(seed)
    np.random.seed(seed)
    policy = policy_from_env()

    store = InMemoryOrderStore()
    hub = RefreshHub()
    riders = InMemoryRiderRegistry(
        Rider.new(f"{index + 1}", f"Rider {index + 1}", "blocked" if index == num_riders - 1 else "active")
        for index in range(num_riders)
    )
    gateway = StatusMutationGateway(store, riders, refresh_hub=hub)
    admin = Actor.admin()
    log = EventLog()

    # 1. Checkout
    catalog = load_catalog()
    placed = []
    for checkout in load_checkouts():
        actor = Actor.customer(checkout["customer_id"])
        try:
            order = place_order(store, catalog, checkout["payload"], actor, policy)
            placed.append((checkout["customer_id"], order))
            log.add(actor, order.id, "checkout", "ok")
        except OrderLifecycleError as exc:
            log.add(actor, checkout["checkout_id"], "checkout", exc.code, exc.message)
    print(f"Placed {len(placed)} orders.\n")

    # 2. Admin dispatch: assign most orders round-robin, cancel a few
    rider_ids = [rider.id for rider in riders.all()]
    for index, (_, order) in enumerate(placed):
        if index % 9 == 8:
            continue  # left pending for the customer to cancel
        try:
            if index % 13 == 12:
                gateway.request_transition(order.id, OrderStatus.CANCELLED, admin)
                log.add(admin, order.id, "cancel", "ok")
            else:
                gateway.assign_rider(order.id, rider_ids[index % len(rider_ids)], admin)
                log.add(admin, order.id, "assign", "ok")
        except OrderLifecycleError as exc:
            log.add(admin, order.id, "assign", exc.code, exc.message)

    # 3. Riders and customers act concurrently
    with ThreadPoolExecutor(max_workers=num_riders + 4) as pool:
        for rider in riders.all():
            if rider.is_active:
                pool.submit(rider_shift, gateway, hub, rider, policy, log)
        for customer_id, order in random.sample(placed, k=min(10, len(placed))):
            pool.submit(customer_second_thoughts, gateway, customer_id, order.id, log)

    # 4. Results
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "lifecycle_results.csv")
    events = pd.DataFrame(log.rows)
    events.to_csv(output_path, index=False)

    final = pd.DataFrame([o.to_dict() for o in store.list()])
    print("--- Final status counts ---")
    print(final["status"].value_counts().to_string())
    print("\n--- Outcomes by action ---")
    print(events.groupby(["action", "outcome"]).size().to_string())

    active = final[final["status"] == OrderStatus.OUT_FOR_DELIVERY.value]
    doubled = active.groupby("assignedRiderId").size()
    doubled = doubled[doubled > 1]
    if doubled.empty:
        print("\n✅ No rider ever ends with more than one active delivery.")
    else:
        print(f"\n❌ Riders with multiple active deliveries: {doubled.to_dict()}")
    print(f"\nEvent log saved to '{output_path}'")


if __name__ == "__main__":
    run_simulation()
