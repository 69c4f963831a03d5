"""
Purpose: Turn a checkout submission into a pending Order.
What it does:
- Validates the payload the storefront posts (items, customer, delivery, payment)
- Prices items from the catalog lookup, never from client-sent prices
- Enforces quantity caps, stock and the minimum order amount
- Inserts the new order in the store with status pending

The catalog is an external collaborator: any Mapping from product id to
CatalogEntry works (the backend builds one from its product table).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .errors import Forbidden, OrderValidationError
from .models import Actor, ActorRole, CustomerDetails, Order, OrderItem
from .policy import LifecyclePolicy, default_lifecycle_policy
from .store import OrderStore

logger = logging.getLogger(__name__)

FIELD_ERROR_MESSAGES = {
    "name": "Please include your name.",
    "phone": "Please include a contact phone number.",
    "address": "Please include a delivery address.",
    "slot": "Please choose a delivery slot.",
    "paymentMethod": "Please choose a payment method.",
    "invalidPhone": "Please provide a valid phone number.",
}


@dataclass(frozen=True)
class CatalogEntry:
    product_id: str
    name: str
    price: Decimal
    stock_quantity: Optional[int] = None


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def validate_customer_fields(payload: Dict[str, Any], policy: LifecyclePolicy) -> Dict[str, Optional[str]]:
    """
    Returns the normalised form. Raises OrderValidationError on the first missing field,
    in the same order the checkout form shows them.
    """
    customer = payload.get("customer") or {}
    delivery = payload.get("delivery") or {}
    payment = payload.get("payment") or {}

    form = {
        "name": _clean(customer.get("name")),
        "phone": _clean(customer.get("phone")),
        "address": _clean(customer.get("address")),
        "slot": _clean(delivery.get("slot")),
        "paymentMethod": _clean(payment.get("method")),
        "instructions": _clean(delivery.get("instructions")),
    }

    for key in ("name", "phone", "address", "slot", "paymentMethod"):
        if not form[key]:
            raise OrderValidationError(FIELD_ERROR_MESSAGES[key])
        if key == "phone" and len(re.sub(r"\D", "", form["phone"])) < policy.phone_min_digits:
            raise OrderValidationError(FIELD_ERROR_MESSAGES["invalidPhone"])
    return form


def price_items(entries: List[Dict[str, Any]], catalog: Mapping[str, CatalogEntry],
                policy: LifecyclePolicy) -> List[OrderItem]:
    if not isinstance(entries, list) or not entries:
        raise OrderValidationError("Please include at least one item in your order.")

    items: List[OrderItem] = []
    for entry in entries:
        product_id = (entry or {}).get("id")
        product = catalog.get(product_id) if product_id else None
        if product is None:
            raise OrderValidationError(f"Item with id '{product_id}' is unavailable right now.")

        try:
            quantity = int(entry.get("quantity"))
        except (TypeError, ValueError):
            raise OrderValidationError(f"Invalid quantity for {product.name}.")
        if quantity <= 0 or quantity > policy.max_item_quantity:
            raise OrderValidationError(f"Invalid quantity for {product.name}.")
        if product.stock_quantity is not None and product.stock_quantity < quantity:
            raise OrderValidationError(
                f"{product.name} is low on stock. Available: {product.stock_quantity}."
            )

        items.append(OrderItem(product.product_id, product.name, quantity, product.price))
    return items


def place_order(store: OrderStore, catalog: Mapping[str, CatalogEntry], payload: Dict[str, Any],
                actor: Actor, policy: Optional[LifecyclePolicy] = None) -> Order:
    """
    Validate a checkout payload and persist it as a pending order.
    Only customers (and admins placing phone orders) may check out.
    """
    policy = policy or default_lifecycle_policy()
    if actor.role not in (ActorRole.CUSTOMER, ActorRole.ADMIN):
        raise Forbidden("Only customers can place orders.")
    if not isinstance(payload, dict):
        raise OrderValidationError("Invalid request body.")

    items = price_items(payload.get("items"), catalog, policy)
    form = validate_customer_fields(payload, policy)

    order = Order.new(
        CustomerDetails(
            name=form["name"],
            phone=form["phone"],
            address=form["address"],
            user_id=actor.actor_id if actor.role == ActorRole.CUSTOMER else None,
        ),
        items,
        delivery_slot=form["slot"],
        delivery_instructions=form["instructions"],
        payment_method=form["paymentMethod"],
    )
    if order.total_amount < policy.minimum_order_amount:
        raise OrderValidationError(f"Orders must be at least ₹{policy.minimum_order_amount}.")

    stored = store.insert(order)
    logger.info("Order %s placed: %d item(s), total %s", stored.id, len(items), stored.total_amount)
    return stored
