"""
Purpose: Domain models for the Orders capability.
What it does:
- Defines core data structures:
- Order (id, customer snapshot, items, amounts, status, rider assignment, timestamps, version)
- OrderItem (product_id, name, quantity, unit_price)
- CustomerDetails (name, phone, address, owning user)
- Actor (role + id of whoever is asking for a change)

Defines enums/constants:
- OrderStatus = pending | confirmed | outForDelivery | delivered | cancelled
- ActorRole = customer | rider | admin
- PaymentCollectedMethod = cash | upi | prepaid

Rule: No store access, no transition rules. Models only.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    OUT_FOR_DELIVERY = "outForDelivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> Optional[OrderStatus]:
        """
        Normalise wire input. Accepts the canonical values plus the
        snake_case / lowercase spellings older clients send.
        Returns None for anything unknown.
        """
        if isinstance(value, OrderStatus):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        trimmed = value.strip()
        for status in cls:
            if status.value == trimmed:
                return status
        return STATUS_ALIASES.get(trimmed.lower())

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


STATUS_ALIASES = {
    "out_for_delivery": OrderStatus.OUT_FOR_DELIVERY,
    "outfordelivery": OrderStatus.OUT_FOR_DELIVERY,
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# statuses in which an order sits on a rider's route
RIDER_ACTIVE_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.OUT_FOR_DELIVERY})


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    RIDER = "rider"
    ADMIN = "admin"


class PaymentCollectedMethod(str, Enum):
    CASH = "cash"
    UPI = "upi"
    PREPAID = "prepaid"


@dataclass(frozen=True)
class Actor:
    """
    Who is asking. Supplied by the (opaque) identity service.
    """
    role: ActorRole
    actor_id: str

    @classmethod
    def admin(cls, actor_id: str = "admin") -> Actor:
        return cls(ActorRole.ADMIN, actor_id)

    @classmethod
    def rider(cls, rider_id: str) -> Actor:
        return cls(ActorRole.RIDER, rider_id)

    @classmethod
    def customer(cls, user_id: str) -> Actor:
        return cls(ActorRole.CUSTOMER, user_id)


@dataclass(frozen=True)
class OrderItem:
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
            "lineTotal": str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> OrderItem:
        return cls(
            product_id=str(data["id"]),
            name=data.get("name", ""),
            quantity=int(data["quantity"]),
            unit_price=Decimal(str(data["unitPrice"])),
        )


@dataclass(frozen=True)
class CustomerDetails:
    """
    Delivery target snapshot taken at checkout.
    user_id links the order back to the customer account that placed it.
    """
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    user_id: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Order:
    """
    A single grocery order and its position in the delivery lifecycle.
    """

    id: str
    customer: CustomerDetails
    items: List[OrderItem]

    status: OrderStatus = OrderStatus.PENDING
    assigned_rider_id: Optional[str] = None

    currency: str = "INR"
    delivery_slot: Optional[str] = None  # advisory only
    delivery_instructions: Optional[str] = None
    payment_method: Optional[str] = None
    payment_collected_method: Optional[PaymentCollectedMethod] = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    version: int = 1

    @property
    def total_amount(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    @property
    def freshness_token(self) -> str:
        return f'W/"order-{self.id}-{self.version}-{self.updated_at.isoformat()}"'

    def is_visible_to(self, actor: Actor) -> bool:
        if actor.role == ActorRole.ADMIN:
            return True
        if actor.role == ActorRole.RIDER:
            return self.assigned_rider_id == actor.actor_id
        return self.customer.user_id == actor.actor_id

    @staticmethod  # Factory method to create a pending Order at checkout
    def new(customer: CustomerDetails, items: List[OrderItem], **extra: Any) -> Order:
        # ORD- + 12 hex chars, same shape the storefront prints on receipts
        order_id = f"ORD-{uuid.uuid4().hex[:12].upper()}"
        return Order(id=order_id, customer=customer, items=list(items), **extra)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "assignedRiderId": self.assigned_rider_id,
            "customerName": self.customer.name,
            "customerPhone": self.customer.phone,
            "customerAddress": self.customer.address,
            "userId": self.customer.user_id,
            "items": [item.to_dict() for item in self.items],
            "totalAmount": str(self.total_amount),
            "currency": self.currency,
            "deliverySlot": self.delivery_slot,
            "deliveryInstructions": self.delivery_instructions,
            "paymentMethod": self.payment_method,
            "paymentCollectedMethod": (
                self.payment_collected_method.value if self.payment_collected_method else None
            ),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "version": self.version,
            "freshnessToken": self.freshness_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Order:
        collected = data.get("paymentCollectedMethod")
        return cls(
            id=data["id"],
            customer=CustomerDetails(
                name=data.get("customerName", ""),
                phone=data.get("customerPhone"),
                address=data.get("customerAddress"),
                user_id=data.get("userId"),
            ),
            items=[OrderItem.from_dict(item) for item in data.get("items", [])],
            status=OrderStatus.parse(data.get("status")) or OrderStatus.PENDING,
            assigned_rider_id=data.get("assignedRiderId"),
            currency=data.get("currency") or "INR",
            delivery_slot=data.get("deliverySlot"),
            delivery_instructions=data.get("deliveryInstructions"),
            payment_method=data.get("paymentMethod"),
            payment_collected_method=PaymentCollectedMethod(collected) if collected else None,
            created_at=datetime.fromisoformat(data["createdAt"]),
            updated_at=datetime.fromisoformat(data.get("updatedAt") or data["createdAt"]),
            version=int(data.get("version", 1)),
        )


@dataclass(frozen=True)
class OrderFilter:
    """
    Query shape for list reads. Every field is optional.
    search matches customer name, phone or order id (case-insensitive).
    customer_id scopes the list to one customer's orders; the gateway sets it
    for customers, it is never sent over the wire.
    """
    assigned_rider_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    search: Optional[str] = None
    customer_id: Optional[str] = None

    def matches(self, order: Order) -> bool:
        if self.assigned_rider_id is not None and order.assigned_rider_id != self.assigned_rider_id:
            return False
        if self.customer_id is not None and order.customer.user_id != self.customer_id:
            return False
        if self.status is not None and order.status != self.status:
            return False
        if self.search:
            needle = self.search.strip().lower()
            haystack = [order.customer.name or "", order.customer.phone or "", order.id]
            if not any(needle in value.lower() for value in haystack):
                return False
        return True

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.assigned_rider_id is not None:
            params["assigned_rider_id"] = self.assigned_rider_id
        if self.status is not None:
            params["status"] = self.status.value
        if self.search:
            params["search"] = self.search
        return params
