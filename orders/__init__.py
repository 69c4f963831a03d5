"""
Orders domain package.

Public API:
- Domain models: Order, OrderItem, CustomerDetails, OrderStatus, Actor, ActorRole, OrderFilter
- Error taxonomy: OrderLifecycleError and its subclasses
- Storage: OrderStore, InMemoryOrderStore, FetchResult
- Checkout entry: place_order
- Tunables: LifecyclePolicy
"""
from .models import (
    Actor,
    ActorRole,
    CustomerDetails,
    Order,
    OrderFilter,
    OrderItem,
    OrderStatus,
    PaymentCollectedMethod,
)
from .errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NetworkFailure,
    NotFound,
    OrderLifecycleError,
    OrderValidationError,
    PreconditionFailed,
    RequestTimeout,
    SwapAborted,
)
from .store import FetchResult, InMemoryOrderStore, OrderStore
from .policy import LifecyclePolicy, default_lifecycle_policy, policy_from_env
from .placement import CatalogEntry, place_order

__all__ = [
    "Actor",
    "ActorRole",
    "CustomerDetails",
    "Order",
    "OrderFilter",
    "OrderItem",
    "OrderStatus",
    "PaymentCollectedMethod",
    "Conflict",
    "Forbidden",
    "InvalidTransition",
    "NetworkFailure",
    "NotFound",
    "OrderLifecycleError",
    "OrderValidationError",
    "PreconditionFailed",
    "RequestTimeout",
    "SwapAborted",
    "FetchResult",
    "InMemoryOrderStore",
    "OrderStore",
    "LifecyclePolicy",
    "default_lifecycle_policy",
    "policy_from_env",
    "CatalogEntry",
    "place_order",
]
