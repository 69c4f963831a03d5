#Client-side order view synchronisation.
#Re-exports the pieces a console (rider, admin, customer) wires together:
#a session (LocalOrderSession or OrdersApiClient), a reconciler per view,
#a poller per visible view and a mutation runner for status changes.
#No transition rules here; the gateway owns those.

from .reconciler import OrderViewReconciler, RefreshHub
from .poller import VisibilityGatedPoller
from .mutations import MutationRunner
from .api_client import OrdersApiClient

__all__ = [
    "OrderViewReconciler",
    "RefreshHub",
    "VisibilityGatedPoller",
    "MutationRunner",
    "OrdersApiClient",
]
