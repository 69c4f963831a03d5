"""
Purpose: Typed error taxonomy for the order lifecycle.
What it does:
Every rejection an actor can receive derives from OrderLifecycleError and carries
- a stable machine code (used on the wire)
- an HTTP status code (used by the backend views)
- a human-readable message (shown to the actor as-is)
- whether the request may be retried, and under which policy

Rule: No business logic here. Raised by the validator, store and gateway;
translated back from HTTP bodies by sync.api_client.
"""

from __future__ import annotations

from typing import Dict, Optional, Type


class OrderLifecycleError(Exception):
    """Base class for every typed order lifecycle rejection."""

    code = "order_error"
    status_code = 400
    retryable = False
    default_message = "Unable to update order right now."

    def __init__(self, message: Optional[str] = None, *, order_id: Optional[str] = None):
        self.message = message or self.default_message
        self.order_id = order_id
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, str]:
        return {"error": self.message, "code": self.code}


class InvalidTransition(OrderLifecycleError):
    """The requested edge does not exist in the status graph."""

    code = "invalid_transition"
    default_message = "That status change is not allowed for this order."


class Forbidden(OrderLifecycleError):
    """Role or ownership mismatch."""

    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to change this order."


class PreconditionFailed(OrderLifecycleError):
    """The edge exists and the actor owns it, but the order or rider is not ready for it."""

    code = "precondition_failed"
    default_message = "This order is not ready for that change yet."


class OrderValidationError(OrderLifecycleError):
    """Checkout payload rejected before an order is created."""

    code = "invalid_order"
    default_message = "Invalid order details."


class NotFound(OrderLifecycleError):
    code = "not_found"
    status_code = 404
    default_message = "Order not found."


class Conflict(OrderLifecycleError):
    """
    The freshness token presented with a write no longer matches the stored order.
    Single-step callers may retry once after a silent re-fetch; sagas must abort.
    """

    code = "conflict"
    status_code = 409
    retryable = True
    default_message = "This order was changed by someone else. Refresh and try again."

    def __init__(self, message: Optional[str] = None, *, order_id: Optional[str] = None,
                 current_token: Optional[str] = None):
        super().__init__(message, order_id=order_id)
        self.current_token = current_token


class NetworkFailure(OrderLifecycleError):
    """Transport failure. The caller must re-fetch before any retry."""

    code = "network_failure"
    status_code = 503
    retryable = True
    default_message = "Unable to reach the order service. Check your connection and refresh."


class RequestTimeout(NetworkFailure):
    """The request may or may not have been applied: treat the outcome as unknown."""

    code = "timeout"
    status_code = 504
    default_message = "The order service did not answer in time. Refresh to check the order before retrying."


class SwapAborted(OrderLifecycleError):
    """
    The active-order swap saga did not complete.
    Always tells the user to refresh: local state may not reflect the store.
    """

    code = "swap_aborted"
    status_code = 409
    needs_refresh = True
    default_message = "Could not switch your active delivery. Refresh and re-check your orders."

    def __init__(self, message: Optional[str] = None, *, order_id: Optional[str] = None,
                 stage: Optional[str] = None, rolled_back: bool = False,
                 cause: Optional[OrderLifecycleError] = None):
        super().__init__(message, order_id=order_id)
        self.stage = stage
        self.rolled_back = rolled_back
        self.cause = cause


ERRORS_BY_CODE: Dict[str, Type[OrderLifecycleError]] = {
    error_class.code: error_class
    for error_class in (
        InvalidTransition,
        Forbidden,
        PreconditionFailed,
        OrderValidationError,
        NotFound,
        Conflict,
        NetworkFailure,
        RequestTimeout,
        SwapAborted,
    )
}


def error_from_payload(payload: Dict[str, str], status_code: int) -> OrderLifecycleError:
    """
    Rebuild a typed error from a wire body {"error": ..., "code": ...}.
    Falls back on the HTTP status when the body carries no known code.
    """
    error_class = ERRORS_BY_CODE.get(payload.get("code", ""))
    if error_class is None:
        error_class = {
            403: Forbidden,
            404: NotFound,
            409: Conflict,
            412: Conflict,
            504: RequestTimeout,
        }.get(status_code, NetworkFailure if status_code >= 500 else PreconditionFailed)
    return error_class(payload.get("error") or None)
