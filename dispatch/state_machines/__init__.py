from .order_state import (
    ALLOWED_TRANSITIONS,
    ROLE_EDGES,
    TransitionDecision,
    allowed_next_statuses,
    is_repeat_of_permitted_transition,
    validate_transition,
)
from .rider_state import ensure_assignable, ensure_order_assignable

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ROLE_EDGES",
    "TransitionDecision",
    "allowed_next_statuses",
    "is_repeat_of_permitted_transition",
    "validate_transition",
    "ensure_assignable",
    "ensure_order_assignable",
]
