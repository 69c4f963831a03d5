"""
Purpose: Central configuration for the order lifecycle (single source of truth).
What it does:

Stores all tunable thresholds/caps:

POLL_INTERVAL_SECONDS = 60
CONFLICT_RETRY_LIMIT = 1
MAX_ITEM_QUANTITY = 20
MINIMUM_ORDER_AMOUNT = 100

Optionally reads overrides from the environment (.env supported):

GROCER_POLL_INTERVAL_SECONDS, GROCER_REQUEST_TIMEOUT_SECONDS,
GROCER_MINIMUM_ORDER_AMOUNT, GROCER_MAX_ITEM_QUANTITY, GROCER_RIDER_VIEW_LIMIT

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

from dotenv import load_dotenv


@dataclass(frozen=True)
class LifecyclePolicy:
    """
    Central configuration for ordering, dispatch and view reconciliation.
    """

    # --- View reconciliation ---
    # How often a visible order view re-validates against the server.
    poll_interval_seconds: float = 60.0

    # How many orders a rider console loads at once.
    rider_view_limit: int = 50

    # --- Mutation retry policy ---
    # A stale-token Conflict on a single-step mutation is retried this many
    # times after a silent re-fetch. Sagas never retry.
    conflict_retry_limit: int = 1

    # HTTP timeout for the order API client. A timeout is an unknown outcome.
    request_timeout_seconds: float = 10.0

    # --- Checkout rules ---
    max_item_quantity: int = 20
    phone_min_digits: int = 6
    minimum_order_amount: Decimal = Decimal("100")

    # --- Urgency heuristics (advisory, never enforced by the state machine) ---
    confirmed_urgent_after_minutes: int = 20
    out_for_delivery_urgent_after_minutes: int = 90
    slot_very_soon_minutes: int = 15
    slot_grace_minutes: int = 5

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")

        if self.rider_view_limit < 1:
            raise ValueError("rider_view_limit must be >= 1")

        if self.conflict_retry_limit < 0:
            raise ValueError("conflict_retry_limit must be >= 0")

        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")

        if self.max_item_quantity < 1:
            raise ValueError("max_item_quantity must be >= 1")

        if self.minimum_order_amount < 0:
            raise ValueError("minimum_order_amount must be >= 0")


def default_lifecycle_policy() -> LifecyclePolicy:
    """
    Convenience factory for the default policy.
    """
    p = LifecyclePolicy()
    p.validate()
    return p


def policy_from_env() -> LifecyclePolicy:
    """
    Default policy with overrides from GROCER_* environment variables.
    """
    load_dotenv()
    defaults = LifecyclePolicy()
    p = LifecyclePolicy(
        poll_interval_seconds=float(os.getenv("GROCER_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds)),
        request_timeout_seconds=float(os.getenv("GROCER_REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds)),
        rider_view_limit=int(os.getenv("GROCER_RIDER_VIEW_LIMIT", defaults.rider_view_limit)),
        max_item_quantity=int(os.getenv("GROCER_MAX_ITEM_QUANTITY", defaults.max_item_quantity)),
        minimum_order_amount=Decimal(os.getenv("GROCER_MINIMUM_ORDER_AMOUNT", str(defaults.minimum_order_amount))),
    )
    p.validate()
    return p
