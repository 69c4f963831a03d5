"""
Purpose: Core data models for the riders domain.
What it does:
Defines the structure of a Rider and their account status without relying on Django ORM constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RiderStatus(str, Enum):
    """
    Account state of a rider as reported by the identity service.
    Only ACTIVE riders can be given orders.
    """
    ACTIVE = "active"
    BLOCKED = "blocked"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class Rider:
    """
    A purely stateless representation of a Rider at a specific point in time.
    """
    id: str
    display_name: str
    status: RiderStatus = RiderStatus.ACTIVE
    phone: str | None = None
    last_seen_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == RiderStatus.ACTIVE

    @classmethod
    def new(
        cls,
        rider_id: str,
        display_name: str | None = None,
        status: str | RiderStatus = RiderStatus.ACTIVE,
        phone: str | None = None,
        last_seen_at: datetime | None = None
    ) -> Rider:
        if isinstance(status, str):
            status = RiderStatus(status)

        return cls(
            id=rider_id,
            display_name=display_name or rider_id,
            status=status,
            phone=phone,
            last_seen_at=last_seen_at or datetime.now()
        )
