"""
Purpose: Rider lookups for dispatch.
What it does:
The identity service owns riders; the lifecycle core only needs to ask
"who is rider X and may they take orders". RiderRegistry is that contract,
InMemoryRiderRegistry its in-process implementation (tests, scripts).
The backend provides a Django-backed one (ordering.store.UserRiderRegistry in backend/).
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List

from orders.errors import NotFound
from .models import Rider


class RiderRegistry:
    def get(self, rider_id: str) -> Rider:
        raise NotImplementedError


class InMemoryRiderRegistry(RiderRegistry):
    def __init__(self, riders: Iterable[Rider] = ()):
        self._riders: Dict[str, Rider] = {rider.id: rider for rider in riders}
        self._lock = threading.Lock()

    def add(self, rider: Rider) -> None:
        with self._lock:
            self._riders[rider.id] = rider

    def get(self, rider_id: str) -> Rider:
        with self._lock:
            rider = self._riders.get(rider_id)
        if rider is None:
            raise NotFound(f"Rider {rider_id} not found.")
        return rider

    def all(self) -> List[Rider]:
        with self._lock:
            return list(self._riders.values())
