"""
Riders domain package.

Public API:
- Domain models: Rider, RiderStatus
- Lookups: RiderRegistry, InMemoryRiderRegistry
- Rider console helpers: build_rider_queue, advance_meta, is_urgent
"""
from .models import Rider, RiderStatus
from .registry import InMemoryRiderRegistry, RiderRegistry
from .selection import AdvanceAction, RiderQueue, advance_meta, build_rider_queue, is_urgent

__all__ = [
    "Rider",
    "RiderStatus",
    "RiderRegistry",
    "InMemoryRiderRegistry",
    "AdvanceAction",
    "RiderQueue",
    "advance_meta",
    "build_rider_queue",
    "is_urgent",
]
