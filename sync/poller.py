"""
Purpose: The "heartbeat" that keeps a visible order view fresh.
What it does:
- Every poll_interval_seconds, while the view is visible, asks the reconciler
  for a conditional refresh (NotModified makes most ticks free)
- Stops polling while hidden; regaining visibility forces an immediate refresh
- Runs on a daemon thread, or tick() can be driven by hand (tests, simulations)
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from orders.policy import default_lifecycle_policy

logger = logging.getLogger(__name__)


class VisibilityGatedPoller:
    def __init__(self, reconciler, interval_seconds: Optional[float] = None, visible: bool = True):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds or default_lifecycle_policy().poll_interval_seconds
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self._visible = threading.Event()
        if visible:
            self._visible.set()
        self._stopped = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def visible(self) -> bool:
        return self._visible.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self, force: bool = False) -> bool:
        """
        One polling cycle. Hidden views are skipped unless forced.
        Returns True when the reconciler's state changed.
        """
        if not force and not self.visible:
            return False
        return self.reconciler.refresh(force=force)

    def set_visible(self, visible: bool) -> None:
        was_visible = self.visible
        if visible:
            self._visible.set()
        else:
            self._visible.clear()

        if visible and not was_visible:
            logger.debug("Order view visible again, refreshing now")
            if self.running:
                self._wake.set()
            else:
                self.tick(force=True)

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name="order-view-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        force = True
        while not self._stopped.is_set():
            if self.visible or force:
                try:
                    self.tick(force=force)
                except Exception:
                    # typed rejections are already on the view; anything else must not end polling
                    logger.exception("Order view poll failed; retrying in %ss", self.interval_seconds)
            # woken early either by stop() or by regaining visibility
            woke = self._wake.wait(self.interval_seconds)
            self._wake.clear()
            force = woke and not self._stopped.is_set()
