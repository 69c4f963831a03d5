"""
Purpose: Assignment Coordinator. Keeps each rider to one active delivery.
What it does:
"Make this order my active delivery instead" is two independent writes
(demote the current one, promote the target), so it runs as a saga:

    STARTED -> NOOP                              target already active
    STARTED -> PROMOTED                          no current active order
    STARTED -> DEMOTED -> PROMOTED               normal swap
    STARTED -> DEMOTED -> ROLLED_BACK            promote failed, current re-promoted
    STARTED -> DEMOTED -> ROLLBACK_FAILED        promote failed, re-promote failed too
    STARTED -> ABORTED                           failed before anything changed

Every stage is appended to the record and written to the swap journal so an
interrupted swap can be found and repaired from the store side. The started
entry is written again once the current delivery is known; the gateway only
accepts the demotion for a swap journaled that way.
Conflicts are never retried here: the saga aborts and the caller refreshes.
A timed-out write is read back before deciding; when that read fails too the
journal records the outcome as unknown.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from orders.errors import Forbidden, OrderLifecycleError, PreconditionFailed, RequestTimeout, SwapAborted
from orders.models import ActorRole, Order, OrderFilter, OrderStatus

logger = logging.getLogger(__name__)


class SwapStage(str, Enum):
    STARTED = "started"
    DEMOTED = "demoted"
    PROMOTED = "promoted"
    NOOP = "noop"
    ROLLED_BACK = "rolledBack"
    ROLLBACK_FAILED = "rollbackFailed"
    ABORTED = "aborted"


TERMINAL_SWAP_STAGES = frozenset({
    SwapStage.PROMOTED, SwapStage.NOOP, SwapStage.ROLLED_BACK, SwapStage.ROLLBACK_FAILED, SwapStage.ABORTED,
})


@dataclass
class SwapRecord:
    swap_id: str
    rider_id: str
    target_order_id: str
    current_order_id: Optional[str] = None
    stage: SwapStage = SwapStage.STARTED
    history: List[Tuple[SwapStage, datetime]] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def start(cls, rider_id: str, target_order_id: str) -> SwapRecord:
        record = cls(swap_id=f"SWP-{uuid.uuid4().hex[:12].upper()}", rider_id=rider_id,
                     target_order_id=target_order_id)
        record.history.append((SwapStage.STARTED, datetime.now(timezone.utc)))
        return record

    @property
    def succeeded(self) -> bool:
        return self.stage in (SwapStage.PROMOTED, SwapStage.NOOP)

    def advance(self, stage: SwapStage, error: Optional[str] = None) -> None:
        if self.stage in TERMINAL_SWAP_STAGES:
            raise ValueError(f"Swap {self.swap_id} already finished as {self.stage.value}")
        self.stage = stage
        self.history.append((stage, datetime.now(timezone.utc)))
        if error:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swapId": self.swap_id,
            "riderId": self.rider_id,
            "targetOrderId": self.target_order_id,
            "currentOrderId": self.current_order_id,
            "stage": self.stage.value,
            "history": [(stage.value, at.isoformat()) for stage, at in self.history],
            "error": self.error,
        }


class AssignmentCoordinator:
    """
    Runs against a session (dispatch.gateway.LocalOrderSession or
    sync.api_client.OrdersApiClient) bound to the rider.
    reconciler: the rider's OrderViewReconciler, fully refreshed after every swap.
    """
    def __init__(self, session, reconciler=None):
        self.session = session
        self.reconciler = reconciler

    def make_active(self, rider_id: str, target_order_id: str) -> SwapRecord:
        actor = self.session.actor
        if actor.role != ActorRole.RIDER or actor.actor_id != rider_id:
            raise Forbidden("Riders can only change their own active delivery.", order_id=target_order_id)

        record = SwapRecord.start(rider_id, target_order_id)
        self._journal(record)
        try:
            return self._run(record)
        finally:
            if self.reconciler is not None:
                self.reconciler.refresh(force=True)

    def _run(self, record: SwapRecord) -> SwapRecord:
        try:
            current = self._current_active(record.rider_id)
            if current is not None and current.id == record.target_order_id:
                self._finish(record, SwapStage.NOOP)
                return record

            target = self.session.fetch_order(record.target_order_id).order
            if target.status != OrderStatus.CONFIRMED:
                raise PreconditionFailed(
                    f"Order {target.id} is {target.status.value}; only confirmed orders can become active.",
                    order_id=target.id,
                )
        except OrderLifecycleError as exc:
            self._abort(record, exc)

        demoted: Optional[Order] = None
        if current is not None:
            # the gateway only opens the demotion for a started swap naming the current order
            record.current_order_id = current.id
            self._journal(record)
            try:
                demoted = self.session.request_transition(
                    current.id, OrderStatus.CONFIRMED, expected_token=current.freshness_token,
                    swap_id=record.swap_id)
            except RequestTimeout as exc:
                demoted = self._after_timeout(record, current.id, OrderStatus.CONFIRMED, exc)
            except OrderLifecycleError as exc:
                self._abort(record, exc)
            self._finish(record, SwapStage.DEMOTED)

        try:
            self.session.request_transition(
                target.id, OrderStatus.OUT_FOR_DELIVERY, expected_token=target.freshness_token)
        except OrderLifecycleError as exc:
            promoted = None
            if isinstance(exc, RequestTimeout):
                promoted = self._reread(target.id)
            if promoted is None or promoted.status != OrderStatus.OUT_FOR_DELIVERY:
                if demoted is None:
                    self._abort(record, exc, outcome_unknown=isinstance(exc, RequestTimeout) and promoted is None)
                self._compensate(record, demoted, exc)

        self._finish(record, SwapStage.PROMOTED)
        logger.info("Rider %s active delivery is now %s (was %s)", record.rider_id, record.target_order_id,
                    record.current_order_id)
        return record

    def _after_timeout(self, record: SwapRecord, order_id: str, wanted: OrderStatus,
                       cause: RequestTimeout) -> Order:
        """
        A write timed out: its outcome is unknown until the order is read back.
        Returns the order when the write landed, otherwise aborts.
        """
        latest = self._reread(order_id)
        if latest is not None and latest.status == wanted:
            logger.info("Swap %s: %s reached %s despite the timeout", record.swap_id, order_id, wanted.value)
            return latest
        self._abort(record, cause, outcome_unknown=latest is None)

    def _reread(self, order_id: str) -> Optional[Order]:
        try:
            return self.session.fetch_order(order_id).order
        except OrderLifecycleError as exc:
            logger.warning("Could not re-read %s after a timeout: %s", order_id, exc.message)
            return None

    def _current_active(self, rider_id: str) -> Optional[Order]:
        result = self.session.fetch_orders(
            OrderFilter(assigned_rider_id=rider_id, status=OrderStatus.OUT_FOR_DELIVERY))
        return result.orders[0] if result.orders else None

    def _compensate(self, record: SwapRecord, demoted: Order, cause: OrderLifecycleError) -> None:
        """
        Promotion failed after a successful demotion: put the old active order back.
        Always raises.
        """
        logger.warning("Swap %s: promoting %s failed (%s), re-promoting %s",
                       record.swap_id, record.target_order_id, cause.code, demoted.id)
        try:
            self.session.request_transition(
                demoted.id, OrderStatus.OUT_FOR_DELIVERY, expected_token=demoted.freshness_token)
        except OrderLifecycleError as rollback_error:
            self._finish(record, SwapStage.ROLLBACK_FAILED, f"{cause.message} / {rollback_error.message}")
            logger.error("Swap %s left rider %s without an active delivery: %s",
                         record.swap_id, record.rider_id, rollback_error.message)
            raise SwapAborted(
                f"Could not start order {record.target_order_id} and could not restore order {demoted.id}. "
                "Refresh and re-check your orders before continuing.",
                order_id=record.target_order_id, stage=record.stage.value, rolled_back=False, cause=cause,
            ) from rollback_error

        self._finish(record, SwapStage.ROLLED_BACK, cause.message)
        raise SwapAborted(
            f"Could not start order {record.target_order_id}: {cause.message} "
            f"Order {demoted.id} is still your active delivery. Refresh to confirm.",
            order_id=record.target_order_id, stage=record.stage.value, rolled_back=True, cause=cause,
        ) from cause

    def _abort(self, record: SwapRecord, cause: OrderLifecycleError, outcome_unknown: bool = False) -> None:
        """
        outcome_unknown: the failed write timed out and could not be read back,
        so the journal must not claim nothing changed.
        """
        if outcome_unknown:
            self._finish(record, SwapStage.ABORTED, f"{cause.code}: outcome unknown: {cause.message}")
            logger.warning("Swap %s stopped with an unknown outcome (%s); rider %s must be re-checked",
                           record.swap_id, cause.code, record.rider_id)
        else:
            self._finish(record, SwapStage.ABORTED, f"{cause.code}: {cause.message}")
            logger.info("Swap %s aborted before any change: %s", record.swap_id, cause.message)
        raise SwapAborted(
            f"{cause.message} Refresh and re-check your orders.",
            order_id=record.target_order_id, stage=record.stage.value, rolled_back=False, cause=cause,
        ) from cause

    def _finish(self, record: SwapRecord, stage: SwapStage, error: Optional[str] = None) -> None:
        record.advance(stage, error)
        self._journal(record)

    def _journal(self, record: SwapRecord) -> None:
        try:
            self.session.record_swap(record.to_dict())
        except OrderLifecycleError as exc:
            # the swap itself already happened (or not); a lost audit entry must not change that
            logger.warning("Swap %s stage %s not journaled: %s", record.swap_id, record.stage.value, exc.message)
