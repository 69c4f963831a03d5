"""
Purpose: Django ORM implementations of the lifecycle core's storage contracts.
What it does:
- DjangoOrderStore: OrderStore over the ordering_order table. The write is a
  conditional UPDATE ... WHERE version = <read version>, so two requests that
  read the same version cannot both win, whichever process they run in.
- The one_active_delivery_per_rider constraint backs the single-active rule
  at the database level; a violation surfaces as PreconditionFailed.
- UserRiderRegistry: riders are users with role RIDER.
"""

from __future__ import annotations

import copy
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from orders.errors import Conflict, NotFound, PreconditionFailed
from orders.models import Order as DomainOrder, OrderFilter, OrderStatus
from orders.store import Mutation, OrderStore, ensure_single_active
from riders.models import Rider, RiderStatus
from riders.registry import RiderRegistry
from users.models import User

from .models import Order, SwapAudit

logger = logging.getLogger(__name__)


class DjangoOrderStore(OrderStore):
    def insert(self, order: DomainOrder) -> DomainOrder:
        existing = Order.objects.filter(pk=order.id).first()
        if existing is not None:
            return existing.to_domain()
        row = Order(id=order.id, **Order.row_values(order))
        row.save(force_insert=True)
        return row.to_domain()

    def get(self, order_id: str) -> DomainOrder:
        try:
            return Order.objects.get(pk=order_id).to_domain()
        except Order.DoesNotExist:
            raise NotFound(order_id=order_id)

    def list(self, order_filter: Optional[OrderFilter] = None, limit: Optional[int] = None) -> List[DomainOrder]:
        order_filter = order_filter or OrderFilter()
        queryset = Order.objects.all()

        if order_filter.assigned_rider_id is not None:
            if not str(order_filter.assigned_rider_id).isdigit():
                return []
            queryset = queryset.filter(rider_id=int(order_filter.assigned_rider_id))
        if order_filter.customer_id is not None:
            if not str(order_filter.customer_id).isdigit():
                return []
            queryset = queryset.filter(customer_id=int(order_filter.customer_id))
        if order_filter.status is not None:
            queryset = queryset.filter(status=order_filter.status.value)
        if order_filter.search:
            needle = order_filter.search.strip()
            queryset = queryset.filter(
                Q(customer_name__icontains=needle) | Q(customer_phone__icontains=needle) | Q(id__icontains=needle)
            )

        if limit is not None:
            queryset = queryset[:limit]
        return [row.to_domain() for row in queryset]

    def compare_and_set(self, order_id: str, expected_token: Optional[str], mutate: Mutation) -> DomainOrder:
        with transaction.atomic():
            try:
                row = Order.objects.select_for_update().get(pk=order_id)
            except Order.DoesNotExist:
                raise NotFound(order_id=order_id)

            current = row.to_domain()
            if expected_token is not None and expected_token != current.freshness_token:
                raise Conflict(order_id=order_id, current_token=current.freshness_token)

            candidate = copy.deepcopy(current)
            mutate(candidate)
            if candidate.status == OrderStatus.OUT_FOR_DELIVERY and candidate.assigned_rider_id:
                others = Order.objects.filter(
                    rider_id=int(candidate.assigned_rider_id), status=Order.Status.OUT_FOR_DELIVERY,
                ).exclude(pk=order_id)
                ensure_single_active(candidate, [other.to_domain() for other in others])

            # updated_at must move forward even if the clock did not
            now = timezone.now()
            if now <= current.updated_at:
                now = current.updated_at + timedelta(microseconds=1)
            candidate.updated_at = now
            candidate.version = current.version + 1

            values = Order.row_values(candidate)
            values.pop('created_at')
            try:
                with transaction.atomic():
                    updated = Order.objects.filter(pk=order_id, version=current.version).update(**values)
            except IntegrityError:
                logger.info("Order %s: database refused a second active delivery for rider %s",
                            order_id, candidate.assigned_rider_id)
                raise PreconditionFailed(
                    "This rider already has an order out for delivery.", order_id=order_id)

            if updated == 0:
                # another writer got in between our read and this update
                raise Conflict(order_id=order_id)
            return candidate

    def record_swap(self, entry: Dict[str, Any]) -> None:
        SwapAudit.objects.create(
            swap_id=entry.get("swapId", ""),
            rider_id=entry.get("riderId", ""),
            target_order_id=entry.get("targetOrderId", ""),
            current_order_id=entry.get("currentOrderId"),
            stage=entry.get("stage", ""),
            error=entry.get("error"),
            payload=entry,
        )

    def swap_entries(self, swap_id: Optional[str] = None) -> List[Dict[str, Any]]:
        queryset = SwapAudit.objects.all()
        if swap_id is not None:
            queryset = queryset.filter(swap_id=swap_id)
        return [audit.payload for audit in queryset]


class UserRiderRegistry(RiderRegistry):
    def get(self, rider_id: str) -> Rider:
        if not str(rider_id).isdigit():
            raise NotFound(f"Rider {rider_id} not found.")
        try:
            user = User.objects.get(pk=int(rider_id), role=User.Roles.RIDER)
        except User.DoesNotExist:
            raise NotFound(f"Rider {rider_id} not found.")

        return Rider(
            id=str(user.pk),
            display_name=user.get_full_name() or user.username,
            status=RiderStatus(user.account_status.lower()),
            phone=str(user.phone_number) if user.phone_number else None,
            last_seen_at=user.last_login,
        )
