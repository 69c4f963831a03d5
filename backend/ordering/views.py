from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from dispatch.gateway import StatusMutationGateway
from orders.errors import Conflict, Forbidden, OrderLifecycleError, OrderValidationError, PreconditionFailed
from orders.models import ActorRole, OrderFilter, OrderStatus
from orders.placement import CatalogEntry, place_order
from orders.policy import policy_from_env

from .models import Product
from .serializers import (
    AssignRiderSerializer,
    ProductSerializer,
    StatusChangeSerializer,
    SwapEntrySerializer,
    validated,
)
from .store import DjangoOrderStore, UserRiderRegistry


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Product.objects.filter(is_available=True)
    serializer_class = ProductSerializer
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]


class OrderViewSet(viewsets.ViewSet):
    """
    The order API. Every read and write goes through the Status Mutation Gateway.
    - Customer: places orders, sees and cancels (while pending) their own
    - Rider: sees orders assigned to them, starts and completes deliveries
    - Admin: sees everything, confirms, cancels and assigns riders

    Reads honour If-None-Match (304 when unchanged), writes honour If-Match
    (409 when the order moved on since the client read it).
    """
    permission_classes = [permissions.IsAuthenticated]

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        self.policy = policy_from_env()
        self.store = DjangoOrderStore()
        self.gateway = StatusMutationGateway(self.store, UserRiderRegistry())

    def handle_exception(self, exc):
        # lifecycle errors map onto {"error", "code"} bodies with their own status codes
        if isinstance(exc, OrderLifecycleError):
            headers = None
            if isinstance(exc, Conflict) and exc.current_token:
                headers = {"ETag": exc.current_token}
            return Response(exc.to_payload(), status=exc.status_code, headers=headers)
        return super().handle_exception(exc)

    def list(self, request):
        actor = request.user.to_actor()
        params = request.query_params

        order_status = None
        if params.get("status"):
            order_status = OrderStatus.parse(params["status"])
            if order_status is None:
                raise PreconditionFailed("Status is invalid.")
        try:
            limit = int(params["limit"]) if params.get("limit") else None
        except ValueError:
            raise OrderValidationError("limit must be a number.")

        order_filter = OrderFilter(
            assigned_rider_id=params.get("assigned_rider_id") or None,
            status=order_status,
            search=params.get("search") or None,
        )
        result = self.gateway.fetch_orders(actor, order_filter, request.headers.get("If-None-Match"), limit)
        if result.not_modified:
            return Response(status=status.HTTP_304_NOT_MODIFIED, headers={"ETag": result.freshness_token})

        return Response(
            {"orders": [order.to_dict() for order in result.orders], "freshnessToken": result.freshness_token},
            headers={"ETag": result.freshness_token},
        )

    def retrieve(self, request, pk=None):
        result = self.gateway.fetch_order(pk, request.user.to_actor(), request.headers.get("If-None-Match"))
        if result.not_modified:
            return Response(status=status.HTTP_304_NOT_MODIFIED, headers={"ETag": result.freshness_token})
        return Response({"order": result.order.to_dict()}, headers={"ETag": result.freshness_token})

    def create(self, request):
        """
        Checkout. Prices come from the product table, never from the request.
        """
        catalog = {
            str(product.pk): CatalogEntry(str(product.pk), product.name, product.price, product.stock_quantity)
            for product in Product.objects.filter(is_available=True)
        }
        order = place_order(self.store, catalog, request.data, request.user.to_actor(), self.policy)
        return Response({"order": order.to_dict()}, status=status.HTTP_201_CREATED,
                        headers={"ETag": order.freshness_token})

    def partial_update(self, request, pk=None):
        """
        {"status": ..., "paymentCollectedMethod"?: ..., "swapId"?: ...} moves the order;
        swapId names the journaled swap a demotion belongs to.
        {"riderId": ...} assigns a rider (admins only).
        """
        actor = request.user.to_actor()
        expected_token = request.headers.get("If-Match")

        if "riderId" in request.data:
            data = validated(AssignRiderSerializer(data=request.data))
            order = self.gateway.assign_rider(pk, data["riderId"], actor, expected_token=expected_token)
        elif "status" in request.data:
            data = validated(StatusChangeSerializer(data=request.data))
            order = self.gateway.request_transition(
                pk, data["status"], actor,
                expected_token=expected_token,
                payment_collected_method=data.get("paymentCollectedMethod") or None,
                swap_id=data.get("swapId") or None,
            )
        else:
            raise OrderValidationError("Send either a status or a riderId.")

        return Response({"order": order.to_dict()}, headers={"ETag": order.freshness_token})

    @action(detail=False, methods=['post'])
    def swaps(self, request):
        """
        Journal entry for an active-delivery swap, written by the rider's client at each stage.
        """
        actor = request.user.to_actor()
        data = validated(SwapEntrySerializer(data=request.data))
        if actor.role == ActorRole.CUSTOMER or (
            actor.role == ActorRole.RIDER and data["riderId"] != actor.actor_id
        ):
            raise Forbidden("You can only journal your own swaps.")
        self.gateway.record_swap(dict(data))
        return Response(status=status.HTTP_201_CREATED)
