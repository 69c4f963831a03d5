from django.conf import settings
from django.db import models
from django.db.models import Q

from orders.models import CustomerDetails, OrderItem as DomainOrderItem
from orders.models import Order as DomainOrder, OrderStatus, PaymentCollectedMethod


class Product(models.Model):
    """
    Item for sale in the store. The checkout prices orders from this table,
    never from what the client sends.
    """
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    is_available = models.BooleanField(default=True)
    # null means stock is not tracked for this product
    stock_quantity = models.PositiveIntegerField(blank=True, null=True)
    image_url = models.URLField(blank=True, null=True)

    def __str__(self):
        return self.name


class Order(models.Model):
    """
    Central model for the grocery workflow.
    Tracks lifecycle: pending -> confirmed -> outForDelivery -> delivered (or cancelled).
    Rows are only ever written through ordering.store.DjangoOrderStore.
    """
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        OUT_FOR_DELIVERY = "outForDelivery", "Out for Delivery"
        DELIVERED = "delivered", "Delivered"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentCollected(models.TextChoices):
        CASH = "cash", "Cash"
        UPI = "upi", "UPI"
        PREPAID = "prepaid", "Prepaid"

    id = models.CharField(primary_key=True, max_length=20)

    # Relationships
    # customer is null for phone orders placed by an admin
    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                 related_name='orders')
    rider = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                              related_name='deliveries')

    # Contact details as entered at checkout
    customer_name = models.CharField(max_length=255)
    customer_phone = models.CharField(max_length=32)
    delivery_address = models.TextField()

    # Structure: [{"id": "1", "name": "Milk", "quantity": 2, "unitPrice": "30.00", "lineTotal": "60.00"}]
    items = models.JSONField(default=list)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="INR")

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payment_method = models.CharField(max_length=20, blank=True, null=True)
    payment_collected_method = models.CharField(max_length=20, choices=PaymentCollected.choices,
                                                blank=True, null=True)

    delivery_slot = models.CharField(max_length=64, blank=True, null=True)
    delivery_instructions = models.TextField(blank=True, null=True)

    # Optimistic concurrency: bumped by every write, part of the freshness token
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['rider'],
                condition=Q(status='outForDelivery'),
                name='one_active_delivery_per_rider',
            ),
        ]

    def to_domain(self) -> DomainOrder:
        collected = self.payment_collected_method
        return DomainOrder(
            id=self.id,
            customer=CustomerDetails(
                name=self.customer_name,
                phone=self.customer_phone,
                address=self.delivery_address,
                user_id=str(self.customer_id) if self.customer_id else None,
            ),
            items=[DomainOrderItem.from_dict(item) for item in self.items],
            status=OrderStatus(self.status),
            assigned_rider_id=str(self.rider_id) if self.rider_id else None,
            currency=self.currency,
            delivery_slot=self.delivery_slot,
            delivery_instructions=self.delivery_instructions,
            payment_method=self.payment_method,
            payment_collected_method=PaymentCollectedMethod(collected) if collected else None,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @staticmethod
    def row_values(order: DomainOrder) -> dict:
        """
        Column values for a domain order, used for inserts and conditional updates.
        """
        return {
            'customer_id': int(order.customer.user_id) if order.customer.user_id else None,
            'rider_id': int(order.assigned_rider_id) if order.assigned_rider_id else None,
            'customer_name': order.customer.name,
            'customer_phone': order.customer.phone or "",
            'delivery_address': order.customer.address or "",
            'items': [item.to_dict() for item in order.items],
            'total_amount': order.total_amount,
            'currency': order.currency,
            'status': order.status.value,
            'payment_method': order.payment_method,
            'payment_collected_method': (
                order.payment_collected_method.value if order.payment_collected_method else None
            ),
            'delivery_slot': order.delivery_slot,
            'delivery_instructions': order.delivery_instructions,
            'version': order.version,
            'created_at': order.created_at,
            'updated_at': order.updated_at,
        }

    def __str__(self):
        return f"Order #{self.id} - {self.status}"


class SwapAudit(models.Model):
    """
    Journal of active-delivery swaps, one row per stage reached.
    Lets staff find a rider left without an active delivery by a failed rollback.
    """
    swap_id = models.CharField(max_length=20, db_index=True)
    rider_id = models.CharField(max_length=32)
    target_order_id = models.CharField(max_length=20)
    current_order_id = models.CharField(max_length=20, blank=True, null=True)
    stage = models.CharField(max_length=20)
    error = models.TextField(blank=True, null=True)
    payload = models.JSONField(default=dict)
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['recorded_at', 'id']

    def __str__(self):
        return f"Swap {self.swap_id} - {self.stage}"
