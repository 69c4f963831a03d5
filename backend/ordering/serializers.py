from rest_framework import serializers

from orders.errors import OrderValidationError

from .models import Product


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = '__all__'


class StatusChangeSerializer(serializers.Serializer):
    """
    PATCH body for a status transition.
    Status strings are parsed by the lifecycle core (aliases allowed), not here.
    """
    status = serializers.CharField()
    paymentCollectedMethod = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    swapId = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=20)


class AssignRiderSerializer(serializers.Serializer):
    riderId = serializers.CharField()


class SwapEntrySerializer(serializers.Serializer):
    swapId = serializers.CharField(max_length=20)
    riderId = serializers.CharField()
    targetOrderId = serializers.CharField(max_length=20)
    currentOrderId = serializers.CharField(required=False, allow_null=True)
    stage = serializers.CharField(max_length=20)
    error = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    history = serializers.ListField(required=False, default=list)


def validated(serializer: serializers.Serializer) -> dict:
    """
    Run DRF validation but report failures in the order API's error shape.
    """
    if not serializer.is_valid():
        field, messages = next(iter(serializer.errors.items()))
        raise OrderValidationError(f"{field}: {messages[0]}")
    return serializer.validated_data
