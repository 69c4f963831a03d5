from django.contrib.auth.models import AbstractUser
from django.db import models
from phonenumber_field.modelfields import PhoneNumberField

from orders.models import Actor, ActorRole


class User(AbstractUser):
    class Roles(models.TextChoices):
        CUSTOMER = "CUSTOMER", "Customer"
        RIDER = "RIDER", "Rider"
        ADMIN = "ADMIN", "Admin"

    class AccountStatus(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        BLOCKED = "BLOCKED", "Blocked"
        INACTIVE = "INACTIVE", "Inactive"

    # Role fields define permissions in the app
    # CUSTOMER: Can place and cancel (while pending) their own orders
    # RIDER: Can start and complete deliveries assigned to them
    # ADMIN: Confirms, cancels and assigns riders
    role = models.CharField(max_length=20, choices=Roles.choices, default=Roles.CUSTOMER)

    # Blocked or inactive riders are never given new orders
    account_status = models.CharField(max_length=20, choices=AccountStatus.choices, default=AccountStatus.ACTIVE)

    # Using PhoneNumberField to validate Indian numbers (+91...)
    phone_number = PhoneNumberField(blank=True, null=True, unique=True, region="IN")

    def to_actor(self) -> Actor:
        """
        The lifecycle core knows users only as (role, id).
        Superusers act as admins whatever their role field says.
        """
        if self.is_superuser or self.role == self.Roles.ADMIN:
            return Actor(ActorRole.ADMIN, str(self.pk))
        if self.role == self.Roles.RIDER:
            return Actor(ActorRole.RIDER, str(self.pk))
        return Actor(ActorRole.CUSTOMER, str(self.pk))

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"
