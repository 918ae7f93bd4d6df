from __future__ import annotations

from uuid import uuid4

from django.db import models


ORDER_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
    ("cancelled", "Cancelled"),
    ("returned", "Returned"),
)

PAYMENT_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("paid", "Paid"),
    ("failed", "Failed"),
    ("refunded", "Refunded"),
)

ITEM_STATUS_CHOICES = (
    ("active", "Active"),
    ("cancelled", "Cancelled"),
    ("returned", "Returned"),
)

INVOICE_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("paid", "Paid"),
    ("overdue", "Overdue"),
    ("cancelled", "Cancelled"),
)

PRICE_TYPE_CHOICES = (
    ("standard", "Standard"),
    ("wholesale", "Wholesale"),
)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class CustomerORM(TimeStampedModel):
    ROLE_CHOICES = (
        ("customer", "Customer"),
        ("admin", "Administrator"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=255, blank=True, default="")
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="customer")

    class Meta:
        indexes = [
            models.Index(fields=("role",)),
        ]

    def __str__(self) -> str:
        return self.name


class AddressORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    customer = models.ForeignKey(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="addresses",
    )
    street = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    postal_code = models.CharField(max_length=20)
    country = models.CharField(max_length=100)

    class Meta:
        indexes = [
            models.Index(fields=("customer",)),
        ]

    def __str__(self) -> str:
        return f"{self.street}, {self.postal_code} {self.city}, {self.country}"


class CatalogItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=64, unique=True)
    base_price = models.DecimalField(max_digits=12, decimal_places=2)
    wholesale_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    minimum_order_quantity = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.sku})"


class PriceTierORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    catalog_item = models.ForeignKey(
        CatalogItemORM,
        on_delete=models.CASCADE,
        related_name="price_tiers",
    )
    minimum_quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        indexes = [
            models.Index(fields=("catalog_item",)),
        ]


class CartORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    customer = models.OneToOneField(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="cart",
    )


class CartItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    cart = models.ForeignKey(
        CartORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    catalog_item = models.ForeignKey(
        CatalogItemORM,
        on_delete=models.PROTECT,
        related_name="+",
    )
    quantity = models.PositiveIntegerField()
    price_type = models.CharField(max_length=20, choices=PRICE_TYPE_CHOICES, default="standard")

    class Meta:
        indexes = [
            models.Index(fields=("cart",)),
        ]


class OrderORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    customer = models.ForeignKey(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    status = models.CharField(max_length=20, choices=ORDER_STATUS_CHOICES, default="pending")
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default="pending")

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    final_amount = models.DecimalField(max_digits=12, decimal_places=2)

    shipping_address = models.ForeignKey(
        AddressORM,
        on_delete=models.PROTECT,
        related_name="+",
    )
    shipping_method = models.CharField(max_length=100, blank=True, default="")
    payment_method = models.CharField(max_length=100)
    payment_reference = models.CharField(max_length=255, blank=True, default="")

    order_date = models.DateTimeField()
    shipped_date = models.DateTimeField(null=True, blank=True)
    delivered_date = models.DateTimeField(null=True, blank=True)
    payment_date = models.DateTimeField(null=True, blank=True)

    customer_notes = models.TextField(blank=True, default="")
    admin_notes = models.TextField(blank=True, default="")
    tracking_number = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=("status",)),
            models.Index(fields=("payment_status",)),
            models.Index(fields=("customer", "status")),
            models.Index(fields=("order_date",)),
        ]

    def __str__(self) -> str:
        return self.order_number


class OrderItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    catalog_item = models.ForeignKey(
        CatalogItemORM,
        on_delete=models.PROTECT,
        related_name="+",
    )
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=ITEM_STATUS_CHOICES, default="active")

    class Meta:
        indexes = [
            models.Index(fields=("order",)),
        ]


class InvoiceORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.OneToOneField(
        OrderORM,
        on_delete=models.PROTECT,
        related_name="invoice",
    )
    invoice_number = models.CharField(max_length=32, unique=True)
    issue_date = models.DateTimeField()
    due_date = models.DateField()
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=INVOICE_STATUS_CHOICES, default="pending")
    payment_method = models.CharField(max_length=100, blank=True, default="")
    payment_reference = models.CharField(max_length=255, blank=True, default="")
    payment_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=("status",)),
        ]

    def __str__(self) -> str:
        return self.invoice_number


class IdempotencyKey(TimeStampedModel):
    OPERATION_CHOICES = (
        ("CHECKOUT", "Checkout"),
        ("ADD_TO_CART", "Add to cart"),
        ("CANCEL_ORDER", "Cancel order"),
        ("UPDATE_ORDER_STATUS", "Update order status"),
        ("UPDATE_PAYMENT_STATUS", "Update payment status"),
        ("CREATE_INVOICE", "Create invoice"),
        ("UPDATE_INVOICE", "Update invoice"),
        ("SUPPRESS_NOTIFICATION", "Suppress notification"),
        ("RETRY_NOTIFICATION", "Retry notification"),
        ("RETRY_FAILED_NOTIFICATIONS", "Retry failed notifications"),
        ("RECORD_NOTIFICATION_FEEDBACK", "Record notification feedback"),
        ("UNKNOWN", "Other mutation"),
    )

    key = models.CharField(max_length=255)
    user_id = models.UUIDField()
    operation = models.CharField(max_length=40, choices=OPERATION_CHOICES)
    request_hash = models.CharField(max_length=255)
    response_payload = models.JSONField()

    class Meta:
        unique_together = [("key", "user_id", "operation")]
        indexes = [
            models.Index(fields=("request_hash",)),
        ]
