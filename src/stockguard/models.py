import uuid

from django.db import models


class ProductKind(models.TextChoices):
    BOOK = "book", "Book"
    FLOWER = "flower", "Flower"
    STATIONERY = "stationery", "Stationery"


class Product(models.Model):
    """
    A sellable product and its quantity on hand.

    ``stock`` is the single authoritative inventory figure. It is only ever
    changed through conditional or relative UPDATEs in `stockguard.ledger`
    and `stockguard.holds`, never by read-modify-save.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    kind = models.CharField(max_length=16, choices=ProductKind.choices)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    # Whole percent, only affects the displayed and charged unit price.
    discount = models.PositiveSmallIntegerField(default=0)
    stock = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.stock})"


class HoldState(models.TextChoices):
    HELD = "held", "Held"
    COMMITTED = "committed", "Committed"
    RELEASED = "released", "Released"


class StockHold(models.Model):
    """
    Stock taken out of the sellable pool for one checkout.

    Lifecycle:
    1. ``held``: created with the stock decrement when checkout starts.
    2. ``committed``: payment confirmed, the units are sold.
    3. ``released``: payment failed, checkout expired or the hold timed out;
       exactly ``quantity`` units went back to the product.
    """

    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="holds")
    quantity = models.PositiveIntegerField()
    reference = models.CharField(max_length=64, db_index=True)
    state = models.CharField(max_length=16, choices=HoldState.choices, default=HoldState.HELD)
    expires_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)
    settled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["state", "expires_at"], name="stockguard_hold_state_exp_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.product_id} x{self.quantity} ({self.state})"


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method", "Requires payment method"
    CANCELED = "canceled", "Canceled"


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING)
    payment_status = models.CharField(
        max_length=32, choices=PaymentStatus.choices, default=PaymentStatus.PROCESSING
    )
    currency = models.CharField(max_length=8)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_session_id = models.CharField(max_length=255, blank=True)
    # Paid after its holds were gone and the stock could not be taken again.
    stock_shortfall = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Order {self.pk} ({self.status})"


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    name = models.CharField(max_length=255)
    # Discounted unit price in minor currency units, as charged.
    unit_amount = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField()

    def __str__(self) -> str:
        return f"{self.name} x{self.quantity}"
