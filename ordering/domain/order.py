"""
Domain model for Order aggregate.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from uuid import UUID, uuid4

from ordering.domain.errors import InvalidStatusTransition, ValidationError
from ordering.domain.events import (
    DomainEvent,
    OrderPlaced,
    OrderStatusChanged,
    PaymentStatusChanged,
)

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Round to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    """Fulfilment status of an order."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentStatus(str, Enum):
    """Payment status; any value may follow any other."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class ItemStatus(str, Enum):
    """Order line status."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    RETURNED = "returned"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

# Order statuses whose items follow the order.
CASCADING_STATUSES = {
    OrderStatus.CANCELLED: ItemStatus.CANCELLED,
    OrderStatus.RETURNED: ItemStatus.RETURNED,
}


def is_valid_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Same status is always allowed (notes/tracking updates)."""
    if current == new:
        return True
    return new in ORDER_TRANSITIONS.get(current, frozenset())


def parse_order_status(value: str | OrderStatus) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid order status: {value}") from None


def parse_payment_status(value: str | PaymentStatus) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid payment status: {value}") from None


@dataclass(frozen=True)
class CheckoutAdjustments:
    """Caller-supplied amounts applied on top of the subtotal."""
    tax: Decimal = Decimal("0.00")
    shipping: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")

    def __post_init__(self):
        for name in ("tax", "shipping", "discount"):
            value = money(getattr(self, name))
            if value < 0:
                raise ValidationError(f"{name} must be non-negative")
            object.__setattr__(self, name, value)


class OrderItem:
    """Order line with a price locked at checkout."""

    def __init__(
        self,
        catalog_item_id: UUID,
        quantity: int,
        unit_price: Decimal,
        status: ItemStatus = ItemStatus.ACTIVE,
        id: UUID | None = None,
        name: str = "",
    ):
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        if unit_price < 0:
            raise ValidationError("Price must be non-negative")

        self.id = id or uuid4()
        self.catalog_item_id = catalog_item_id
        self.name = name
        self.quantity = quantity
        self.unit_price = money(unit_price)
        self.status = status

    @property
    def total_amount(self) -> Decimal:
        return money(self.unit_price * self.quantity)


class Order:
    """Order aggregate root.

    Monetary fields are fixed when the order is placed. Later changes go
    through ``change_status`` / ``change_payment_status`` and only touch
    status, dates, notes and references.
    """

    def __init__(
        self,
        customer_id: UUID,
        order_number: str,
        items: list[OrderItem],
        shipping_address_id: UUID,
        payment_method: str,
        subtotal: Decimal,
        tax_amount: Decimal,
        shipping_amount: Decimal,
        discount_amount: Decimal,
        final_amount: Decimal,
        order_date: datetime,
        id: UUID | None = None,
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        shipping_method: str = "",
        customer_notes: str = "",
        admin_notes: str = "",
        tracking_number: str = "",
        payment_reference: str = "",
        shipped_date: datetime | None = None,
        delivered_date: datetime | None = None,
        payment_date: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.customer_id = customer_id
        self.order_number = order_number
        self._items = list(items)
        self.shipping_address_id = shipping_address_id
        self.payment_method = payment_method
        self.subtotal = subtotal
        self.tax_amount = tax_amount
        self.shipping_amount = shipping_amount
        self.discount_amount = discount_amount
        self.final_amount = final_amount
        self.order_date = order_date
        self._status = status
        self._payment_status = payment_status
        self.shipping_method = shipping_method
        self.customer_notes = customer_notes
        self.admin_notes = admin_notes
        self.tracking_number = tracking_number
        self.payment_reference = payment_reference
        self.shipped_date = shipped_date
        self.delivered_date = delivered_date
        self.payment_date = payment_date
        self._events: list[DomainEvent] = []

    @classmethod
    def place(
        cls,
        customer_id: UUID,
        order_number: str,
        items: list[OrderItem],
        shipping_address_id: UUID,
        payment_method: str,
        adjustments: CheckoutAdjustments,
        now: datetime,
        shipping_method: str = "",
        customer_notes: str = "",
    ) -> Order:
        """Create a pending order, computing subtotal and final amount."""
        if not items:
            raise ValidationError("Cannot place an order without items")
        if not payment_method:
            raise ValidationError("Payment method is required")

        subtotal = money(sum((item.total_amount for item in items), Decimal("0")))
        final_amount = money(
            subtotal + adjustments.tax + adjustments.shipping - adjustments.discount
        )
        order = cls(
            customer_id=customer_id,
            order_number=order_number,
            items=items,
            shipping_address_id=shipping_address_id,
            payment_method=payment_method,
            subtotal=subtotal,
            tax_amount=adjustments.tax,
            shipping_amount=adjustments.shipping,
            discount_amount=adjustments.discount,
            final_amount=final_amount,
            order_date=now,
            shipping_method=shipping_method,
            customer_notes=customer_notes,
        )
        order._record(OrderPlaced(
            event_id=uuid4(),
            aggregate_id=order.id,
            event_type="OrderPlaced",
            customer_id=customer_id,
            order_number=order_number,
            final_amount=final_amount,
            items_count=len(items),
        ))
        return order

    @property
    def items(self) -> list[OrderItem]:
        return list(self._items)

    @property
    def status(self) -> OrderStatus:
        return self._status

    @property
    def payment_status(self) -> PaymentStatus:
        return self._payment_status

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self._status]

    def pull_events(self) -> list[DomainEvent]:
        """Return and clear events recorded since the last pull."""
        events, self._events = self._events, []
        return events

    def change_status(
        self,
        new_status: OrderStatus,
        now: datetime,
        notes: str = "",
        tracking_number: str | None = None,
    ) -> None:
        """Apply a fulfilment transition and its side effects."""
        if not is_valid_transition(self._status, new_status):
            raise InvalidStatusTransition(self._status.value, new_status.value)

        previous = self._status
        self._status = new_status
        self.admin_notes = notes

        if new_status == OrderStatus.SHIPPED:
            if self.shipped_date is None:
                self.shipped_date = now
            if tracking_number:
                self.tracking_number = tracking_number
        elif new_status == OrderStatus.DELIVERED:
            if self.delivered_date is None:
                self.delivered_date = now
            # Settlement on delivery (cash / in person).
            if self._payment_status == PaymentStatus.PENDING:
                self._set_payment_status(PaymentStatus.PAID, now)

        if new_status in CASCADING_STATUSES:
            self._cascade_items(CASCADING_STATUSES[new_status])

        self._record(OrderStatusChanged(
            event_id=uuid4(),
            aggregate_id=self.id,
            event_type="OrderStatusChanged",
            previous_status=previous.value,
            new_status=new_status.value,
            tracking_number=self.tracking_number,
        ))

    def change_payment_status(
        self,
        new_status: PaymentStatus,
        now: datetime,
        notes: str = "",
        payment_reference: str | None = None,
    ) -> None:
        """Apply a payment status change; refunds force the order to returned."""
        previous = self._payment_status
        self.admin_notes = notes
        if payment_reference:
            self.payment_reference = payment_reference

        self._set_payment_status(new_status, now)

        if new_status == PaymentStatus.REFUNDED:
            if self._status not in (OrderStatus.CANCELLED, OrderStatus.RETURNED):
                self._status = OrderStatus.RETURNED
            self._cascade_items(ItemStatus.RETURNED)

        self._record(PaymentStatusChanged(
            event_id=uuid4(),
            aggregate_id=self.id,
            event_type="PaymentStatusChanged",
            previous_status=previous.value,
            new_status=new_status.value,
            notes=notes,
        ))

    def _set_payment_status(self, new_status: PaymentStatus, now: datetime) -> None:
        self._payment_status = new_status
        if new_status == PaymentStatus.PAID and self.payment_date is None:
            self.payment_date = now

    def _cascade_items(self, item_status: ItemStatus) -> None:
        for item in self._items:
            item.status = item_status

    def _record(self, event: DomainEvent) -> None:
        self._events.append(event)
