"""
Domain events raised by the order aggregate.

Services turn committed events into notification tasks.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class EventVersion(str, Enum):
    """Event version for upcasting."""
    V1 = "1.0"


@dataclass
class DomainEvent:
    """Base domain event."""
    event_id: UUID
    aggregate_id: UUID
    event_type: str
    # version is set in subclasses to avoid dataclass field ordering issues


@dataclass
class OrderPlaced(DomainEvent):
    """Order created at checkout."""
    customer_id: UUID
    order_number: str
    final_amount: Decimal
    items_count: int
    version: EventVersion = EventVersion.V1


@dataclass
class OrderStatusChanged(DomainEvent):
    """Fulfilment status changed (or re-set to the same value)."""
    previous_status: str
    new_status: str
    tracking_number: str = ""
    version: EventVersion = EventVersion.V1

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


@dataclass
class PaymentStatusChanged(DomainEvent):
    """Payment status set by an admin or the payment gateway."""
    previous_status: str
    new_status: str
    notes: str = ""
    version: EventVersion = EventVersion.V1
