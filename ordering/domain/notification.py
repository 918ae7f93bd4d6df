"""
Domain model for outbound notifications.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from ordering.domain.errors import ValidationError


class NotificationType(str, Enum):
    """Transactional triggers."""
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_ADMIN_ALERT = "order_admin_alert"
    ORDER_STATUS_UPDATE = "order_status_update"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_FAILED_ADMIN_ALERT = "payment_failed_admin_alert"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"  # claimed by a worker
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    FAILED = "failed"


# Statuses reached after a successful send, in engagement order.
ENGAGEMENT_RANK = {
    NotificationStatus.SENT: 0,
    NotificationStatus.DELIVERED: 1,
    NotificationStatus.OPENED: 2,
    NotificationStatus.CLICKED: 3,
    NotificationStatus.BOUNCED: 0,
}

DISPATCHABLE_STATUSES = (NotificationStatus.PENDING, NotificationStatus.FAILED)


def parse_notification_status(value: str | NotificationStatus) -> NotificationStatus:
    try:
        return NotificationStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid notification status: {value}") from None


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str = ""
    customer_id: UUID | None = None


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class NewNotification:
    """A rendered notification ready to be queued."""
    type: NotificationType
    recipient: Recipient
    template_key: str
    message: RenderedMessage
    order_id: UUID | None = None
    metadata: dict = field(default_factory=dict)

    def validate(self) -> None:
        if not self.recipient.email or not self.recipient.email.strip():
            raise ValidationError("Notification recipient address is required")
        if not self.message.html or not self.message.html.strip():
            raise ValidationError("Notification html body is required")


@dataclass(frozen=True)
class NotificationState:
    """Read-side view of a task, as returned by status queries."""
    id: UUID
    type: NotificationType
    status: NotificationStatus
    attempt_count: int
    is_terminal: bool
    created_at: datetime
    last_attempt_at: datetime | None
    next_attempt_at: datetime | None
    sent_at: datetime | None
    last_error: str
    recipient_email: str = ""
    subject: str = ""

    @property
    def exhausted(self) -> bool:
        """Terminal failure: no automatic retry will happen."""
        return self.is_terminal and self.status == NotificationStatus.FAILED


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class NotificationMetrics:
    sent_count: int
    delivered_count: int
    opened_count: int
    clicked_count: int
    bounced_count: int
    delivery_rate: float
    open_rate: float
    click_rate: float


def rate(part: int, whole: int) -> float:
    """Percentage of ``whole``; 0 when there is nothing to divide by."""
    if whole <= 0:
        return 0.0
    return part / whole * 100
