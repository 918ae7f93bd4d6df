"""
Notification service: turns order lifecycle events into queued messages and
answers status/metrics queries over the queue.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable
from uuid import UUID

from django.db import transaction
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.html import strip_tags

from ordering.config import NotificationConfig
from ordering.domain.errors import ConflictError, ValidationError
from ordering.domain.events import (
    DomainEvent,
    OrderPlaced,
    OrderStatusChanged,
    PaymentStatusChanged,
)
from ordering.domain.notification import (
    DISPATCHABLE_STATUSES,
    NewNotification,
    NotificationMetrics,
    NotificationState,
    NotificationStatus,
    NotificationType,
    Recipient,
    RenderedMessage,
    TimeRange,
    parse_notification_status,
)
from ordering.domain.order import Order, OrderStatus, PaymentStatus
from ordering.infra.notification_queue import NotificationQueueRepository
from ordering.infra.pii_masker import mask_email
from ordering.infra.repositories import AddressRepository, CustomerRepository, OrderRepository
from ordering.services.paging import check_page


logger = logging.getLogger(__name__)

# Fulfilment statuses the customer hears about.
CUSTOMER_VISIBLE_STATUSES = frozenset({
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})


class NotificationService:
    """Service for notification enqueueing and queries."""

    def __init__(
        self,
        config: NotificationConfig | None = None,
        queue: NotificationQueueRepository | None = None,
        customer_repo: CustomerRepository | None = None,
        order_repo: OrderRepository | None = None,
        address_repo: AddressRepository | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.config = config or NotificationConfig.from_settings()
        self.queue = queue or NotificationQueueRepository()
        self.customer_repo = customer_repo or CustomerRepository()
        self.order_repo = order_repo or OrderRepository()
        self.address_repo = address_repo or AddressRepository()
        self.clock = clock

    # Enqueue side

    def enqueue(self, notification: NewNotification) -> UUID:
        """Validate and queue a rendered notification."""
        task_id = self.queue.add(notification)
        logger.info(
            "notification_enqueued",
            extra={
                "task_id": str(task_id),
                "type": notification.type.value,
                "recipient": mask_email(notification.recipient.email),
            },
        )
        return task_id

    def render(self, notification_type: NotificationType, context: dict) -> RenderedMessage:
        """Render subject, html and text bodies for ``notification_type``."""
        base = f"notifications/{notification_type.value}"
        context = {
            "company_name": self.config.company_name,
            "site_url": self.config.site_url,
            "support_email": self.config.support_email,
            "currency": self.config.currency,
            **context,
        }
        subject = " ".join(render_to_string(f"{base}/subject.txt", context).split())
        html = render_to_string(f"{base}/body.html", context)
        try:
            text = render_to_string(f"{base}/body.txt", context)
        except TemplateDoesNotExist:
            text = strip_tags(html)
        return RenderedMessage(subject=subject, html=html, text=text.strip())

    def schedule(self, events: Iterable[DomainEvent]) -> None:
        """Publish ``events`` once the current transaction commits."""
        events = list(events)
        if events:
            transaction.on_commit(lambda: self.publish(events))

    def publish(self, events: Iterable[DomainEvent]) -> list[UUID]:
        """
        Queue the notifications implied by committed events.

        Best effort: the business change has already committed, so failures
        here are logged per message and never raised.
        """
        task_ids = []
        for event in events:
            try:
                deliveries = self._deliveries(event)
            except Exception as e:
                self._log_enqueue_failure(event, e)
                continue

            for order, notification_type, recipient, extra in deliveries:
                try:
                    task_ids.append(self._enqueue_for(order, notification_type, recipient, extra))
                except Exception as e:
                    self._log_enqueue_failure(event, e, notification_type)
        return task_ids

    def _deliveries(self, event: DomainEvent) -> list[tuple[Order, NotificationType, Recipient, dict]]:
        """Messages an event fans out to, as (order, type, recipient, extra context)."""
        if isinstance(event, OrderPlaced):
            order = self.order_repo.get(event.aggregate_id)
            return [
                *self._to_customer(order, NotificationType.ORDER_CONFIRMATION),
                *self._to_admins(order, NotificationType.ORDER_ADMIN_ALERT),
            ]

        if isinstance(event, OrderStatusChanged):
            if not event.changed or OrderStatus(event.new_status) not in CUSTOMER_VISIBLE_STATUSES:
                return []
            order = self.order_repo.get(event.aggregate_id)
            return self._to_customer(
                order,
                NotificationType.ORDER_STATUS_UPDATE,
                previous_status=event.previous_status,
            )

        if isinstance(event, PaymentStatusChanged):
            if event.previous_status == event.new_status:
                return []
            new_status = PaymentStatus(event.new_status)
            if new_status == PaymentStatus.PAID:
                order = self.order_repo.get(event.aggregate_id)
                return self._to_customer(order, NotificationType.PAYMENT_SUCCESS)
            if new_status == PaymentStatus.FAILED:
                order = self.order_repo.get(event.aggregate_id)
                return [
                    *self._to_customer(order, NotificationType.PAYMENT_FAILED, reason=event.notes),
                    *self._to_admins(order, NotificationType.PAYMENT_FAILED_ADMIN_ALERT, reason=event.notes),
                ]
        return []

    def _to_customer(self, order: Order, notification_type: NotificationType, **extra) -> list:
        customer = self.customer_repo.get_by_id(order.customer_id)
        if customer is None or not customer.email:
            logger.warning(
                "notification_customer_without_email",
                extra={"type": notification_type.value, "order_id": str(order.id)},
            )
            return []
        recipient = Recipient(email=customer.email, name=customer.name, customer_id=customer.id)
        return [(order, notification_type, recipient, extra)]

    def _to_admins(self, order: Order, notification_type: NotificationType, **extra) -> list:
        recipients = {r.email.lower(): r for r in self.customer_repo.admin_recipients()}
        for email in self.config.admin_emails:
            recipients.setdefault(email.lower(), Recipient(email=email, name="Administrator"))

        if not recipients:
            logger.warning(
                "notification_no_admin_recipients",
                extra={"type": notification_type.value, "order_id": str(order.id)},
            )
        return [(order, notification_type, recipient, extra) for recipient in recipients.values()]

    def _enqueue_for(
        self,
        order: Order,
        notification_type: NotificationType,
        recipient: Recipient,
        extra: dict,
    ) -> UUID:
        context = {
            "order": order,
            "items": order.items,
            "recipient": recipient,
            "shipping_address": self.address_repo.get_by_id(order.shipping_address_id),
            "order_url": f"{self.config.site_url}/orders/{order.id}",
            **extra,
        }
        message = self.render(notification_type, context)
        return self.enqueue(NewNotification(
            type=notification_type,
            recipient=recipient,
            template_key=f"notifications/{notification_type.value}",
            message=message,
            order_id=order.id,
            metadata={
                "order_number": order.order_number,
                "order_status": order.status.value,
                "payment_status": order.payment_status.value,
            },
        ))

    def _log_enqueue_failure(
        self,
        event: DomainEvent,
        error: Exception,
        notification_type: NotificationType | None = None,
    ) -> None:
        logger.error(
            "notification_enqueue_failed",
            extra={
                "event_type": event.event_type,
                "order_id": str(event.aggregate_id),
                "type": notification_type.value if notification_type else None,
                "error": str(error),
            },
            exc_info=True,
        )

    # Query side

    def get_status(self, task_id: UUID) -> NotificationState:
        return self.queue.get_state(task_id)

    def get_queue_depth(self) -> int:
        return self.queue.queue_depth()

    def get_metrics(self, time_range: TimeRange) -> NotificationMetrics:
        if time_range.start > time_range.end:
            raise ValidationError("Time range start must not be after its end")
        return self.queue.metrics(time_range)

    # Provider feedback and operator actions

    def track_delivered(self, task_id: UUID) -> NotificationState:
        return self._track(task_id, NotificationStatus.DELIVERED)

    def track_opened(self, task_id: UUID) -> NotificationState:
        return self._track(task_id, NotificationStatus.OPENED)

    def track_clicked(self, task_id: UUID) -> NotificationState:
        return self._track(task_id, NotificationStatus.CLICKED)

    def track_bounced(self, task_id: UUID, reason: str = "") -> NotificationState:
        return self._track(task_id, NotificationStatus.BOUNCED, reason)

    @transaction.atomic
    def _track(self, task_id: UUID, status: NotificationStatus, reason: str = "") -> NotificationState:
        state = self.queue.track(task_id, status, self.clock(), reason)
        logger.info("notification_tracked", extra={"task_id": str(task_id), "status": status.value})
        return state

    @transaction.atomic
    def suppress(self, task_id: UUID) -> NotificationState:
        """Stop further automatic retries of a task."""
        state = self.queue.suppress(task_id, self.clock())
        logger.warning("notification_suppressed", extra={"task_id": str(task_id)})
        return state

    def retry(self, task_id: UUID) -> NotificationState:
        """
        Put an exhausted task back in the queue with a fresh attempt budget.

        A task that is already waiting for an attempt is returned unchanged.
        Sent and in-flight tasks are a conflict.
        """
        if self.queue.requeue(task_id, self.clock()):
            logger.warning("notification_requeued", extra={"task_id": str(task_id)})
            return self.queue.get_state(task_id)

        state = self.queue.get_state(task_id)
        if state.status in DISPATCHABLE_STATUSES and not state.is_terminal:
            return state
        raise ConflictError(f"Notification {task_id} cannot be retried (status {state.status.value})")

    def retry_exhausted(self) -> int:
        """Requeue every exhausted task. Returns how many were requeued."""
        requeued = self.queue.requeue_exhausted(self.clock())
        logger.warning("notifications_requeued", extra={"count": requeued})
        return requeued

    def list_notifications(
        self,
        status: str | None = None,
        notification_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[NotificationState]:
        check_page(limit, offset)
        if notification_type is not None:
            try:
                notification_type = NotificationType(notification_type)
            except ValueError:
                raise ValidationError(f"Invalid notification type: {notification_type}") from None
        return self.queue.list_states(
            status=parse_notification_status(status) if status else None,
            notification_type=notification_type,
            limit=limit,
            offset=offset,
        )
