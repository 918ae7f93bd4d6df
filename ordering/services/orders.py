"""
Application services for the order lifecycle after checkout.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from ordering.domain.actor import Actor
from ordering.domain.errors import InvalidStatusTransition, OrderNotFound
from ordering.domain.order import (
    Order,
    OrderStatus,
    PaymentStatus,
    parse_order_status,
    parse_payment_status,
)
from ordering.infra.repositories import OrderRepository
from ordering.services.notifications import NotificationService
from ordering.services.paging import check_page


logger = logging.getLogger(__name__)


class OrderLifecycleService:
    """Status and payment transitions, cancellation and order reads."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.notifications = notifications or NotificationService()
        self.clock = clock

    def update_status(
        self,
        order_id: UUID,
        new_status: str | OrderStatus,
        notes: str = "",
        tracking_number: str | None = None,
    ) -> Order:
        """Move an order through the fulfilment state machine."""
        status = parse_order_status(new_status)
        with transaction.atomic():
            order = self.order_repo.get(order_id, for_update=True)
            previous = order.status
            order.change_status(status, self.clock(), notes=notes, tracking_number=tracking_number)
            self.order_repo.save_state(order)
            self.notifications.schedule(order.pull_events())

        logger.info(
            "order_status_updated",
            extra={
                "order_id": str(order.id),
                "previous_status": previous.value,
                "status": order.status.value,
            },
        )
        return order

    def update_payment_status(
        self,
        order_id: UUID,
        new_payment_status: str | PaymentStatus,
        notes: str = "",
        payment_reference: str | None = None,
    ) -> Order:
        """Set the payment status; refunds pull the order to returned."""
        payment_status = parse_payment_status(new_payment_status)
        with transaction.atomic():
            order = self.order_repo.get(order_id, for_update=True)
            previous = order.payment_status
            order.change_payment_status(
                payment_status,
                self.clock(),
                notes=notes,
                payment_reference=payment_reference,
            )
            self.order_repo.save_state(order)
            self.notifications.schedule(order.pull_events())

        logger.info(
            "order_payment_status_updated",
            extra={
                "order_id": str(order.id),
                "previous_status": previous.value,
                "status": order.payment_status.value,
                "order_status": order.status.value,
            },
        )
        return order

    def cancel_order(self, actor: Actor, order_id: UUID) -> Order:
        """Customer self-cancel; allowed for the actor's own pending orders only."""
        with transaction.atomic():
            order = self.order_repo.get(order_id, for_update=True)
            if order.customer_id != actor.id:
                raise OrderNotFound(f"Order {order_id} not found")
            if order.status != OrderStatus.PENDING:
                raise InvalidStatusTransition(order.status.value, OrderStatus.CANCELLED.value)

            order.change_status(OrderStatus.CANCELLED, self.clock(), notes=order.admin_notes)
            self.order_repo.save_state(order)
            self.notifications.schedule(order.pull_events())

        logger.info("order_cancelled_by_customer", extra={"order_id": str(order.id)})
        return order

    def get_order(self, order_id: UUID, actor: Actor | None = None) -> Order:
        """Order by id; customers only see their own."""
        order = self.order_repo.get(order_id)
        if actor is not None and not actor.is_admin and order.customer_id != actor.id:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def list_orders(self, actor_id: UUID, limit: int = 20, offset: int = 0) -> list[Order]:
        check_page(limit, offset)
        return self.order_repo.list_for_customer(actor_id, limit=limit, offset=offset)

    def list_all_orders(
        self,
        status: str | None = None,
        payment_status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Order]:
        check_page(limit, offset)
        return self.order_repo.list_all(
            status=parse_order_status(status) if status else None,
            payment_status=parse_payment_status(payment_status) if payment_status else None,
            limit=limit,
            offset=offset,
        )
