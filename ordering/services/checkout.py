"""
Checkout: converts a customer's cart into a price-locked order.
"""
from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Callable
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from ordering.config import CheckoutConfig
from ordering.domain.cart import CartLine, CartSnapshot
from ordering.domain.errors import ConflictError, DocumentNumberTaken, EmptyCart, ValidationError
from ordering.domain.numbering import allocate_number
from ordering.domain.order import CheckoutAdjustments, Order, OrderItem
from ordering.domain.pricing import PriceType, resolve_unit_price
from ordering.infra.locks import cart_lock
from ordering.infra.pii_masker import mask_uuid
from ordering.infra.repositories import (
    AddressRepository,
    CartRepository,
    CatalogRepository,
    OrderRepository,
)
from ordering.services.notifications import NotificationService


logger = logging.getLogger(__name__)


class CheckoutService:
    """Service for cart and checkout operations."""

    def __init__(
        self,
        config: CheckoutConfig | None = None,
        cart_repo: CartRepository | None = None,
        catalog_repo: CatalogRepository | None = None,
        address_repo: AddressRepository | None = None,
        order_repo: OrderRepository | None = None,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] = timezone.now,
        rng: random.Random | None = None,
    ):
        self.config = config or CheckoutConfig.from_settings()
        self.cart_repo = cart_repo or CartRepository()
        self.catalog_repo = catalog_repo or CatalogRepository()
        self.address_repo = address_repo or AddressRepository()
        self.order_repo = order_repo or OrderRepository()
        self.notifications = notifications or NotificationService()
        self.clock = clock
        self.rng = rng

    @transaction.atomic
    def add_to_cart(
        self,
        actor_id: UUID,
        catalog_item_id: UUID,
        quantity: int,
        price_type: str | PriceType = PriceType.STANDARD,
    ) -> CartSnapshot:
        """Add units of a catalog item; the merged line must meet the item minimum."""
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        try:
            price_type = PriceType(price_type)
        except ValueError:
            raise ValidationError(f"Invalid price type: {price_type}") from None

        item = self.catalog_repo.get_item(catalog_item_id)
        in_cart = self.cart_repo.quantity_in_cart(actor_id, catalog_item_id, price_type)
        resolve_unit_price(item, in_cart + quantity, price_type)
        return self.cart_repo.add_line(actor_id, catalog_item_id, quantity, price_type)

    def get_cart(self, actor_id: UUID) -> CartSnapshot:
        return self.cart_repo.snapshot(actor_id)

    def checkout(
        self,
        actor_id: UUID,
        shipping_address_id: UUID,
        payment_method: str,
        adjustments: CheckoutAdjustments | None = None,
        customer_notes: str = "",
        shipping_method: str = "",
    ) -> Order:
        """
        Place an order from the actor's cart in one unit of work.

        The cart lines are read and deleted inside the same transaction, so a
        concurrent second checkout of the same cart sees an empty cart.
        Prices are re-resolved from the catalog; nothing the client cached is
        trusted. Notifications are queued only after commit.
        """
        if not payment_method or not payment_method.strip():
            raise ValidationError("Payment method is required")
        adjustments = adjustments or CheckoutAdjustments()
        now = self.clock()

        with transaction.atomic(), cart_lock(actor_id):
            snapshot = self.cart_repo.snapshot(actor_id, lock=True)
            if snapshot.is_empty:
                raise EmptyCart("Cart is empty")
            self.address_repo.get_address(shipping_address_id, actor_id)

            items = [self._price_line(line) for line in snapshot.lines]
            for _ in range(self.config.number_attempts):
                order = Order.place(
                    customer_id=actor_id,
                    order_number=allocate_number(
                        self.config.order_number_prefix,
                        now,
                        self.order_repo.number_exists,
                        attempts=self.config.number_attempts,
                        rng=self.rng,
                    ),
                    items=items,
                    shipping_address_id=shipping_address_id,
                    payment_method=payment_method.strip(),
                    adjustments=adjustments,
                    now=now,
                    shipping_method=shipping_method,
                    customer_notes=customer_notes,
                )
                try:
                    self.order_repo.create(order)
                    break
                except DocumentNumberTaken:
                    logger.warning("order_number_collision", extra={"order_number": order.order_number})
            else:
                raise ConflictError("Could not allocate a free order number")
            self.cart_repo.delete_lines(snapshot)
            self.notifications.schedule(order.pull_events())

        logger.info(
            "order_placed",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": mask_uuid(str(actor_id)),
                "items_count": len(order.items),
                "final_amount": str(order.final_amount),
            },
        )
        return order

    def _price_line(self, line: CartLine) -> OrderItem:
        item = self.catalog_repo.get_item(line.catalog_item_id)
        unit_price = resolve_unit_price(item, line.quantity, line.price_type)
        return OrderItem(
            catalog_item_id=item.id,
            name=item.name,
            quantity=line.quantity,
            unit_price=unit_price,
        )
