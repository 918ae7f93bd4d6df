"""
Application services for invoices.
"""
from __future__ import annotations

import logging
import random
from datetime import date, datetime
from typing import Callable
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from ordering.config import CheckoutConfig
from ordering.domain.errors import ConflictError, DocumentNumberTaken, InvoiceAlreadyExists
from ordering.domain.invoice import Invoice, parse_invoice_status
from ordering.domain.numbering import allocate_number
from ordering.infra.repositories import InvoiceRepository, OrderRepository
from ordering.services.paging import check_page


logger = logging.getLogger(__name__)


class InvoiceService:
    """Create, update and read invoices. Invoices never follow order status."""

    def __init__(
        self,
        config: CheckoutConfig | None = None,
        invoice_repo: InvoiceRepository | None = None,
        order_repo: OrderRepository | None = None,
        clock: Callable[[], datetime] = timezone.now,
        rng: random.Random | None = None,
    ):
        self.config = config or CheckoutConfig.from_settings()
        self.invoice_repo = invoice_repo or InvoiceRepository()
        self.order_repo = order_repo or OrderRepository()
        self.clock = clock
        self.rng = rng

    def create_invoice(
        self,
        order_id: UUID,
        due_date: date | None = None,
        notes: str = "",
        payment_method: str = "",
        payment_reference: str = "",
    ) -> Invoice:
        """Issue the invoice for an order; amounts are copied from the order now."""
        now = self.clock()
        with transaction.atomic():
            order = self.order_repo.get(order_id, for_update=True)
            if self.invoice_repo.exists_for_order(order.id):
                raise InvoiceAlreadyExists(f"Invoice already exists for order {order.order_number}")

            for _ in range(self.config.number_attempts):
                invoice = Invoice.issue(
                    order_id=order.id,
                    invoice_number=allocate_number(
                        self.config.invoice_number_prefix,
                        now,
                        self.invoice_repo.number_exists,
                        attempts=self.config.number_attempts,
                        rng=self.rng,
                    ),
                    amount=order.final_amount,
                    tax_amount=order.tax_amount,
                    now=now,
                    due_in_days=self.config.invoice_due_days,
                    due_date=due_date,
                    payment_method=payment_method,
                    payment_reference=payment_reference,
                    notes=notes,
                )
                try:
                    self.invoice_repo.create(invoice)
                    break
                except DocumentNumberTaken:
                    logger.warning("invoice_number_collision", extra={"invoice_number": invoice.invoice_number})
            else:
                raise ConflictError("Could not allocate a free invoice number")

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "order_id": str(order.id),
            },
        )
        return invoice

    def update_invoice(
        self,
        invoice_id: UUID,
        status: str | None = None,
        payment_method: str | None = None,
        payment_reference: str | None = None,
        notes: str | None = None,
    ) -> Invoice:
        parsed_status = parse_invoice_status(status) if status else None
        with transaction.atomic():
            invoice = self.invoice_repo.get(invoice_id, for_update=True)
            invoice.update(
                self.clock(),
                status=parsed_status,
                payment_method=payment_method,
                payment_reference=payment_reference,
                notes=notes,
            )
            self.invoice_repo.save(invoice)

        logger.info(
            "invoice_updated",
            extra={"invoice_id": str(invoice.id), "status": invoice.status.value},
        )
        return invoice

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self.invoice_repo.get(invoice_id)

    def list_invoices(
        self,
        status: str | None = None,
        order_id: UUID | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Invoice]:
        check_page(limit, offset)
        return self.invoice_repo.find(
            status=parse_invoice_status(status) if status else None,
            order_id=order_id,
            limit=limit,
            offset=offset,
        )
