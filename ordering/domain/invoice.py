"""
Domain model for invoices.

An invoice copies amounts from its order once, at creation, and then lives
its own lifecycle. Nothing keeps it in sync with the order afterwards.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from ordering.domain.errors import ValidationError


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


def parse_invoice_status(value: str | InvoiceStatus) -> InvoiceStatus:
    try:
        return InvoiceStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid invoice status: {value}") from None


class Invoice:
    """Billing document for one order."""

    def __init__(
        self,
        order_id: UUID,
        invoice_number: str,
        issue_date: datetime,
        due_date: date,
        amount: Decimal,
        tax_amount: Decimal,
        id: UUID | None = None,
        status: InvoiceStatus = InvoiceStatus.PENDING,
        payment_method: str = "",
        payment_reference: str = "",
        notes: str = "",
        payment_date: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.order_id = order_id
        self.invoice_number = invoice_number
        self.issue_date = issue_date
        self.due_date = due_date
        self.amount = amount
        self.tax_amount = tax_amount
        self.status = status
        self.payment_method = payment_method
        self.payment_reference = payment_reference
        self.notes = notes
        self.payment_date = payment_date

    @classmethod
    def issue(
        cls,
        order_id: UUID,
        invoice_number: str,
        amount: Decimal,
        tax_amount: Decimal,
        now: datetime,
        due_in_days: int,
        due_date: date | None = None,
        payment_method: str = "",
        payment_reference: str = "",
        notes: str = "",
    ) -> Invoice:
        if due_date is None:
            due_date = (now + timedelta(days=due_in_days)).date()
        return cls(
            order_id=order_id,
            invoice_number=invoice_number,
            issue_date=now,
            due_date=due_date,
            amount=amount,
            tax_amount=tax_amount,
            payment_method=payment_method,
            payment_reference=payment_reference,
            notes=notes,
        )

    def update(
        self,
        now: datetime,
        status: InvoiceStatus | None = None,
        payment_method: str | None = None,
        payment_reference: str | None = None,
        notes: str | None = None,
    ) -> None:
        """Apply a partial update; empty values leave fields untouched."""
        if status is not None:
            self.status = status
            if status == InvoiceStatus.PAID and self.payment_date is None:
                self.payment_date = now
        if payment_method:
            self.payment_method = payment_method
        if payment_reference:
            self.payment_reference = payment_reference
        if notes:
            self.notes = notes
