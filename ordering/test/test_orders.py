"""
Integration tests for order lifecycle and invoices.
"""
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from django.test import TestCase

from ordering.domain.actor import Actor, Role
from ordering.domain.errors import (
    InvalidStatusTransition,
    InvoiceAlreadyExists,
    InvoiceNotFound,
    OrderNotFound,
    ValidationError,
)
from ordering.domain.invoice import InvoiceStatus
from ordering.domain.order import OrderStatus, PaymentStatus
from ordering.infra.models import InvoiceORM, OrderItemORM, OrderORM
from ordering.infra.notification_queue import NotificationTaskORM
from ordering.infra.repositories import InvoiceRepository
from ordering.services.invoices import InvoiceService
from ordering.services.orders import OrderLifecycleService
from ordering.test.factories import FrozenClock, SequenceRng, make_admin, make_customer, place_order


class OrderLifecycleServiceTest(TestCase):
    """Tests for OrderLifecycleService."""

    def setUp(self):
        self.customer = make_customer()
        self.order = place_order(self.customer, quantity=3)
        self.clock = FrozenClock()
        self.service = OrderLifecycleService(clock=self.clock)

    def _queued_types(self):
        return sorted(
            NotificationTaskORM.objects
            .filter(order_id=self.order.id)
            .values_list("type", flat=True)
        )

    def test_full_fulfilment_flow(self):
        """Test pending to delivered with dates and auto-payment persisted."""
        self.service.update_status(self.order.id, "processing")
        self.clock.advance(timedelta(hours=2))
        self.service.update_status(self.order.id, "shipped", tracking_number="TRK-9")
        self.clock.advance(timedelta(days=2))
        order = self.service.update_status(self.order.id, "delivered")

        self.assertEqual(order.status, OrderStatus.DELIVERED)
        self.assertEqual(order.payment_status, PaymentStatus.PAID)

        order_orm = OrderORM.objects.get(id=self.order.id)
        self.assertEqual(order_orm.status, "delivered")
        self.assertEqual(order_orm.payment_status, "paid")
        self.assertEqual(order_orm.tracking_number, "TRK-9")
        self.assertEqual(order_orm.delivered_date, self.clock.now)
        self.assertEqual(order_orm.payment_date, self.clock.now)
        self.assertLess(order_orm.shipped_date, order_orm.delivered_date)

    def test_invalid_transition_leaves_order_unchanged(self):
        """Test that pending to shipped fails and nothing is written."""
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(InvalidStatusTransition):
                self.service.update_status(self.order.id, "shipped")

        order_orm = OrderORM.objects.get(id=self.order.id)
        self.assertEqual(order_orm.status, "pending")
        self.assertIsNone(order_orm.shipped_date)
        self.assertEqual(self._queued_types(), [])

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.service.update_status(self.order.id, "lost")

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            self.service.update_status(uuid4(), "processing")

    def test_amounts_never_rewritten(self):
        """Test that status changes leave amounts and lines untouched."""
        before = OrderORM.objects.values("subtotal", "final_amount").get(id=self.order.id)
        self.service.update_status(self.order.id, "processing")
        self.service.update_payment_status(self.order.id, "paid")
        after = OrderORM.objects.values("subtotal", "final_amount").get(id=self.order.id)
        self.assertEqual(before, after)

    def test_refund_returns_order_and_items(self):
        """Test that a refund forces the order and its lines to returned."""
        self.service.update_status(self.order.id, "processing")
        order = self.service.update_payment_status(self.order.id, "refunded", notes="damaged")

        self.assertEqual(order.status, OrderStatus.RETURNED)
        order_orm = OrderORM.objects.get(id=self.order.id)
        self.assertEqual(order_orm.status, "returned")
        self.assertEqual(order_orm.payment_status, "refunded")
        self.assertEqual(order_orm.admin_notes, "damaged")
        self.assertEqual(
            set(OrderItemORM.objects.filter(order_id=self.order.id).values_list("status", flat=True)),
            {"returned"},
        )

    def test_cancel_cascades_to_items(self):
        self.service.update_status(self.order.id, "cancelled")
        self.assertEqual(
            set(OrderItemORM.objects.filter(order_id=self.order.id).values_list("status", flat=True)),
            {"cancelled"},
        )

    def test_status_notifications(self):
        """Test that customers hear about shipped but not processing."""
        with self.captureOnCommitCallbacks(execute=True):
            self.service.update_status(self.order.id, "processing")
        self.assertEqual(self._queued_types(), [])

        with self.captureOnCommitCallbacks(execute=True):
            self.service.update_status(self.order.id, "shipped", tracking_number="TRK-1")
        self.assertEqual(self._queued_types(), ["order_status_update"])

        task = NotificationTaskORM.objects.get(order_id=self.order.id)
        self.assertIn("shipped", task.subject)
        self.assertIn("TRK-1", task.html_body)

    def test_same_status_does_not_notify(self):
        """Test that re-setting shipped with new notes does not notify again."""
        self.service.update_status(self.order.id, "processing")
        self.service.update_status(self.order.id, "shipped")
        with self.captureOnCommitCallbacks(execute=True):
            self.service.update_status(self.order.id, "shipped", notes="left depot")
        self.assertEqual(self._queued_types(), [])
        self.assertEqual(OrderORM.objects.get(id=self.order.id).admin_notes, "left depot")

    def test_payment_notifications(self):
        """Test paid and failed payment notifications."""
        make_admin()
        with self.captureOnCommitCallbacks(execute=True):
            self.service.update_payment_status(self.order.id, "failed", notes="card declined")
        self.assertEqual(self._queued_types(), ["payment_failed", "payment_failed_admin_alert"])
        failed = NotificationTaskORM.objects.get(order_id=self.order.id, type="payment_failed")
        self.assertIn("card declined", failed.html_body)

        with self.captureOnCommitCallbacks(execute=True):
            self.service.update_payment_status(self.order.id, "paid", payment_reference="ch_42")
        self.assertIn("payment_success", self._queued_types())
        self.assertEqual(OrderORM.objects.get(id=self.order.id).payment_reference, "ch_42")

    def test_customer_cancel_own_pending(self):
        """Test that customers may cancel their own pending orders."""
        actor = Actor(id=self.customer.id)
        order = self.service.cancel_order(actor, self.order.id)
        self.assertEqual(order.status, OrderStatus.CANCELLED)

    def test_customer_cancel_processing_rejected(self):
        self.service.update_status(self.order.id, "processing")
        with self.assertRaises(InvalidStatusTransition):
            self.service.cancel_order(Actor(id=self.customer.id), self.order.id)

    def test_customer_cancel_foreign_order(self):
        """Test that another customer's order looks missing."""
        stranger = make_customer(name="Stranger", email="stranger@example.com")
        with self.assertRaises(OrderNotFound):
            self.service.cancel_order(Actor(id=stranger.id), self.order.id)
        self.assertEqual(OrderORM.objects.get(id=self.order.id).status, "pending")

    def test_get_order_visibility(self):
        stranger = Actor(id=uuid4())
        admin = Actor(id=uuid4(), role=Role.ADMIN)
        self.assertEqual(self.service.get_order(self.order.id, Actor(id=self.customer.id)).id, self.order.id)
        self.assertEqual(self.service.get_order(self.order.id, admin).id, self.order.id)
        with self.assertRaises(OrderNotFound):
            self.service.get_order(self.order.id, stranger)

    def test_list_orders(self):
        """Test customer listing and admin filters."""
        place_order(make_customer(name="Other", email="other@example.com"))
        self.service.update_status(self.order.id, "processing")

        self.assertEqual([o.id for o in self.service.list_orders(self.customer.id)], [self.order.id])
        self.assertEqual(len(self.service.list_all_orders()), 2)
        self.assertEqual(
            [o.id for o in self.service.list_all_orders(status="processing")],
            [self.order.id],
        )
        self.assertEqual(len(self.service.list_all_orders(payment_status="paid")), 0)

    def test_page_limits(self):
        with self.assertRaises(ValidationError):
            self.service.list_orders(self.customer.id, limit=0)
        with self.assertRaises(ValidationError):
            self.service.list_all_orders(limit=101)
        with self.assertRaises(ValidationError):
            self.service.list_all_orders(offset=-1)


class StaleInvoiceNumberRepository(InvoiceRepository):
    """The first lookup of a number misses it, like an invoice racing another."""

    def __init__(self):
        self.looked_up = set()

    def number_exists(self, invoice_number):
        if invoice_number not in self.looked_up:
            self.looked_up.add(invoice_number)
            return False
        return super().number_exists(invoice_number)


class InvoiceServiceTest(TestCase):
    """Tests for InvoiceService."""

    def setUp(self):
        self.order = place_order(quantity=12, base_price="10.00", tiers=[(10, "8.00")])
        self.clock = FrozenClock()
        self.service = InvoiceService(clock=self.clock)

    def test_create_copies_order_amounts(self):
        """Test that the invoice amount is the order final amount."""
        invoice = self.service.create_invoice(self.order.id)

        self.assertEqual(invoice.amount, Decimal("96.00"))
        self.assertEqual(invoice.status, InvoiceStatus.PENDING)
        self.assertEqual(invoice.issue_date, self.clock.now)
        self.assertEqual(invoice.due_date, date(2024, 4, 13))
        self.assertRegex(invoice.invoice_number, r"^INV-20240314-\d{6}$")
        self.assertEqual(InvoiceORM.objects.get(id=invoice.id).amount, Decimal("96.00"))

    def test_duplicate_invoice(self):
        """Test that an order has at most one invoice."""
        self.service.create_invoice(self.order.id)
        with self.assertRaises(InvoiceAlreadyExists):
            self.service.create_invoice(self.order.id)
        self.assertEqual(InvoiceORM.objects.filter(order_id=self.order.id).count(), 1)

    def test_invoice_number_taken_concurrently(self):
        """Test that losing the unique invoice number race picks a new number."""
        other_order = place_order(make_customer(name="Other", email="other@example.com"))
        InvoiceService(clock=self.clock, rng=SequenceRng(111111)).create_invoice(other_order.id)
        service = InvoiceService(
            invoice_repo=StaleInvoiceNumberRepository(),
            clock=self.clock,
            rng=SequenceRng(111111, 222222),
        )

        invoice = service.create_invoice(self.order.id)

        self.assertEqual(invoice.invoice_number, "INV-20240314-222222")
        self.assertEqual(InvoiceORM.objects.get(order_id=self.order.id).invoice_number, "INV-20240314-222222")

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            self.service.create_invoice(uuid4())

    def test_paid_sets_payment_date(self):
        invoice = self.service.create_invoice(self.order.id, due_date=date(2024, 3, 30))
        self.clock.advance(timedelta(days=3))
        updated = self.service.update_invoice(invoice.id, status="paid", payment_reference="bank-1")

        self.assertEqual(updated.status, InvoiceStatus.PAID)
        self.assertEqual(updated.payment_date, self.clock.now)
        invoice_orm = InvoiceORM.objects.get(id=invoice.id)
        self.assertEqual(invoice_orm.payment_reference, "bank-1")
        self.assertEqual(invoice_orm.due_date, date(2024, 3, 30))

    def test_invoice_independent_of_order_status(self):
        """Test that cancelling the order leaves its invoice alone."""
        invoice = self.service.create_invoice(self.order.id)
        OrderLifecycleService().update_status(self.order.id, "cancelled")
        self.assertEqual(self.service.get_invoice(invoice.id).status, InvoiceStatus.PENDING)

    def test_invalid_status(self):
        invoice = self.service.create_invoice(self.order.id)
        with self.assertRaises(ValidationError):
            self.service.update_invoice(invoice.id, status="settled")

    def test_unknown_invoice(self):
        with self.assertRaises(InvoiceNotFound):
            self.service.get_invoice(uuid4())

    def test_list_invoices(self):
        invoice = self.service.create_invoice(self.order.id)
        self.assertEqual([i.id for i in self.service.list_invoices()], [invoice.id])
        self.assertEqual([i.id for i in self.service.list_invoices(order_id=self.order.id)], [invoice.id])
        self.assertEqual(self.service.list_invoices(status="paid"), [])
