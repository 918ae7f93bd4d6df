"""
Integration tests for cart and checkout.
"""
import random
from decimal import Decimal
from uuid import uuid4

from django.test import TestCase

from ordering.domain.errors import (
    AddressNotFound,
    BelowMinimumQuantity,
    CatalogItemNotFound,
    ConflictError,
    EmptyCart,
    ValidationError,
)
from ordering.domain.order import CheckoutAdjustments, OrderStatus, PaymentStatus
from ordering.domain.pricing import PriceType
from ordering.infra.models import CartItemORM, CatalogItemORM, OrderItemORM, OrderORM
from ordering.infra.notification_queue import NotificationTaskORM
from ordering.infra.repositories import CartRepository, OrderRepository
from ordering.services.checkout import CheckoutService
from ordering.test.factories import (
    FrozenClock,
    SequenceRng,
    make_address,
    make_admin,
    make_customer,
    make_item,
    put_in_cart,
)


class FailingCartRepository(CartRepository):
    """Fails after the order row has been written."""

    def delete_lines(self, snapshot):
        raise RuntimeError("storage unavailable")


class StaleOrderNumberRepository(OrderRepository):
    """The first lookup of a number misses it, like a checkout racing another."""

    def __init__(self):
        self.looked_up = set()

    def number_exists(self, order_number):
        if order_number not in self.looked_up:
            self.looked_up.add(order_number)
            return False
        return super().number_exists(order_number)


class CheckoutServiceTest(TestCase):
    """Tests for CheckoutService.checkout."""

    def setUp(self):
        self.customer = make_customer()
        self.address = make_address(self.customer)
        self.item = make_item(base_price="10.00", tiers=[(10, "8.00")])
        self.clock = FrozenClock()
        self.service = CheckoutService(clock=self.clock, rng=random.Random(11))

    def _checkout(self, **kwargs):
        kwargs.setdefault("shipping_address_id", self.address.id)
        kwargs.setdefault("payment_method", "card")
        return self.service.checkout(self.customer.id, **kwargs)

    def test_tier_price_and_totals(self):
        """Test that 12 units at the 10+ tier price give the expected totals."""
        put_in_cart(self.customer, self.item, 12)

        order = self._checkout(adjustments=CheckoutAdjustments(
            tax=Decimal("10.00"),
            shipping=Decimal("5.00"),
            discount=Decimal("0.00"),
        ))

        self.assertEqual(order.subtotal, Decimal("96.00"))
        self.assertEqual(order.final_amount, Decimal("111.00"))
        self.assertEqual(order.items[0].unit_price, Decimal("8.00"))
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.payment_status, PaymentStatus.PENDING)

        order_orm = OrderORM.objects.get(id=order.id)
        self.assertEqual(order_orm.final_amount, Decimal("111.00"))
        self.assertEqual(order_orm.order_date, self.clock.now)
        self.assertRegex(order_orm.order_number, r"^ORD-20240314-\d{6}$")
        item_orm = OrderItemORM.objects.get(order=order_orm)
        self.assertEqual(item_orm.unit_price, Decimal("8.00"))
        self.assertEqual(item_orm.total_amount, Decimal("96.00"))

    def test_cart_emptied(self):
        """Test that a successful checkout empties the cart."""
        put_in_cart(self.customer, self.item, 2)
        self._checkout()
        self.assertFalse(CartItemORM.objects.filter(cart__customer=self.customer).exists())

    def test_second_checkout_sees_empty_cart(self):
        """Test that the same cart cannot be checked out twice."""
        put_in_cart(self.customer, self.item, 2)
        self._checkout()
        with self.assertRaises(EmptyCart):
            self._checkout()
        self.assertEqual(OrderORM.objects.count(), 1)

    def test_empty_cart(self):
        """Test that checkout of an empty cart fails without creating an order."""
        with self.assertRaises(EmptyCart):
            self._checkout()
        self.assertEqual(OrderORM.objects.count(), 0)

    def test_foreign_address_not_found(self):
        """Test that another customer's address is treated as missing."""
        other = make_customer(name="Other", email="other@example.com")
        put_in_cart(self.customer, self.item, 2)

        with self.assertRaises(AddressNotFound):
            self._checkout(shipping_address_id=make_address(other).id)

        self.assertEqual(OrderORM.objects.count(), 0)
        self.assertEqual(CartItemORM.objects.filter(cart__customer=self.customer).count(), 1)

    def test_payment_method_required(self):
        put_in_cart(self.customer, self.item, 2)
        with self.assertRaises(ValidationError):
            self._checkout(payment_method="  ")

    def test_below_minimum_quantity_rejects_checkout(self):
        """Test that a line under the item minimum fails the whole checkout."""
        bulk = make_item(name="Bulk", minimum_order_quantity=5)
        put_in_cart(self.customer, self.item, 2)
        put_in_cart(self.customer, bulk, 3)

        with self.assertRaises(BelowMinimumQuantity):
            self._checkout()

        self.assertEqual(OrderORM.objects.count(), 0)
        self.assertEqual(CartItemORM.objects.filter(cart__customer=self.customer).count(), 2)

    def test_inactive_item_rejects_checkout(self):
        put_in_cart(self.customer, self.item, 2)
        CatalogItemORM.objects.filter(id=self.item.id).update(is_active=False)
        with self.assertRaises(CatalogItemNotFound):
            self._checkout()

    def test_failure_rolls_back_order(self):
        """Test that a failure after the order insert leaves no order and keeps the cart."""
        put_in_cart(self.customer, self.item, 2)
        service = CheckoutService(cart_repo=FailingCartRepository(), clock=self.clock)

        with self.assertRaises(RuntimeError):
            service.checkout(self.customer.id, self.address.id, "card")

        self.assertEqual(OrderORM.objects.count(), 0)
        self.assertEqual(OrderItemORM.objects.count(), 0)
        self.assertEqual(CartItemORM.objects.filter(cart__customer=self.customer).count(), 1)

    def test_order_number_taken_concurrently(self):
        """Test that losing the unique order number race picks a new number."""
        put_in_cart(self.customer, self.item, 2)
        CheckoutService(clock=self.clock, rng=SequenceRng(111111)).checkout(
            self.customer.id, self.address.id, "card",
        )
        put_in_cart(self.customer, self.item, 2)
        service = CheckoutService(
            order_repo=StaleOrderNumberRepository(),
            clock=self.clock,
            rng=SequenceRng(111111, 222222),
        )

        order = service.checkout(self.customer.id, self.address.id, "card")

        self.assertEqual(order.order_number, "ORD-20240314-222222")
        self.assertEqual(
            sorted(OrderORM.objects.values_list("order_number", flat=True)),
            ["ORD-20240314-111111", "ORD-20240314-222222"],
        )
        self.assertFalse(CartItemORM.objects.filter(cart__customer=self.customer).exists())

    def test_order_number_attempts_exhausted(self):
        put_in_cart(self.customer, self.item, 2)
        CheckoutService(clock=self.clock, rng=SequenceRng(111111)).checkout(
            self.customer.id, self.address.id, "card",
        )
        put_in_cart(self.customer, self.item, 2)
        service = CheckoutService(
            order_repo=StaleOrderNumberRepository(),
            clock=self.clock,
            rng=SequenceRng(*[111111] * 10),
        )

        with self.assertRaises(ConflictError):
            service.checkout(self.customer.id, self.address.id, "card")
        self.assertEqual(OrderORM.objects.count(), 1)

    def test_price_locked_at_checkout(self):
        """Test that later catalog price changes do not touch placed orders."""
        put_in_cart(self.customer, self.item, 2)
        order = self._checkout()

        CatalogItemORM.objects.filter(id=self.item.id).update(base_price=Decimal("99.00"))

        item_orm = OrderItemORM.objects.get(order_id=order.id)
        self.assertEqual(item_orm.unit_price, Decimal("10.00"))
        self.assertEqual(OrderORM.objects.get(id=order.id).subtotal, Decimal("20.00"))

    def test_wholesale_line(self):
        wholesale = make_item(name="Crate", base_price="20.00", wholesale_price="15.00")
        put_in_cart(self.customer, wholesale, 2, price_type="wholesale")
        order = self._checkout()
        self.assertEqual(order.items[0].unit_price, Decimal("15.00"))

    def test_notifications_queued_after_commit(self):
        """Test that confirmation and admin alert are queued once the order commits."""
        make_admin()
        put_in_cart(self.customer, self.item, 12)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            order = self._checkout()
            self.assertEqual(NotificationTaskORM.objects.count(), 0)

        self.assertEqual(len(callbacks), 1)
        tasks = {t.type: t for t in NotificationTaskORM.objects.filter(order_id=order.id)}
        self.assertEqual(set(tasks), {"order_confirmation", "order_admin_alert"})

        confirmation = tasks["order_confirmation"]
        self.assertEqual(confirmation.recipient_email, "customer@example.com")
        self.assertEqual(confirmation.status, "pending")
        self.assertEqual(confirmation.attempt_count, 0)
        self.assertIn(order.order_number, confirmation.subject)
        self.assertIn("96.00", confirmation.html_body)
        self.assertIn(order.order_number, confirmation.text_body)
        self.assertEqual(tasks["order_admin_alert"].recipient_email, "admin@example.com")

    def test_no_notifications_when_checkout_fails(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(EmptyCart):
                self._checkout()
        self.assertEqual(callbacks, [])
        self.assertEqual(NotificationTaskORM.objects.count(), 0)

    def test_customer_without_email_still_checks_out(self):
        """Test that a missing customer address skips the confirmation only."""
        customer = make_customer(name="No Mail", email="")
        address = make_address(customer)
        put_in_cart(customer, self.item, 1)

        with self.captureOnCommitCallbacks(execute=True):
            order = self.service.checkout(customer.id, address.id, "card")

        self.assertTrue(OrderORM.objects.filter(id=order.id).exists())
        self.assertFalse(NotificationTaskORM.objects.filter(type="order_confirmation").exists())


class CartServiceTest(TestCase):
    """Tests for CheckoutService.add_to_cart."""

    def setUp(self):
        self.customer = make_customer()
        self.service = CheckoutService(clock=FrozenClock())

    def test_merges_lines(self):
        """Test that adding the same item twice merges the quantities."""
        item = make_item()
        self.service.add_to_cart(self.customer.id, item.id, 2)
        cart = self.service.add_to_cart(self.customer.id, item.id, 3)
        self.assertEqual(len(cart.lines), 1)
        self.assertEqual(cart.lines[0].quantity, 5)

    def test_price_types_kept_apart(self):
        item = make_item(wholesale_price="8.00")
        self.service.add_to_cart(self.customer.id, item.id, 2)
        cart = self.service.add_to_cart(self.customer.id, item.id, 2, PriceType.WHOLESALE)
        self.assertEqual(len(cart.lines), 2)

    def test_minimum_checked_on_merged_quantity(self):
        """Test that the minimum applies to the merged line quantity."""
        item = make_item(minimum_order_quantity=4)
        with self.assertRaises(BelowMinimumQuantity):
            self.service.add_to_cart(self.customer.id, item.id, 3)
        self.assertTrue(self.service.get_cart(self.customer.id).is_empty)

    def test_unknown_item(self):
        with self.assertRaises(CatalogItemNotFound):
            self.service.add_to_cart(self.customer.id, uuid4(), 1)

    def test_invalid_price_type(self):
        item = make_item()
        with self.assertRaises(ValidationError):
            self.service.add_to_cart(self.customer.id, item.id, 1, "retail")
