"""
Integration tests for GraphQL API.
"""
import json
from uuid import uuid4

from django.test import TestCase

from ordering.infra.models import IdempotencyKey, OrderORM
from ordering.infra.notification_queue import NotificationQueueRepository, NotificationTaskORM
from ordering.test.factories import (
    FIXED_NOW,
    make_address,
    make_admin,
    make_customer,
    make_item,
    new_notification,
    place_order,
)


ADD_TO_CART = """
    mutation AddToCart($input: AddToCartInput!) {
        addToCart(input: $input) {
            lines { catalogItemId quantity priceType }
        }
    }
"""

CHECKOUT = """
    mutation Checkout($input: CheckoutInput!) {
        checkout(input: $input) {
            id
            orderNumber
            status
            paymentStatus
            subtotal
            finalAmount
            items { name quantity unitPrice totalAmount status }
            shippingAddress { city }
        }
    }
"""

UPDATE_STATUS = """
    mutation UpdateStatus($input: UpdateOrderStatusInput!) {
        updateOrderStatus(input: $input) { id status paymentStatus trackingNumber }
    }
"""


class GraphQLAPITest(TestCase):
    """Integration tests for GraphQL API."""

    def setUp(self):
        """Set up test data."""
        self.customer = make_customer()
        self.admin = make_admin()
        self.address = make_address(self.customer)
        self.item = make_item(base_price="10.00", tiers=[(10, "8.00")])

    def _post(self, query, variables=None, user=None, **headers):
        if user is not None:
            headers["X-User-ID"] = str(user.id)
        return self.client.post(
            "/graphql/",
            data={"query": query, "variables": variables or {}},
            content_type="application/json",
            headers=headers,
        )

    def _checkout_input(self, **overrides):
        checkout_input = {
            "shippingAddressId": str(self.address.id),
            "paymentMethod": "card",
            "taxAmount": "10.00",
            "shippingAmount": "5.00",
        }
        checkout_input.update(overrides)
        return {"input": checkout_input}

    def _error_code(self, response):
        return response.json()["errors"][0]["extensions"]["code"]

    def test_add_to_cart_and_checkout(self):
        """Test the cart to order flow over GraphQL."""
        response = self._post(
            ADD_TO_CART,
            {"input": {"catalogItemId": str(self.item.id), "quantity": 12}},
            user=self.customer,
        )
        self.assertEqual(response.status_code, 200)
        lines = response.json()["data"]["addToCart"]["lines"]
        self.assertEqual(lines, [{"catalogItemId": str(self.item.id), "quantity": 12, "priceType": "standard"}])

        response = self._post(CHECKOUT, self._checkout_input(), user=self.customer)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertNotIn("errors", data)
        order = data["data"]["checkout"]
        self.assertEqual(order["status"], "pending")
        self.assertEqual(order["paymentStatus"], "pending")
        self.assertEqual(order["subtotal"], "96.00")
        self.assertEqual(order["finalAmount"], "111.00")
        self.assertEqual(order["items"], [{
            "name": "Widget",
            "quantity": 12,
            "unitPrice": "8.00",
            "totalAmount": "96.00",
            "status": "active",
        }])
        self.assertEqual(order["shippingAddress"], {"city": "London"})

    def test_checkout_empty_cart(self):
        response = self._post(CHECKOUT, self._checkout_input(), user=self.customer)
        self.assertEqual(self._error_code(response), "EMPTY_CART")

    def test_below_minimum_quantity(self):
        item = make_item(name="Bulk", minimum_order_quantity=6)
        response = self._post(
            ADD_TO_CART,
            {"input": {"catalogItemId": str(item.id), "quantity": 5}},
            user=self.customer,
        )
        self.assertEqual(self._error_code(response), "BELOW_MINIMUM_QUANTITY")

    def test_unauthenticated(self):
        """Test that requests without a known user are rejected."""
        response = self._post("{ cart { customerId } }")
        self.assertEqual(self._error_code(response), "UNAUTHENTICATED")

        response = self._post("{ cart { customerId } }", **{"X-User-ID": str(uuid4())})
        self.assertEqual(self._error_code(response), "UNAUTHENTICATED")

    def test_admin_operations_forbidden_for_customers(self):
        """Test that customers cannot change order status."""
        order = place_order(self.customer)
        response = self._post(
            UPDATE_STATUS,
            {"input": {"orderId": str(order.id), "status": "processing"}},
            user=self.customer,
        )
        self.assertEqual(self._error_code(response), "FORBIDDEN")
        self.assertEqual(OrderORM.objects.get(id=order.id).status, "pending")

    def test_admin_status_update(self):
        order = place_order(self.customer)
        self._post(UPDATE_STATUS, {"input": {"orderId": str(order.id), "status": "processing"}}, user=self.admin)
        response = self._post(
            UPDATE_STATUS,
            {"input": {"orderId": str(order.id), "status": "shipped", "trackingNumber": "TRK-7"}},
            user=self.admin,
        )
        self.assertEqual(
            response.json()["data"]["updateOrderStatus"],
            {"id": str(order.id), "status": "shipped", "paymentStatus": "pending", "trackingNumber": "TRK-7"},
        )

    def test_invalid_transition(self):
        """Test that pending to shipped is refused with a stable code."""
        order = place_order(self.customer)
        response = self._post(
            UPDATE_STATUS,
            {"input": {"orderId": str(order.id), "status": "shipped"}},
            user=self.admin,
        )
        self.assertEqual(self._error_code(response), "INVALID_STATUS_TRANSITION")
        self.assertEqual(OrderORM.objects.get(id=order.id).status, "pending")

    def test_foreign_order_not_found(self):
        """Test that customers cannot read other customers' orders."""
        order = place_order(self.customer)
        stranger = make_customer(name="Stranger", email="stranger@example.com")
        query = 'query Order($id: UUID!) { order(id: $id) { orderNumber } }'

        response = self._post(query, {"id": str(order.id)}, user=stranger)
        self.assertEqual(self._error_code(response), "ORDER_NOT_FOUND")

        response = self._post(query, {"id": str(order.id)}, user=self.customer)
        self.assertEqual(response.json()["data"]["order"]["orderNumber"], order.order_number)

    def test_cancel_order(self):
        order = place_order(self.customer)
        response = self._post(
            'mutation Cancel($id: UUID!) { cancelOrder(orderId: $id) { status items { status } } }',
            {"id": str(order.id)},
            user=self.customer,
        )
        self.assertEqual(
            response.json()["data"]["cancelOrder"],
            {"status": "cancelled", "items": [{"status": "cancelled"}]},
        )

    def test_invoice_flow(self):
        """Test creating and paying an invoice."""
        order = place_order(self.customer)
        response = self._post(
            'mutation Create($input: CreateInvoiceInput!) { createInvoice(input: $input) { id amount status } }',
            {"input": {"orderId": str(order.id), "dueDate": "2024-04-30"}},
            user=self.admin,
        )
        invoice = response.json()["data"]["createInvoice"]
        self.assertEqual(invoice["amount"], "20.00")
        self.assertEqual(invoice["status"], "pending")

        response = self._post(
            'mutation Create($input: CreateInvoiceInput!) { createInvoice(input: $input) { id } }',
            {"input": {"orderId": str(order.id)}},
            user=self.admin,
        )
        self.assertEqual(self._error_code(response), "INVOICE_ALREADY_EXISTS")

        response = self._post(
            'mutation Pay($input: UpdateInvoiceInput!) { updateInvoice(input: $input) { status dueDate paymentDate } }',
            {"input": {"invoiceId": invoice["id"], "status": "paid"}},
            user=self.admin,
        )
        paid = response.json()["data"]["updateInvoice"]
        self.assertEqual(paid["status"], "paid")
        self.assertEqual(paid["dueDate"], "2024-04-30")
        self.assertIsNotNone(paid["paymentDate"])

    def test_order_stats(self):
        place_order(self.customer)
        response = self._post(
            "{ orderStats { totalOrders totalRevenue statusCounts { status count } } }",
            user=self.admin,
        )
        stats = response.json()["data"]["orderStats"]
        self.assertEqual(stats["totalOrders"], 1)
        self.assertEqual(stats["totalRevenue"], "20.00")
        self.assertIn({"status": "pending", "count": 1}, stats["statusCounts"])

    def test_notification_queries(self):
        """Test notification status, queue depth and suppression."""
        task_id = NotificationQueueRepository().add(new_notification())

        response = self._post(
            'query Status($id: UUID!) { notificationStatus(id: $id) { type status attemptCount exhausted } '
            'notificationQueueDepth }',
            {"id": str(task_id)},
            user=self.admin,
        )
        data = response.json()["data"]
        self.assertEqual(data["notificationStatus"], {
            "type": "order_confirmation",
            "status": "pending",
            "attemptCount": 0,
            "exhausted": False,
        })
        self.assertEqual(data["notificationQueueDepth"], 1)

        response = self._post(
            'mutation Suppress($id: UUID!) { suppressNotification(id: $id) { status isTerminal lastError } }',
            {"id": str(task_id)},
            user=self.admin,
        )
        self.assertEqual(response.json()["data"]["suppressNotification"], {
            "status": "failed",
            "isTerminal": True,
            "lastError": "suppressed by operator",
        })

    def test_retry_notifications(self):
        """Test single and bulk retry of exhausted notifications."""
        queue = NotificationQueueRepository()
        first = queue.add(new_notification("a@example.com"))
        second = queue.add(new_notification("b@example.com"))
        NotificationTaskORM.objects.update(status="failed", is_terminal=True, attempt_count=3)

        response = self._post(
            'mutation Retry($id: UUID!) { retryNotification(id: $id) { status attemptCount isTerminal } }',
            {"id": str(first)},
            user=self.admin,
        )
        self.assertEqual(response.json()["data"]["retryNotification"], {
            "status": "pending",
            "attemptCount": 0,
            "isTerminal": False,
        })

        response = self._post("mutation { retryFailedNotifications }", user=self.admin)
        self.assertEqual(response.json()["data"]["retryFailedNotifications"], 1)
        self.assertEqual(NotificationTaskORM.objects.get(id=second).status, "pending")

    def test_retry_sent_notification_conflict(self):
        task_id = NotificationQueueRepository().add(new_notification())
        NotificationTaskORM.objects.filter(id=task_id).update(status="sent")
        response = self._post(
            'mutation Retry($id: UUID!) { retryNotification(id: $id) { status } }',
            {"id": str(task_id)},
            user=self.admin,
        )
        self.assertEqual(self._error_code(response), "CONFLICT")

    def test_notification_list(self):
        NotificationQueueRepository().add(new_notification())
        query = "{ notifications(status: pending, limit: 5) { recipientEmail subject status } }"

        response = self._post(query, user=self.admin)
        self.assertEqual(response.json()["data"]["notifications"], [{
            "recipientEmail": "buyer@example.com",
            "subject": "Your order",
            "status": "pending",
        }])

        response = self._post(query, user=self.customer)
        self.assertEqual(self._error_code(response), "FORBIDDEN")

    def test_notification_feedback(self):
        """Test recording provider feedback for a sent notification."""
        task_id = NotificationQueueRepository().add(new_notification())
        NotificationTaskORM.objects.filter(id=task_id).update(status="sent", sent_at=FIXED_NOW)
        mutation = """
            mutation Feedback($input: NotificationFeedbackInput!) {
                recordNotificationFeedback(input: $input) { status }
            }
        """

        response = self._post(mutation, {"input": {"id": str(task_id), "event": "opened"}}, user=self.admin)
        self.assertEqual(response.json()["data"]["recordNotificationFeedback"], {"status": "opened"})

        response = self._post(
            mutation,
            {"input": {"id": str(task_id), "event": "bounced", "reason": "mailbox full"}},
            user=self.admin,
        )
        self.assertEqual(response.json()["data"]["recordNotificationFeedback"], {"status": "bounced"})
        self.assertEqual(NotificationTaskORM.objects.get(id=task_id).bounce_reason, "mailbox full")

    def test_notification_mutations_keyed_by_operation(self):
        """Test that notification mutations store their own idempotency operation."""
        task_id = NotificationQueueRepository().add(new_notification())
        self._post(
            'mutation Suppress($id: UUID!) { suppressNotification(id: $id) { status } }',
            {"id": str(task_id)},
            user=self.admin,
            **{"Idempotency-Key": "suppress-1"},
        )
        self._post(
            "mutation { retryFailedNotifications }",
            user=self.admin,
            **{"Idempotency-Key": "retry-all-1"},
        )

        self.assertEqual(IdempotencyKey.objects.get(key="suppress-1").operation, "SUPPRESS_NOTIFICATION")
        self.assertEqual(IdempotencyKey.objects.get(key="retry-all-1").operation, "RETRY_FAILED_NOTIFICATIONS")

    def test_notification_metrics_range(self):
        response = self._post(
            'query { notificationMetrics(since: "2024-03-02T00:00:00Z", until: "2024-03-01T00:00:00Z") { sentCount } }',
            user=self.admin,
        )
        self.assertEqual(self._error_code(response), "VALIDATION_ERROR")

    def test_idempotent_checkout_replayed(self):
        """Test that a retried checkout returns the first response without a second order."""
        place_order(self.customer)
        self._post(
            ADD_TO_CART,
            {"input": {"catalogItemId": str(self.item.id), "quantity": 2}},
            user=self.customer,
        )
        key = "checkout-" + str(uuid4())

        first = self._post(CHECKOUT, self._checkout_input(), user=self.customer, **{"Idempotency-Key": key})
        second = self._post(CHECKOUT, self._checkout_input(), user=self.customer, **{"Idempotency-Key": key})

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(first.json(), second.json())
        self.assertEqual(OrderORM.objects.filter(customer=self.customer).count(), 2)
        self.assertEqual(IdempotencyKey.objects.get(key=key).operation, "CHECKOUT")

    def test_idempotency_key_reused_with_different_request(self):
        """Test that reusing a key for a different request is a conflict."""
        self._post(
            ADD_TO_CART,
            {"input": {"catalogItemId": str(self.item.id), "quantity": 2}},
            user=self.customer,
            **{"Idempotency-Key": "cart-1"},
        )
        response = self._post(
            ADD_TO_CART,
            {"input": {"catalogItemId": str(self.item.id), "quantity": 5}},
            user=self.customer,
            **{"Idempotency-Key": "cart-1"},
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "DUPLICATE_REQUEST")

    def test_failed_request_not_cached(self):
        """Test that an error response does not burn the idempotency key."""
        key = "checkout-empty"
        self._post(CHECKOUT, self._checkout_input(), user=self.customer, **{"Idempotency-Key": key})
        self.assertFalse(IdempotencyKey.objects.filter(key=key).exists())

    def test_invalid_json(self):
        response = self.client.post("/graphql/", data="{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "INVALID_JSON")

    def test_get_returns_hint(self):
        response = self.client.get("/graphql/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("message", json.loads(response.content))
