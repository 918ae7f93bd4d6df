"""
GraphQL schema definition using Ariadne.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

from ariadne import (
    EnumType,
    MutationType,
    ObjectType,
    QueryType,
    ScalarType,
    convert_camel_case_to_snake,
    format_error as default_format_error,
    load_schema_from_path,
    make_executable_schema,
    resolve_to,
    unwrap_graphql_error,
)
from graphql import GraphQLError

from ordering.domain.actor import Actor
from ordering.domain.errors import OrderingError, PermissionDenied
from ordering.domain.invoice import InvoiceStatus
from ordering.domain.notification import NotificationStatus, TimeRange
from ordering.domain.order import CheckoutAdjustments, ItemStatus, OrderStatus, PaymentStatus
from ordering.domain.pricing import PriceType
from ordering.infra.repositories import AddressRepository, CustomerRepository
from ordering.services import (
    CheckoutService,
    InvoiceService,
    NotificationService,
    OrderLifecycleService,
    OrderStatsService,
)


logger = logging.getLogger(__name__)

# Load schema from .graphql files
SCHEMAS_DIR = Path(__file__).parent / "schemas"
type_defs = "\n".join([
    load_schema_from_path(SCHEMAS_DIR / "common.graphql"),
    load_schema_from_path(SCHEMAS_DIR / "query.graphql"),
    load_schema_from_path(SCHEMAS_DIR / "mutation.graphql"),
])

query = QueryType()
mutation = MutationType()
order = ObjectType("Order")
order_item = ObjectType("OrderItem")
address = ObjectType("Address")
cart = ObjectType("Cart")
cart_line = ObjectType("CartLine")
invoice = ObjectType("Invoice")
order_stats = ObjectType("OrderStats")
notification_state = ObjectType("NotificationState")
notification_metrics = ObjectType("NotificationMetrics")


def bind_snake_case(object_type: ObjectType, *field_names: str) -> None:
    """Resolve camelCase fields from the snake_case attribute of the same name."""
    for field_name in field_names:
        object_type.set_field(field_name, resolve_to(convert_camel_case_to_snake(field_name)))


bind_snake_case(
    order,
    "orderNumber", "customerId", "paymentStatus", "taxAmount", "shippingAmount",
    "discountAmount", "finalAmount", "shippingMethod", "paymentMethod", "paymentReference",
    "orderDate", "shippedDate", "deliveredDate", "paymentDate", "customerNotes",
    "adminNotes", "trackingNumber",
)
bind_snake_case(order_item, "catalogItemId", "unitPrice", "totalAmount")
bind_snake_case(address, "postalCode")
bind_snake_case(cart, "customerId")
bind_snake_case(cart_line, "catalogItemId", "priceType")
bind_snake_case(
    invoice,
    "orderId", "invoiceNumber", "issueDate", "dueDate", "taxAmount",
    "paymentMethod", "paymentReference", "paymentDate",
)
bind_snake_case(
    order_stats,
    "totalOrders", "totalRevenue", "averageOrderValue", "recentOrders",
    "outstandingInvoiceAmount", "notificationQueueDepth",
)
bind_snake_case(
    notification_state,
    "attemptCount", "isTerminal", "createdAt", "lastAttemptAt", "nextAttemptAt",
    "sentAt", "lastError", "recipientEmail",
)
bind_snake_case(
    notification_metrics,
    "sentCount", "deliveredCount", "openedCount", "clickedCount", "bouncedCount",
    "deliveryRate", "openRate", "clickRate",
)

order_status_enum = EnumType("OrderStatus", {s.value: s for s in OrderStatus})
payment_status_enum = EnumType("PaymentStatus", {s.value: s for s in PaymentStatus})
item_status_enum = EnumType("ItemStatus", {s.value: s for s in ItemStatus})
invoice_status_enum = EnumType("InvoiceStatus", {s.value: s for s in InvoiceStatus})
price_type_enum = EnumType("PriceType", {t.value: t for t in PriceType})
notification_status_enum = EnumType("NotificationStatus", {s.value: s for s in NotificationStatus})


@dataclass
class ApiServices:
    checkout: CheckoutService
    orders: OrderLifecycleService
    invoices: InvoiceService
    notifications: NotificationService
    stats: OrderStatsService


def get_services(info) -> ApiServices:
    """Services for the current request, built once per request."""
    context = info.context
    if "services" not in context:
        notifications = NotificationService()
        context["services"] = ApiServices(
            checkout=CheckoutService(notifications=notifications),
            orders=OrderLifecycleService(notifications=notifications),
            invoices=InvoiceService(),
            notifications=notifications,
            stats=OrderStatsService(),
        )
    return context["services"]


def current_actor(info) -> Actor:
    """Caller identified by the ``X-User-ID`` header."""
    context = info.context
    if "actor" not in context:
        user_id = context["request"].headers.get("X-User-ID")
        try:
            actor_id = UUID(user_id)
        except (TypeError, ValueError):
            raise PermissionDenied("Authentication required", code="UNAUTHENTICATED") from None
        actor = CustomerRepository().get_actor(actor_id)
        if actor is None:
            raise PermissionDenied("Authentication required", code="UNAUTHENTICATED")
        context["actor"] = actor
    return context["actor"]


def current_admin(info) -> Actor:
    actor = current_actor(info)
    actor.require_admin()
    return actor


# Queries

@query.field("cart")
def resolve_cart(_, info):
    actor = current_actor(info)
    return get_services(info).checkout.get_cart(actor.id)


@query.field("order")
def resolve_order(_, info, id):
    actor = current_actor(info)
    return get_services(info).orders.get_order(id, actor=actor)


@query.field("myOrders")
def resolve_my_orders(_, info, limit=20, offset=0):
    actor = current_actor(info)
    return get_services(info).orders.list_orders(actor.id, limit=limit, offset=offset)


@query.field("orders")
def resolve_orders(_, info, status=None, paymentStatus=None, limit=20, offset=0):
    current_admin(info)
    return get_services(info).orders.list_all_orders(
        status=status,
        payment_status=paymentStatus,
        limit=limit,
        offset=offset,
    )


@query.field("invoice")
def resolve_invoice(_, info, id):
    current_admin(info)
    return get_services(info).invoices.get_invoice(id)


@query.field("invoices")
def resolve_invoices(_, info, status=None, orderId=None, limit=20, offset=0):
    current_admin(info)
    return get_services(info).invoices.list_invoices(
        status=status,
        order_id=orderId,
        limit=limit,
        offset=offset,
    )


@query.field("orderStats")
def resolve_order_stats(_, info):
    current_admin(info)
    return get_services(info).stats.get_order_stats()


@query.field("notificationStatus")
def resolve_notification_status(_, info, id):
    current_admin(info)
    return get_services(info).notifications.get_status(id)


@query.field("notificationMetrics")
def resolve_notification_metrics(_, info, since, until):
    current_admin(info)
    return get_services(info).notifications.get_metrics(TimeRange(start=since, end=until))


@query.field("notificationQueueDepth")
def resolve_notification_queue_depth(_, info):
    current_admin(info)
    return get_services(info).notifications.get_queue_depth()


@query.field("notifications")
def resolve_notifications(_, info, status=None, type=None, limit=20, offset=0):
    current_admin(info)
    return get_services(info).notifications.list_notifications(
        status=status,
        notification_type=type,
        limit=limit,
        offset=offset,
    )


# Mutations

@mutation.field("addToCart")
def resolve_add_to_cart(_, info, input: dict):
    actor = current_actor(info)
    return get_services(info).checkout.add_to_cart(
        actor.id,
        input["catalogItemId"],
        input["quantity"],
        input.get("priceType") or PriceType.STANDARD,
    )


@mutation.field("checkout")
def resolve_checkout(_, info, input: dict):
    actor = current_actor(info)
    adjustments = CheckoutAdjustments(
        tax=input.get("taxAmount") or Decimal("0"),
        shipping=input.get("shippingAmount") or Decimal("0"),
        discount=input.get("discountAmount") or Decimal("0"),
    )
    return get_services(info).checkout.checkout(
        actor.id,
        shipping_address_id=input["shippingAddressId"],
        payment_method=input["paymentMethod"],
        adjustments=adjustments,
        customer_notes=input.get("customerNotes") or "",
        shipping_method=input.get("shippingMethod") or "",
    )


@mutation.field("cancelOrder")
def resolve_cancel_order(_, info, orderId):
    actor = current_actor(info)
    return get_services(info).orders.cancel_order(actor, orderId)


@mutation.field("updateOrderStatus")
def resolve_update_order_status(_, info, input: dict):
    current_admin(info)
    return get_services(info).orders.update_status(
        input["orderId"],
        input["status"],
        notes=input.get("notes") or "",
        tracking_number=input.get("trackingNumber"),
    )


@mutation.field("updatePaymentStatus")
def resolve_update_payment_status(_, info, input: dict):
    current_admin(info)
    return get_services(info).orders.update_payment_status(
        input["orderId"],
        input["paymentStatus"],
        notes=input.get("notes") or "",
        payment_reference=input.get("paymentReference"),
    )


@mutation.field("createInvoice")
def resolve_create_invoice(_, info, input: dict):
    current_admin(info)
    return get_services(info).invoices.create_invoice(
        input["orderId"],
        due_date=input.get("dueDate"),
        notes=input.get("notes") or "",
        payment_method=input.get("paymentMethod") or "",
        payment_reference=input.get("paymentReference") or "",
    )


@mutation.field("updateInvoice")
def resolve_update_invoice(_, info, input: dict):
    current_admin(info)
    return get_services(info).invoices.update_invoice(
        input["invoiceId"],
        status=input.get("status"),
        payment_method=input.get("paymentMethod"),
        payment_reference=input.get("paymentReference"),
        notes=input.get("notes"),
    )


@mutation.field("suppressNotification")
def resolve_suppress_notification(_, info, id):
    current_admin(info)
    return get_services(info).notifications.suppress(id)


@mutation.field("retryNotification")
def resolve_retry_notification(_, info, id):
    current_admin(info)
    return get_services(info).notifications.retry(id)


@mutation.field("retryFailedNotifications")
def resolve_retry_failed_notifications(_, info):
    current_admin(info)
    return get_services(info).notifications.retry_exhausted()


@mutation.field("recordNotificationFeedback")
def resolve_record_notification_feedback(_, info, input: dict):
    current_admin(info)
    notifications = get_services(info).notifications
    event = input["event"]
    if event == "bounced":
        return notifications.track_bounced(input["id"], reason=input.get("reason") or "")
    track = {
        "delivered": notifications.track_delivered,
        "opened": notifications.track_opened,
        "clicked": notifications.track_clicked,
    }[event]
    return track(input["id"])


# Object fields

@order.field("shippingAddress")
def resolve_order_shipping_address(order_obj, info):
    return AddressRepository().get_by_id(order_obj.shipping_address_id)


def _status_counts(counts: dict) -> list[dict]:
    return [{"status": status, "count": count} for status, count in counts.items()]


@order_stats.field("statusCounts")
def resolve_status_counts(stats, info):
    return _status_counts(stats.status_counts)


@order_stats.field("paymentStatusCounts")
def resolve_payment_status_counts(stats, info):
    return _status_counts(stats.payment_status_counts)


@order_stats.field("invoiceStatusCounts")
def resolve_invoice_status_counts(stats, info):
    return _status_counts(stats.invoice_status_counts)


@notification_state.field("type")
def resolve_notification_type(state, info):
    return state.type.value


# Define custom scalars
decimal_scalar = ScalarType("Decimal")
uuid_scalar = ScalarType("UUID")
datetime_scalar = ScalarType("DateTime")
date_scalar = ScalarType("Date")


@decimal_scalar.serializer
def serialize_decimal(value):
    """Serialize Decimal to string."""
    return str(value)


@decimal_scalar.value_parser
def parse_decimal_value(value):
    """Parse Decimal from string."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal: {value}") from None


@uuid_scalar.serializer
def serialize_uuid(value):
    """Serialize UUID to string."""
    return str(value)


@uuid_scalar.value_parser
def parse_uuid_value(value):
    """Parse UUID from string."""
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


@uuid_scalar.literal_parser
def parse_uuid_literal(ast, variables=None):
    """Parse UUID from GraphQL literal."""
    return UUID(str(ast.value))


@datetime_scalar.serializer
def serialize_datetime(value):
    """Serialize DateTime to ISO format string."""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@datetime_scalar.value_parser
def parse_datetime_value(value):
    """Parse DateTime from string."""
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@date_scalar.serializer
def serialize_date(value):
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


@date_scalar.value_parser
def parse_date_value(value):
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def format_error(error: GraphQLError, debug: bool = False) -> dict:
    """
    Add ``extensions.code`` for domain errors and hide unexpected ones.

    Errors raised outside resolvers (syntax, validation, variable coercion)
    are returned as GraphQL reports them.
    """
    formatted = default_format_error(error, debug)
    original = unwrap_graphql_error(error)

    if isinstance(original, OrderingError):
        formatted["message"] = original.message
        formatted.setdefault("extensions", {})["code"] = original.code
    elif original is not None and error.path is not None:
        logger.error(
            "graphql_resolver_error",
            extra={
                "error_type": type(original).__name__,
                "error": str(original),
                "path": ".".join(str(p) for p in error.path),
            },
            exc_info=original,
        )
        if not debug:
            formatted["message"] = "An internal error occurred"
            formatted["extensions"] = {"code": "INTERNAL_ERROR"}
    return formatted


# Create executable schema
schema = make_executable_schema(
    type_defs,
    query,
    mutation,
    order,
    order_item,
    address,
    cart,
    cart_line,
    invoice,
    order_stats,
    notification_state,
    notification_metrics,
    order_status_enum,
    payment_status_enum,
    item_status_enum,
    invoice_status_enum,
    price_type_enum,
    notification_status_enum,
    datetime_scalar,
    date_scalar,
    decimal_scalar,
    uuid_scalar,
)
