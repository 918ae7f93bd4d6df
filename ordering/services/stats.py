"""
Dashboard aggregates over orders, invoices and the notification queue.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.utils import timezone

from ordering.domain.invoice import InvoiceStatus
from ordering.domain.order import Order, OrderStatus, PaymentStatus, money
from ordering.infra.models import InvoiceORM, OrderORM
from ordering.infra.notification_queue import NotificationQueueRepository
from ordering.infra.repositories import OrderRepository


RECENT_ORDERS = 10


@dataclass(frozen=True)
class PeriodStats:
    orders: int
    revenue: Decimal


@dataclass(frozen=True)
class OrderStats:
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    status_counts: dict[str, int]
    payment_status_counts: dict[str, int]
    today: PeriodStats
    week: PeriodStats
    month: PeriodStats
    recent_orders: list[Order] = field(default_factory=list)
    invoice_status_counts: dict[str, int] = field(default_factory=dict)
    outstanding_invoice_amount: Decimal = Decimal("0.00")
    notification_queue_depth: int = 0


class OrderStatsService:
    """Read-only dashboard statistics. Revenue never includes cancelled orders."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        queue: NotificationQueueRepository | None = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.queue = queue or NotificationQueueRepository()

    def get_order_stats(self, now: datetime | None = None) -> OrderStats:
        now = timezone.localtime(now or timezone.now())
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        # Weeks start on Sunday.
        start_of_week = start_of_day - timedelta(days=(start_of_day.weekday() + 1) % 7)
        start_of_month = start_of_day.replace(day=1)

        revenue_filter = ~Q(status=OrderStatus.CANCELLED.value)
        totals = OrderORM.objects.aggregate(
            total_orders=Count("id"),
            completed_orders=Count("id", filter=revenue_filter),
            total_revenue=Sum("final_amount", filter=revenue_filter),
        )
        total_revenue = money(totals["total_revenue"] or 0)
        average = (
            money(total_revenue / totals["completed_orders"])
            if totals["completed_orders"]
            else money(0)
        )

        return OrderStats(
            total_orders=totals["total_orders"],
            total_revenue=total_revenue,
            average_order_value=average,
            status_counts=self._counts(OrderORM.objects.all(), "status", OrderStatus),
            payment_status_counts=self._counts(OrderORM.objects.all(), "payment_status", PaymentStatus),
            today=self._period(start_of_day),
            week=self._period(start_of_week),
            month=self._period(start_of_month),
            recent_orders=self.order_repo.list_all(limit=RECENT_ORDERS),
            invoice_status_counts=self._counts(InvoiceORM.objects.all(), "status", InvoiceStatus),
            outstanding_invoice_amount=money(
                InvoiceORM.objects
                .filter(status__in=[InvoiceStatus.PENDING.value, InvoiceStatus.OVERDUE.value])
                .aggregate(total=Sum("amount"))["total"] or 0
            ),
            notification_queue_depth=self.queue.queue_depth(),
        )

    def _period(self, since: datetime) -> PeriodStats:
        result = OrderORM.objects.filter(order_date__gte=since).aggregate(
            orders=Count("id"),
            revenue=Sum("final_amount", filter=~Q(status=OrderStatus.CANCELLED.value)),
        )
        return PeriodStats(orders=result["orders"], revenue=money(result["revenue"] or 0))

    def _counts(self, queryset, field_name: str, choices) -> dict[str, int]:
        counts = {choice.value: 0 for choice in choices}
        for row in queryset.values(field_name).annotate(n=Count("id")):
            counts[row[field_name]] = row["n"]
        return counts
