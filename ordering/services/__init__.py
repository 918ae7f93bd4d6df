from ordering.services.checkout import CheckoutService
from ordering.services.invoices import InvoiceService
from ordering.services.notifications import NotificationService
from ordering.services.orders import OrderLifecycleService
from ordering.services.stats import OrderStatsService

__all__ = [
    "CheckoutService",
    "InvoiceService",
    "NotificationService",
    "OrderLifecycleService",
    "OrderStatsService",
]
