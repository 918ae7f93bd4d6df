from ordering.domain.invoice import Invoice
from ordering.domain.order import Order, OrderItem

__all__ = ["Invoice", "Order", "OrderItem"]
